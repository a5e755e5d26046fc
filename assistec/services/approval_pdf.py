from jinja2 import Template
from weasyprint import HTML


_STYLE = """
    :root {
      --ink: #0b1220;
      --text: #0f172a;
      --muted: #5b6472;
      --border: #e5e7eb;
      --card: #f8fafc;
    }
    * { box-sizing: border-box; }
    body {
      font-family: "Segoe UI", Arial, sans-serif;
      color: var(--text);
      margin: 20px;
      font-size: 12px;
    }
    .header {
      display: flex;
      justify-content: space-between;
      align-items: center;
      gap: 16px;
      padding: 16px 20px;
      border-radius: 14px;
      background: #0b1220;
      color: #fff;
      margin-bottom: 16px;
    }
    .brand { display: flex; align-items: center; gap: 12px; }
    .brand img { width: 48px; height: 48px; object-fit: contain; }
    .brand-title { font-size: 17px; font-weight: 700; }
    .brand-subtitle { font-size: 11px; color: #cbd5f5; }
    .chip {
      padding: 4px 10px;
      border-radius: 999px;
      border: 1px solid #1f2937;
      font-size: 11px;
      font-weight: 600;
    }
    .section {
      border: 1px solid var(--border);
      border-radius: 12px;
      padding: 14px;
      margin-bottom: 12px;
    }
    .section h2 {
      font-size: 13px;
      margin: 0 0 8px;
      color: var(--ink);
      text-transform: uppercase;
      letter-spacing: 0.08em;
    }
    .grid {
      display: grid;
      grid-template-columns: repeat(2, minmax(0, 1fr));
      gap: 8px 16px;
    }
    .field label {
      display: block;
      font-size: 10px;
      text-transform: uppercase;
      color: var(--muted);
    }
    .field span { font-weight: 600; }
    .summary {
      background: var(--card);
      border-radius: 10px;
      padding: 10px 12px;
      color: var(--muted);
      white-space: pre-wrap;
    }
    table { width: 100%; border-collapse: collapse; }
    th, td { border-bottom: 1px solid var(--border); padding: 6px 4px; text-align: left; }
    td.price, th.price { text-align: right; }
    .total { text-align: right; font-size: 15px; font-weight: 700; margin-top: 8px; }
    .legal { font-size: 10px; color: var(--muted); }
    .signature {
      margin-top: 14px;
      border-top: 1px dashed var(--border);
      padding-top: 10px;
    }
    .signature img { max-height: 90px; object-fit: contain; }
    .signature-line { margin-top: 60px; border-top: 1px solid var(--ink); width: 70%; }
    .qr { margin-top: 14px; display: flex; align-items: center; gap: 12px; color: var(--muted); }
    .qr img { width: 96px; height: 96px; }
    .hash { font-family: monospace; font-size: 9px; word-break: break-all; }
"""

_HEADER = """
  <div class="header">
    <div class="brand">
      {% if logo_url %}<img src="{{ logo_url }}" alt="Logo" />{% endif %}
      <div>
        <div class="brand-title">{{ company.name }}</div>
        <div class="brand-subtitle">
          {% if company.cnpj %}CNPJ {{ company.cnpj }}{% endif %}
          {% if company.address %} - {{ company.address }}{% endif %}
        </div>
      </div>
    </div>
    <span class="chip">OS {{ order.protocol }}</span>
  </div>
"""

_RECEIPT_TEMPLATE = Template(
    """
<!doctype html>
<html lang="pt-br">
<head><meta charset="utf-8" /><style>"""
    + _STYLE
    + """</style></head>
<body>
"""
    + _HEADER
    + """
  <div class="section">
    <h2>Comprovante de aprovacao de orcamento</h2>
    <div class="grid">
      <div class="field"><label>Cliente</label><span>{{ order.customer_name }}</span></div>
      <div class="field"><label>Equipamento</label><span>{{ order.device }}</span></div>
      <div class="field"><label>Data da aprovacao</label><span>{{ approval.responded_at }}</span></div>
      <div class="field"><label>Forma de aprovacao</label><span>{{ approval.method_label }}</span></div>
    </div>
  </div>

  <div class="section">
    <h2>Descricao tecnica</h2>
    <div class="summary">{{ approval.description or "Nao informado" }}</div>
  </div>

  <div class="section">
    <h2>Itens aprovados</h2>
    <table>
      <thead><tr><th>Item</th><th>Classificacao</th><th class="price">Valor</th></tr></thead>
      <tbody>
        {% for item in items %}
          <tr>
            <td>{{ item.name }}{% if item.description %}<br /><span class="legal">{{ item.description }}</span>{% endif %}</td>
            <td>{{ "Critico" if item.severity == "critical" else "Sugerido" }}</td>
            <td class="price">R$ {{ item.price }}</td>
          </tr>
        {% endfor %}
      </tbody>
    </table>
    <div class="total">Total aprovado: R$ {{ approval.total }}</div>
  </div>

  <div class="section">
    <h2>Termos de garantia</h2>
    <div class="summary">{{ approval.warranty_terms or "Nao informado" }}</div>
    <p class="legal">
      Declaro que li e concordo com o orcamento acima e autorizo a execucao dos servicos descritos.
      Este documento possui validade juridica conforme a MP 2.200-2/2001.
    </p>
  </div>

  <div class="signature">
    {% if signature.image %}
      <img src="{{ signature.image }}" alt="Assinatura" />
    {% else %}
      <p>Assinatura em documento fisico arquivado no prontuario da OS.</p>
    {% endif %}
    <div><strong>{{ signature.name }}</strong>{% if signature.document %} - Doc. {{ signature.document }}{% endif %}</div>
    <div class="legal">IP {{ signature.ip or "Nao informado" }} - {{ signature.signed_at }}</div>
  </div>

  <div class="qr">
    {% if qr_data_url %}<img src="{{ qr_data_url }}" alt="QR" />{% endif %}
    <div>
      Verifique a autenticidade deste documento em {{ verification_url }}
      <div class="hash">HASH {{ approval.verification_hash }}</div>
    </div>
  </div>
</body>
</html>
"""
)

_TERM_TEMPLATE = Template(
    """
<!doctype html>
<html lang="pt-br">
<head><meta charset="utf-8" /><style>"""
    + _STYLE
    + """</style></head>
<body>
"""
    + _HEADER
    + """
  <div class="section">
    <h2>Termo de aprovacao de orcamento</h2>
    <div class="grid">
      <div class="field"><label>Cliente</label><span>{{ order.customer_name }}</span></div>
      <div class="field"><label>Equipamento</label><span>{{ order.device }}</span></div>
      <div class="field"><label>Emitido em</label><span>{{ now }}</span></div>
    </div>
  </div>

  <div class="section">
    <h2>Itens do orcamento</h2>
    <table>
      <thead><tr><th></th><th>Item</th><th>Classificacao</th><th class="price">Valor</th></tr></thead>
      <tbody>
        {% for item in items %}
          <tr>
            <td>[ ]</td>
            <td>{{ item.name }}</td>
            <td>{{ "Critico" if item.severity == "critical" else "Sugerido" }}</td>
            <td class="price">R$ {{ item.price }}</td>
          </tr>
        {% endfor %}
      </tbody>
    </table>
    <div class="total">Total: R$ {{ total }}</div>
  </div>

  <div class="section">
    <h2>Termos de garantia</h2>
    <div class="summary">{{ warranty_terms or "Nao informado" }}</div>
  </div>

  <div class="signature">
    <div class="signature-line"></div>
    <div>Assinatura do cliente</div>
    <div class="legal">Nome legivel: ______________________________ Documento: ________________</div>
    <div class="legal">Data: ____/____/________</div>
  </div>
</body>
</html>
"""
)


def render_receipt_pdf(payload: dict) -> bytes:
    html = _RECEIPT_TEMPLATE.render(**payload)
    return HTML(string=html).write_pdf()


def render_term_pdf(payload: dict) -> bytes:
    html = _TERM_TEMPLATE.render(**payload)
    return HTML(string=html).write_pdf()
