"""Verification hash, receipt rendering and public authenticity checks.

The hash is derived once, before the receipt is rendered, and stored on the
approval. Rendering and verification only ever read it.
"""

import base64
import logging
from decimal import Decimal
from io import BytesIO
from typing import Optional

import qrcode
from sqlalchemy.orm import Session

from assistec.core.authorization import apply_tenant_scope
from assistec.core.clock import utcnow
from assistec.core.config import settings
from assistec.core.constants import ApprovalMethod, ApprovalStatus
from assistec.core.errors import IntegrityFailure, NotFound, ValidationError
from assistec.db import models
from assistec.services import audit, hashing
from assistec.services.approval_pdf import render_receipt_pdf, render_term_pdf
from assistec.services.audit import Actor, ClientInfo
from assistec.services.orders import order_protocol
from assistec.services.storage import StorageClient, build_object_name, get_storage

logger = logging.getLogger("assistec.receipts")

METHOD_LABELS = {
    ApprovalMethod.REMOTO.value: "Link remoto",
    ApprovalMethod.PRESENCIAL.value: "Presencial (assinatura digital)",
    ApprovalMethod.PRESENCIAL_DOCUMENTO.value: "Presencial (documento fisico)",
}


def _money(value) -> str:
    return f"{Decimal(str(value or 0)):.2f}"


def _fmt(value) -> str:
    return value.strftime("%d/%m/%Y %H:%M") if value else ""


def document_hash_for(signature: models.DigitalSignature) -> Optional[str]:
    if signature.document_evidence is not None:
        return signature.document_evidence.file_hash
    return None


def build_verification_payload(
    approval: models.ServiceApproval, signature: models.DigitalSignature
) -> dict:
    if approval.responded_at is None:
        raise IntegrityFailure("Aprovacao sem data de resposta; hash nao pode ser gerado.")
    payload = {
        "order_id": approval.order_id,
        "items": approval.items_snapshot,
        "total": _money(approval.total_value),
        "signed_name": signature.signed_name,
        "signature_id": signature.id,
        "responded_at": approval.responded_at.isoformat(),
    }
    document_hash = document_hash_for(signature)
    if document_hash:
        payload["document_hash"] = document_hash
    return payload


def generate_verification_hash(
    approval: models.ServiceApproval, signature: models.DigitalSignature
) -> str:
    if not signature.id:
        raise IntegrityFailure("Assinatura sem identificador; hash nao pode ser gerado.")
    try:
        return hashing.keyed_digest(
            build_verification_payload(approval, signature), settings.VERIFICATION_HASH_KEY
        )
    except (TypeError, ValueError) as exc:
        logger.exception("verification hash failed approval=%s", approval.id)
        raise IntegrityFailure("Falha ao gerar o hash de verificacao.") from exc


def verification_url(verification_hash: str) -> str:
    return f"{settings.PUBLIC_APP_BASE_URL}/verify/{verification_hash}"


def build_qr_data_url(target: str) -> str:
    qr = qrcode.make(target)
    buf = BytesIO()
    qr.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def _company(order: models.ServiceOrder) -> dict:
    tenant = order.tenant
    if tenant is None:
        return {"name": settings.APP_NAME}
    return {"name": tenant.name, "cnpj": tenant.cnpj, "address": tenant.address}


def _order_header(order: models.ServiceOrder) -> dict:
    return {
        "protocol": order_protocol(order.id),
        "customer_name": order.customer_name,
        "device": order.device,
    }


def _logo_url(order: models.ServiceOrder) -> Optional[str]:
    if order.tenant is not None and order.tenant.logo_url:
        return order.tenant.logo_url
    return settings.RECEIPT_LOGO_URL


def receipt_payload(approval: models.ServiceApproval, signature: models.DigitalSignature) -> dict:
    if not approval.verification_hash:
        raise IntegrityFailure("Aprovacao sem hash de verificacao; recibo bloqueado.")
    order = approval.order
    url = verification_url(approval.verification_hash)
    return {
        "logo_url": _logo_url(order),
        "company": _company(order),
        "order": _order_header(order),
        "approval": {
            "description": approval.description,
            "responded_at": _fmt(approval.responded_at),
            "method_label": METHOD_LABELS.get(approval.approval_method, approval.approval_method),
            "total": _money(approval.total_value),
            "warranty_terms": approval.warranty_terms,
            "verification_hash": approval.verification_hash,
        },
        "items": [item for item in approval.items_snapshot if item.get("approved")],
        "signature": {
            "image": signature.signature_image,
            "name": signature.signed_name,
            "document": signature.signer_document,
            "ip": signature.ip_address,
            "signed_at": _fmt(signature.signed_at),
        },
        "verification_url": url,
        "qr_data_url": build_qr_data_url(url),
    }


def issue_receipt(
    approval: models.ServiceApproval,
    signature: models.DigitalSignature,
    storage: Optional[StorageClient] = None,
) -> str:
    """Render the receipt from the persisted approval and store it. Returns the storage URL."""
    payload = receipt_payload(approval, signature)
    try:
        pdf_bytes = render_receipt_pdf(payload)
        object_name = build_object_name(approval.order_id, "receipts", f"comprovante-{approval.id}.pdf")
        url = (storage or get_storage()).upload_bytes(pdf_bytes, object_name, "application/pdf")
    except Exception as exc:
        logger.exception("receipt rendering failed approval=%s", approval.id)
        raise IntegrityFailure("Falha ao gerar o comprovante de aprovacao.") from exc
    logger.info("receipt issued approval=%s", approval.id)
    return url


def get_approval(db: Session, actor: Actor, approval_id: str) -> models.ServiceApproval:
    query = db.query(models.ServiceApproval).filter(models.ServiceApproval.id == approval_id)
    approval = apply_tenant_scope(query, actor, models.ServiceApproval.tenant_id).first()
    if not approval:
        raise NotFound("Aprovacao nao encontrada")
    return approval


def ensure_receipt(
    db: Session,
    actor: Actor,
    approval_id: str,
    *,
    regenerate: bool = False,
    storage: Optional[StorageClient] = None,
) -> str:
    approval = get_approval(db, actor, approval_id)
    if approval.status != ApprovalStatus.APPROVED.value:
        raise ValidationError("Comprovante disponivel apenas para aprovacoes concluidas.", field="status")
    signature = approval.signature
    if signature is None or not approval.verification_hash:
        raise IntegrityFailure("Aprovacao sem assinatura ou hash; comprovante bloqueado.")
    storage = storage or get_storage()
    if approval.receipt_url and not regenerate:
        return storage.generate_signed_url(approval.receipt_url)
    approval.receipt_url = issue_receipt(approval, signature, storage)
    db.flush()
    return storage.generate_signed_url(approval.receipt_url)


def render_approval_term(order: models.ServiceOrder) -> bytes:
    items = [
        {"name": item.name, "severity": item.severity, "price": _money(item.price)}
        for item in order.items
    ]
    total = sum((Decimal(str(item.price)) for item in order.items), Decimal("0.00"))
    tenant = order.tenant
    payload = {
        "logo_url": _logo_url(order),
        "company": _company(order),
        "order": _order_header(order),
        "now": _fmt(utcnow()),
        "items": items,
        "total": _money(total),
        "warranty_terms": (tenant.warranty_terms if tenant else None) or settings.DEFAULT_WARRANTY_TERMS,
    }
    return render_term_pdf(payload)


def _first_name(name: Optional[str]) -> str:
    return (name or "").strip().split(" ")[0] if name else ""


def verify(db: Session, verification_hash: str, client: Optional[ClientInfo] = None) -> dict:
    short = (verification_hash or "")[:8]
    approval = (
        db.query(models.ServiceApproval)
        .filter(models.ServiceApproval.verification_hash == verification_hash)
        .first()
    )
    if approval is None:
        logger.warning("verification failed hash=%s", short)
        raise NotFound(
            "Documento nao encontrado ou invalido",
            audit=audit.build_entry(
                tenant_id=None,
                action="VERIFICATION_FAILED",
                entity_type="APPROVAL",
                entity_id=None,
                actor=Actor.system(),
                details=f"Hash desconhecido: {short}",
                client=client,
            ),
        )

    signature = approval.signature
    matches = False
    if signature is not None:
        try:
            matches = hashing.digests_match(
                generate_verification_hash(approval, signature), approval.verification_hash
            )
        except IntegrityFailure:
            matches = False

    order = approval.order
    company = _company(order)
    audit.record_order_event(
        db,
        order,
        action="VERIFICATION_ATTEMPT" if matches else "VERIFICATION_FAILED",
        actor=Actor.system(),
        entity_type="APPROVAL",
        entity_id=approval.id,
        details=f"Verificacao publica do comprovante ({'valido' if matches else 'divergente'})",
        client=client,
    )
    if not matches:
        logger.warning("verification mismatch approval=%s", approval.id)
    return {
        "matches": matches,
        "company_name": company.get("name"),
        "company_cnpj": company.get("cnpj"),
        "order_protocol": order_protocol(order.id),
        "approved_at": approval.responded_at,
        "total_value": _money(approval.total_value),
        "customer_first_name": _first_name(order.customer_name),
        "approval_method": approval.approval_method,
        "status": approval.status,
    }
