import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from urllib.parse import quote

from sqlalchemy.orm import Session

from assistec.core.config import settings
from assistec.db import models
from assistec.services import audit
from assistec.services.audit import Actor
from assistec.services.orders import order_protocol

logger = logging.getLogger("assistec.notifications")

DEFAULT_APPROVAL_TEMPLATE = (
    "Ola {nome_cliente}, seu orcamento para a OS #{id_os} esta pronto.\n"
    "Valor: R$ {valor}\n\n"
    "Confira detalhes e aprove aqui: {link}\n\n"
    "Atenciosamente,\n{nome_empresa}"
)
DEFAULT_PICKUP_TEMPLATE = (
    "Ola {nome_cliente}, otima noticia! Seu equipamento (OS #{id_os}) esta pronto para retirada.\n\n"
    "Ficamos no aguardo.\n{nome_empresa}"
)

_PLACEHOLDER = re.compile(r"\{(nome_cliente|id_os|valor|link|nome_empresa)\}")


@dataclass
class Notification:
    recipient: str
    message: str
    link: Optional[str] = None


class NotificationSink:
    """Outbound customer messages. Delivery is up to the implementation."""

    channel = "NONE"

    def send(self, recipient: str, message: str) -> Notification:
        raise NotImplementedError


class WhatsAppLinkSink(NotificationSink):
    """Builds a wa.me link for staff to open; nothing is delivered server side."""

    channel = "WHATSAPP"

    def send(self, recipient: str, message: str) -> Notification:
        phone = sanitize_phone(recipient)
        return Notification(recipient=phone, message=message, link=f"https://wa.me/{phone}?text={quote(message)}")


def sanitize_phone(phone: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if 10 <= len(digits) <= 11:
        return f"55{digits}"
    return digits


def render_template(template: str, values: dict[str, str]) -> str:
    return _PLACEHOLDER.sub(lambda match: str(values.get(match.group(1), "")), template)


def _values(order: models.ServiceOrder, link: str = "") -> dict[str, str]:
    tenant = order.tenant
    return {
        "nome_cliente": order.customer_name,
        "id_os": order_protocol(order.id),
        "valor": f"{Decimal(str(order.total_value)):.2f}",
        "link": link,
        "nome_empresa": tenant.name if tenant else settings.APP_NAME,
    }


def _deliver(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    message: str,
    sink: Optional[NotificationSink],
) -> Optional[Notification]:
    if not order.customer_phone:
        logger.info("notification skipped order=%s reason=no_phone", order.id)
        return None
    sink = sink or WhatsAppLinkSink()
    notification = sink.send(order.customer_phone, message)
    audit.record_order_event(
        db,
        order,
        action=f"{sink.channel}_SENT",
        actor=actor,
        entity_type=sink.channel,
        details=f"Mensagem gerada para {notification.recipient}",
    )
    return notification


def notify_approval_request(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    link: str,
    total: Decimal,
    sink: Optional[NotificationSink] = None,
) -> Optional[Notification]:
    template = (order.tenant.approval_template if order.tenant else None) or DEFAULT_APPROVAL_TEMPLATE
    values = _values(order, link)
    values["valor"] = f"{Decimal(str(total)):.2f}"
    return _deliver(db, order, actor, render_template(template, values), sink)


def notify_ready_for_pickup(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    sink: Optional[NotificationSink] = None,
) -> Optional[Notification]:
    template = (order.tenant.pickup_template if order.tenant else None) or DEFAULT_PICKUP_TEMPLATE
    return _deliver(db, order, actor, render_template(template, _values(order)), sink)
