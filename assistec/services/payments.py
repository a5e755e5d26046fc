import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from assistec.core.authorization import apply_tenant_scope
from assistec.core.clock import utcnow
from assistec.core.constants import OrderStatus, PaymentMethod
from assistec.core.errors import Forbidden, NotFound, ValidationError
from assistec.db import models
from assistec.services import audit
from assistec.services import state_machine as sm
from assistec.services.audit import Actor, ClientInfo
from assistec.services.orders import parse_money

logger = logging.getLogger("assistec.payments")


def coerce_method(value) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError as exc:
        raise ValidationError(f"Forma de pagamento invalida: {value}", field="method") from exc


def paid_total(order: models.ServiceOrder) -> Decimal:
    return sum((Decimal(str(p.amount)) for p in order.payments), Decimal("0.00")).quantize(Decimal("0.01"))


def balance(order: models.ServiceOrder) -> Decimal:
    return (Decimal(str(order.total_value)) - paid_total(order)).quantize(Decimal("0.01"))


def is_ready_for_paid(order: models.ServiceOrder) -> bool:
    """AWAITING_PAYMENT orders whose payments cover the approved total."""
    return order.status == OrderStatus.AWAITING_PAYMENT.value and paid_total(order) >= Decimal(
        str(order.total_value)
    )


def record_payment(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    *,
    amount,
    method,
    notes: Optional[str] = None,
    client: Optional[ClientInfo] = None,
) -> models.ServicePayment:
    sm.assert_not_terminal(order)
    value = parse_money(amount, field="amount", allow_zero=False)
    method = coerce_method(method)
    payment = models.ServicePayment(
        tenant_id=order.tenant_id,
        amount=value,
        method=method.value,
        notes=notes,
        received_by=actor.name,
        received_by_id=actor.id,
        paid_at=utcnow(),
    )
    order.payments.insert(0, payment)
    db.add(payment)
    db.flush()
    audit.record_order_event(
        db,
        order,
        action="PAYMENT_RECEIVED",
        actor=actor,
        entity_type="PAYMENT",
        entity_id=payment.id,
        details=f"Pagamento recebido: R$ {value:.2f} ({method.value})",
        changes={"after": {"amount": value, "method": method.value}},
        client=client,
    )
    paid = paid_total(order)
    if paid > Decimal(str(order.total_value)):
        logger.warning("overpayment order=%s paid=%s total=%s", order.id, paid, order.total_value)
    logger.info("payment recorded order=%s amount=%s paid=%s", order.id, value, paid)
    return payment


def get_payment(db: Session, actor: Actor, payment_id: str) -> models.ServicePayment:
    query = db.query(models.ServicePayment).filter(models.ServicePayment.id == payment_id)
    payment = apply_tenant_scope(query, actor, models.ServicePayment.tenant_id).first()
    if not payment:
        raise NotFound("Pagamento nao encontrado")
    return payment


def delete_payment(
    db: Session, actor: Actor, payment_id: str, client: Optional[ClientInfo] = None
) -> None:
    payment = get_payment(db, actor, payment_id)
    if not actor.is_privileged:
        raise Forbidden(
            "Apenas administradores podem estornar pagamentos.",
            audit=audit.build_entry(
                tenant_id=payment.tenant_id,
                order_id=payment.order_id,
                action="PAYMENT_DELETE_DENIED",
                entity_type="PAYMENT",
                entity_id=payment.id,
                actor=actor,
                details=f"Estorno negado para perfil {actor.role}",
                client=client,
            ),
        )
    order = payment.order
    sm.assert_not_terminal(order)
    amount = Decimal(str(payment.amount))
    db.delete(payment)
    db.flush()
    db.expire(order, ["payments"])
    audit.record_order_event(
        db,
        order,
        action="PAYMENT_DELETED",
        actor=actor,
        entity_type="PAYMENT",
        entity_id=payment_id,
        details=f"Pagamento estornado: R$ {amount:.2f} ({payment.method})",
        changes={"before": {"amount": amount, "method": payment.method}},
        client=client,
    )
    db.flush()


def withdrawal_check(order: models.ServiceOrder) -> dict:
    paid = paid_total(order)
    total = Decimal(str(order.total_value)).quantize(Decimal("0.01"))
    return {
        "total_value": total,
        "paid": paid,
        "balance": (total - paid).quantize(Decimal("0.01")),
        "underpaid": paid < total,
    }


def payment_to_dict(payment: models.ServicePayment) -> dict:
    return {
        "id": payment.id,
        "order_id": payment.order_id,
        "amount": f"{Decimal(str(payment.amount)):.2f}",
        "method": payment.method,
        "notes": payment.notes,
        "received_by": payment.received_by,
        "paid_at": payment.paid_at,
    }
