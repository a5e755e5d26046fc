"""Order status state machine.

Every status change goes through :func:`request_transition`. Other components
(approval workflow, payment settlement, withdrawal) call it as trusted callers
instead of writing ``ServiceOrder.status`` themselves.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from sqlalchemy.orm import Session

from assistec.core.clock import utcnow
from assistec.core.config import settings
from assistec.core.constants import ORDER_STATUS_LABELS, EvidenceStage, OrderStatus
from assistec.core.errors import InvalidTransition, ValidationError
from assistec.db import models
from assistec.services import audit
from assistec.services.audit import Actor, ClientInfo

logger = logging.getLogger("assistec.orders")

S = OrderStatus

VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    S.DRAFT: frozenset({S.AWAITING_ANALYSIS, S.CANCELLED}),
    S.AWAITING_ANALYSIS: frozenset({S.IN_ANALYSIS, S.CANCELLED}),
    S.IN_ANALYSIS: frozenset({S.AWAITING_APPROVAL, S.CANCELLED}),
    S.AWAITING_APPROVAL: frozenset({S.APPROVED, S.REJECTED, S.CANCELLED}),
    S.APPROVED: frozenset({S.IN_PROGRESS, S.DONE, S.CANCELLED}),
    S.REJECTED: frozenset({S.AWAITING_PICKUP, S.CANCELLED, S.AWAITING_APPROVAL}),
    S.IN_PROGRESS: frozenset({S.DONE, S.AWAITING_APPROVAL, S.CANCELLED}),
    S.DONE: frozenset({S.AWAITING_PAYMENT, S.PICKED_UP, S.IN_PROGRESS}),
    S.AWAITING_PAYMENT: frozenset({S.PAID, S.PICKED_UP}),
    S.PAID: frozenset({S.PICKED_UP}),
    S.AWAITING_PICKUP: frozenset({S.PICKED_UP}),
    S.PICKED_UP: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.PICKED_UP, S.CANCELLED})
REASON_REQUIRED = frozenset({S.CANCELLED, S.REJECTED})
# Once the customer has committed to a price the item list is frozen.
ITEM_LOCKED_STATUSES = frozenset(
    {S.APPROVED, S.IN_PROGRESS, S.DONE, S.AWAITING_PAYMENT, S.PAID, S.AWAITING_PICKUP}
)

EVIDENCE_REQUIREMENTS: dict[OrderStatus, EvidenceStage] = {
    S.IN_ANALYSIS: EvidenceStage.ENTRADA,
    S.DONE: EvidenceStage.FINALIZACAO,
    S.PICKED_UP: EvidenceStage.ENTREGA,
}


class EvidencePolicy:
    """Required evidence stage per target status, advisory unless ``enforce`` is set."""

    def __init__(
        self,
        requirements: Optional[Mapping[OrderStatus, EvidenceStage]] = None,
        enforce: bool = False,
    ) -> None:
        self.requirements = dict(EVIDENCE_REQUIREMENTS if requirements is None else requirements)
        self.enforce = enforce

    def missing_for(self, order: models.ServiceOrder, target: OrderStatus) -> Optional[EvidenceStage]:
        required = self.requirements.get(target)
        if required is None:
            return None
        has_stage = any(ev.active and ev.stage == required.value for ev in order.evidence)
        return None if has_stage else required

    def check(self, order: models.ServiceOrder, target: OrderStatus) -> list[str]:
        missing = self.missing_for(order, target)
        if missing is None:
            return []
        message = (
            f"Evidencia obrigatoria ausente para {ORDER_STATUS_LABELS[target]}: {missing.value}"
        )
        if self.enforce:
            raise ValidationError(message, field="evidence")
        logger.warning("evidence advisory order=%s target=%s missing=%s", order.id, target.value, missing.value)
        return [message]


def default_evidence_policy() -> EvidencePolicy:
    return EvidencePolicy(enforce=settings.ENFORCE_EVIDENCE_REQUIREMENTS)


@dataclass
class TransitionResult:
    order: models.ServiceOrder
    entry: models.StatusHistoryEntry
    warnings: list[str] = field(default_factory=list)


def coerce_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Status desconhecido: {value}", field="status") from exc


def allowed_targets(current) -> list[OrderStatus]:
    return sorted(VALID_TRANSITIONS[coerce_status(current)], key=lambda s: list(OrderStatus).index(s))


def can_transition(current, target) -> bool:
    return coerce_status(target) in VALID_TRANSITIONS[coerce_status(current)]


def is_terminal(order: models.ServiceOrder) -> bool:
    return coerce_status(order.status) in TERMINAL_STATUSES


def assert_not_terminal(order: models.ServiceOrder) -> None:
    if is_terminal(order):
        raise ValidationError("OS encerrada. Nenhuma alteracao permitida.", field="status")


def assert_items_mutable(order: models.ServiceOrder) -> None:
    assert_not_terminal(order)
    if coerce_status(order.status) in ITEM_LOCKED_STATUSES:
        raise ValidationError(
            "Itens bloqueados: o cliente ja aprovou o orcamento.",
            field="items",
        )


def request_transition(
    db: Session,
    order: models.ServiceOrder,
    target,
    actor: Actor,
    reason: Optional[str] = None,
    *,
    policy: Optional[EvidencePolicy] = None,
    client: Optional[ClientInfo] = None,
) -> TransitionResult:
    current = coerce_status(order.status)
    target = coerce_status(target)
    if target not in VALID_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Transicao invalida: {ORDER_STATUS_LABELS[current]} -> {ORDER_STATUS_LABELS[target]}",
            field="status",
        )
    reason = (reason or "").strip() or None
    if target in REASON_REQUIRED and not reason:
        raise ValidationError("Informe o motivo para esta mudanca de status.", field="reason")

    warnings = (policy or default_evidence_policy()).check(order, target)

    entry = models.StatusHistoryEntry(
        order_id=order.id,
        from_status=current.value,
        to_status=target.value,
        changed_by=actor.id,
        changed_by_name=actor.name,
        reason=reason,
        position=len(order.status_history) + 1,
        created_at=utcnow(),
    )
    order.status_history.insert(0, entry)
    order.status = target.value
    order.updated_at = utcnow()
    audit.record_order_event(
        db,
        order,
        action="ORDER_STATUS_CHANGE",
        actor=actor,
        details=(
            f"Status alterado: {ORDER_STATUS_LABELS[current]} -> {ORDER_STATUS_LABELS[target]}"
            + (f". Motivo: {reason}" if reason else "")
        ),
        changes={"before": {"status": current.value}, "after": {"status": target.value}},
        client=client,
    )
    db.flush()
    logger.info("transition order=%s %s->%s actor=%s", order.id, current.value, target.value, actor.id)
    return TransitionResult(order=order, entry=entry, warnings=warnings)
