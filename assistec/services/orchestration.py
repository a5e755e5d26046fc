"""Composition of the workflow and ledger components with the state machine.

Approvals and payments never write the order status themselves. After a
decision or a payment is recorded, the functions here drive the follow-up
transition.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from assistec.core.constants import ApprovalDecision, ApprovalMethod, OrderStatus
from assistec.core.errors import ValidationError
from assistec.db import models
from assistec.services import approvals, notifications, orders, payments
from assistec.services import state_machine as sm
from assistec.services.approvals import ApprovalResult, SignaturePayload
from assistec.services.audit import Actor, ClientInfo
from assistec.services.notifications import Notification, NotificationSink
from assistec.services.state_machine import EvidencePolicy, TransitionResult
from assistec.services.storage import StorageClient

logger = logging.getLogger("assistec.orders")

PICKUP_NOTICE_STATUSES = {OrderStatus.PAID, OrderStatus.AWAITING_PICKUP}


@dataclass
class ApprovalRequest:
    approval: models.ServiceApproval
    token: str
    link: str
    notification: Optional[Notification] = None


@dataclass
class DecisionOutcome:
    result: ApprovalResult
    transition: TransitionResult


def transition_order(
    db: Session,
    order: models.ServiceOrder,
    target,
    actor: Actor,
    reason: Optional[str] = None,
    *,
    confirm_underpaid: bool = False,
    policy: Optional[EvidencePolicy] = None,
    client: Optional[ClientInfo] = None,
    sink: Optional[NotificationSink] = None,
) -> TransitionResult:
    target = sm.coerce_status(target)
    if target == OrderStatus.APPROVED:
        raise ValidationError(
            "A aprovacao do cliente deve ser registrada pelo fluxo de aprovacao.", field="status"
        )
    if target == OrderStatus.PICKED_UP:
        check = payments.withdrawal_check(order)
        if check["underpaid"] and not confirm_underpaid:
            raise ValidationError(
                f"Saldo pendente de R$ {check['balance']:.2f}. Confirme a retirada sem pagamento integral.",
                field="confirm_underpaid",
            )
    if target == OrderStatus.REJECTED:
        pending = approvals.pending_approval(db, order)
        if pending is not None:
            approvals.process_approval_decision(
                db,
                pending,
                ApprovalDecision.REJECT,
                actor=actor,
                method=ApprovalMethod.PRESENCIAL,
                rejection_reason=reason,
                client=client,
            )
            orders.apply_approval_snapshot(order, pending.items_snapshot, rejected=True)

    result = sm.request_transition(db, order, target, actor, reason, policy=policy, client=client)
    if target == OrderStatus.PICKED_UP and payments.withdrawal_check(order)["underpaid"]:
        logger.warning("withdrawal underpaid order=%s actor=%s", order.id, actor.id)
    if target in PICKUP_NOTICE_STATUSES:
        notifications.notify_ready_for_pickup(db, order, actor, sink)
    return result


def request_approval(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    *,
    item_ids: Optional[list[str]] = None,
    description: str = "",
    client: Optional[ClientInfo] = None,
    sink: Optional[NotificationSink] = None,
) -> ApprovalRequest:
    approval, token = approvals.create_approval_request(
        db, order, actor, item_ids=item_ids, description=description, client=client
    )
    link = approvals.approval_link(token)
    notification = notifications.notify_approval_request(
        db, order, actor, link, approval.total_value, sink
    )
    return ApprovalRequest(approval=approval, token=token, link=link, notification=notification)


def _settle_decision(
    db: Session,
    result: ApprovalResult,
    actor: Actor,
    client: Optional[ClientInfo],
    policy: Optional[EvidencePolicy],
) -> DecisionOutcome:
    approval = result.approval
    order = approval.order
    rejected = result.decision == ApprovalDecision.REJECT
    orders.apply_approval_snapshot(order, approval.items_snapshot, rejected=rejected)
    if rejected:
        target = OrderStatus.REJECTED
        reason = f"Recusado pelo cliente: {approval.rejection_reason or 'Sem motivo'}"
    else:
        target = OrderStatus.APPROVED
        reason = None
    transition = sm.request_transition(db, order, target, actor, reason, policy=policy, client=client)
    return DecisionOutcome(result=result, transition=transition)


def submit_approval_decision(
    db: Session,
    token: str,
    decision,
    *,
    signature: Optional[SignaturePayload] = None,
    choices: Optional[dict[str, bool]] = None,
    rejection_reason: Optional[str] = None,
    client: Optional[ClientInfo] = None,
    storage: Optional[StorageClient] = None,
    policy: Optional[EvidencePolicy] = None,
) -> DecisionOutcome:
    result = approvals.submit_approval_decision(
        db,
        token,
        decision,
        signature=signature,
        choices=choices,
        rejection_reason=rejection_reason,
        client=client,
        storage=storage,
    )
    actor = Actor.customer(result.approval.tenant_id)
    return _settle_decision(db, result, actor, client, policy)


def register_in_person_approval(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    signature: SignaturePayload,
    *,
    choices: Optional[dict[str, bool]] = None,
    client: Optional[ClientInfo] = None,
    storage: Optional[StorageClient] = None,
    policy: Optional[EvidencePolicy] = None,
) -> DecisionOutcome:
    result = approvals.register_in_person_approval(
        db, order, actor, signature, choices=choices, client=client, storage=storage
    )
    return _settle_decision(db, result, actor, client, policy)


def register_physical_approval(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    *,
    data: bytes,
    file_name: Optional[str] = None,
    mime: Optional[str] = None,
    signed_name: Optional[str] = None,
    signer_document: Optional[str] = None,
    choices: Optional[dict[str, bool]] = None,
    client: Optional[ClientInfo] = None,
    storage: Optional[StorageClient] = None,
    policy: Optional[EvidencePolicy] = None,
) -> DecisionOutcome:
    result = approvals.register_physical_approval(
        db,
        order,
        actor,
        data=data,
        file_name=file_name,
        mime=mime,
        signed_name=signed_name,
        signer_document=signer_document,
        choices=choices,
        client=client,
        storage=storage,
    )
    return _settle_decision(db, result, actor, client, policy)


def record_payment_and_settle(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    *,
    amount,
    method,
    notes: Optional[str] = None,
    client: Optional[ClientInfo] = None,
    policy: Optional[EvidencePolicy] = None,
    sink: Optional[NotificationSink] = None,
) -> tuple[models.ServicePayment, Optional[TransitionResult]]:
    payment = payments.record_payment(
        db, order, actor, amount=amount, method=method, notes=notes, client=client
    )
    transition = None
    if payments.is_ready_for_paid(order):
        transition = transition_order(
            db, order, OrderStatus.PAID, actor, policy=policy, client=client, sink=sink
        )
    return payment, transition


def confirm_withdrawal(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    *,
    confirm_underpaid: bool = False,
    reason: Optional[str] = None,
    client: Optional[ClientInfo] = None,
    policy: Optional[EvidencePolicy] = None,
) -> TransitionResult:
    return transition_order(
        db,
        order,
        OrderStatus.PICKED_UP,
        actor,
        reason,
        confirm_underpaid=confirm_underpaid,
        policy=policy,
        client=client,
    )
