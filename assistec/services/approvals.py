"""Customer approval workflow.

Three channels (remote link, in-person signature, signed paper document) all
close the approval through :func:`process_approval_decision`. This module never
moves the order past AWAITING_APPROVAL; the orchestrator does that after a
decision is recorded.
"""

import copy
import hashlib
import logging
import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from assistec.core.clock import utcnow
from assistec.core.config import settings
from assistec.core.constants import (
    ApprovalDecision,
    ApprovalMethod,
    ApprovalStatus,
    EvidenceStage,
    ItemSeverity,
    OrderStatus,
    SignatureKind,
)
from assistec.core.errors import AlreadyResponded, NotFound, ValidationError
from assistec.db import models
from assistec.services import audit, receipts
from assistec.services import evidence as evidence_service
from assistec.services import state_machine as sm
from assistec.services.audit import Actor, ClientInfo
from assistec.services.orders import order_protocol
from assistec.services.storage import StorageClient

logger = logging.getLogger("assistec.approvals")


@dataclass
class SignaturePayload:
    signed_name: str
    signature_image: Optional[str] = None
    confirmation_checked: bool = False
    signer_document: Optional[str] = None
    document_evidence: Optional[models.Evidence] = None

    @property
    def kind(self) -> SignatureKind:
        if self.document_evidence is not None:
            return SignatureKind.PHYSICAL_DOCUMENT
        return SignatureKind.DRAWN


@dataclass
class ApprovalResult:
    approval: models.ServiceApproval
    decision: ApprovalDecision
    signature: Optional[models.DigitalSignature] = None


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def approval_link(token: str) -> str:
    return f"{settings.PUBLIC_APP_BASE_URL}/aprovacao/{token}"


def snapshot_items(items) -> list[dict]:
    return [
        {
            "id": item.id,
            "name": item.name,
            "description": item.description,
            "price": f"{Decimal(str(item.price)):.2f}",
            "severity": item.severity,
            "required": bool(item.required),
            "approved": True,
        }
        for item in items
    ]


def snapshot_total(snapshot: list[dict]) -> Decimal:
    return sum(
        (Decimal(entry["price"]) for entry in snapshot if entry.get("approved")),
        Decimal("0.00"),
    ).quantize(Decimal("0.01"))


def apply_customer_choices(snapshot: list[dict], choices: Optional[dict[str, bool]]) -> list[dict]:
    """Return a copy of the snapshot with the customer's toggles applied.

    Only the ``approved`` flag of each entry changes. Critical items cannot be declined.
    """
    updated = copy.deepcopy(snapshot)
    if not choices:
        return updated
    by_id = {entry["id"]: entry for entry in updated}
    for item_id, approved in choices.items():
        entry = by_id.get(item_id)
        if entry is None:
            raise ValidationError(f"Item nao pertence ao orcamento: {item_id}", field="items")
        if not approved and entry["severity"] == ItemSeverity.CRITICAL.value:
            raise ValidationError(f"Item critico nao pode ser recusado: {entry['name']}", field="items")
        entry["approved"] = bool(approved)
    return updated


def _warranty_terms(order: models.ServiceOrder) -> str:
    if order.tenant is not None and order.tenant.warranty_terms:
        return order.tenant.warranty_terms
    return settings.DEFAULT_WARRANTY_TERMS


def create_approval_request(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    *,
    item_ids: Optional[list[str]] = None,
    description: str = "",
    client: Optional[ClientInfo] = None,
) -> tuple[models.ServiceApproval, str]:
    """Open a PENDING approval and move the order to AWAITING_APPROVAL.

    Returns the approval and the raw token; only its digest is stored.
    """
    if item_ids:
        by_id = {item.id: item for item in order.items}
        missing = [item_id for item_id in item_ids if item_id not in by_id]
        if missing:
            raise ValidationError(f"Itens nao encontrados na OS: {', '.join(missing)}", field="items")
        selected = [by_id[item_id] for item_id in item_ids]
    else:
        selected = list(order.items)
    if not selected:
        raise ValidationError("Adicione ao menos um item antes de solicitar aprovacao.", field="items")
    if pending_approval(db, order) is not None:
        raise ValidationError("Ja existe uma aprovacao pendente para esta OS.", field="status")

    snapshot = snapshot_items(selected)
    token = generate_token()
    approval = models.ServiceApproval(
        order_id=order.id,
        tenant_id=order.tenant_id,
        token_hash=hash_token(token),
        status=ApprovalStatus.PENDING.value,
        description=description or "",
        items_snapshot=snapshot,
        total_value=snapshot_total(snapshot),
        warranty_terms=_warranty_terms(order),
        created_by=actor.id,
        created_at=utcnow(),
    )
    db.add(approval)
    db.flush()

    # Staff may already have moved the order to AWAITING_APPROVAL by hand.
    if order.status != OrderStatus.AWAITING_APPROVAL.value:
        sm.request_transition(db, order, OrderStatus.AWAITING_APPROVAL, actor, client=client)
    audit.record_order_event(
        db,
        order,
        action="APPROVAL_REQUESTED",
        actor=actor,
        entity_type="APPROVAL",
        entity_id=approval.id,
        details=f"Orcamento enviado para aprovacao (R$ {approval.total_value:.2f})",
        changes={"after": {"items": snapshot, "total": approval.total_value}},
        client=client,
    )
    logger.info("approval requested order=%s approval=%s token=%s", order.id, approval.id, token[:8])
    return approval, token


def get_approval_by_token(db: Session, token: str) -> models.ServiceApproval:
    approval = (
        db.query(models.ServiceApproval)
        .filter(models.ServiceApproval.token_hash == hash_token(token or ""))
        .first()
    )
    if not approval:
        logger.info("approval token not found token=%s", (token or "")[:8])
        raise NotFound("Link de aprovacao invalido ou expirado")
    return approval


def build_approval_view(approval: models.ServiceApproval) -> dict:
    order = approval.order
    tenant = order.tenant
    return {
        "approval_id": approval.id,
        "status": approval.status,
        "company_name": tenant.name if tenant else settings.APP_NAME,
        "company_whatsapp": tenant.whatsapp if tenant else None,
        "order_protocol": order_protocol(order.id),
        "customer_name": order.customer_name,
        "device": order.device,
        "description": approval.description,
        "items": approval.items_snapshot,
        "total_value": f"{Decimal(str(approval.total_value)):.2f}",
        "warranty_terms": approval.warranty_terms,
        "created_at": approval.created_at,
        "responded_at": approval.responded_at,
        "verification_hash": approval.verification_hash,
    }


def latest_approval(db: Session, order: models.ServiceOrder) -> Optional[models.ServiceApproval]:
    return (
        db.query(models.ServiceApproval)
        .filter(models.ServiceApproval.order_id == order.id)
        .order_by(models.ServiceApproval.created_at.desc())
        .first()
    )


def pending_approval(db: Session, order: models.ServiceOrder) -> Optional[models.ServiceApproval]:
    return (
        db.query(models.ServiceApproval)
        .filter(
            models.ServiceApproval.order_id == order.id,
            models.ServiceApproval.status == ApprovalStatus.PENDING.value,
        )
        .order_by(models.ServiceApproval.created_at.desc())
        .first()
    )


def _validate_signature(signature: Optional[SignaturePayload]) -> SignaturePayload:
    if signature is None:
        raise ValidationError("Assinatura obrigatoria para aprovar.", field="signature")
    if not (signature.signed_name or "").strip():
        raise ValidationError("Informe o nome de quem assina.", field="signed_name")
    if signature.kind == SignatureKind.DRAWN:
        if not signature.signature_image:
            raise ValidationError("Assinatura obrigatoria para aprovar.", field="signature_image")
        if not signature.confirmation_checked:
            raise ValidationError("E necessario aceitar os termos.", field="confirmation_checked")
    return signature


def process_approval_decision(
    db: Session,
    approval: models.ServiceApproval,
    decision,
    *,
    actor: Actor,
    method: ApprovalMethod = ApprovalMethod.REMOTO,
    signature: Optional[SignaturePayload] = None,
    choices: Optional[dict[str, bool]] = None,
    rejection_reason: Optional[str] = None,
    client: Optional[ClientInfo] = None,
    storage: Optional[StorageClient] = None,
) -> ApprovalResult:
    """Close a PENDING approval exactly once.

    The status flip is a conditional UPDATE on ``status = 'PENDING'``; a
    concurrent submission sees zero rows and gets AlreadyResponded. On APPROVE
    the signature, verification hash and receipt are produced in the same unit
    of work, so any failure leaves the approval PENDING after rollback.
    """
    if approval.status != ApprovalStatus.PENDING.value:
        raise AlreadyResponded("Este orcamento ja foi respondido.")
    try:
        decision = ApprovalDecision(decision)
    except ValueError as exc:
        raise ValidationError(f"Decisao invalida: {decision}", field="decision") from exc

    client = client or ClientInfo()
    if decision == ApprovalDecision.APPROVE:
        signature = _validate_signature(signature)
        snapshot = apply_customer_choices(approval.items_snapshot, choices)
        new_status = ApprovalStatus.APPROVED
        reason = None
    else:
        snapshot = copy.deepcopy(approval.items_snapshot)
        for entry in snapshot:
            entry["approved"] = False
        new_status = ApprovalStatus.REJECTED
        reason = (rejection_reason or "").strip() or None

    responded_at = utcnow()
    claimed = (
        db.query(models.ServiceApproval)
        .filter(
            models.ServiceApproval.id == approval.id,
            models.ServiceApproval.status == ApprovalStatus.PENDING.value,
        )
        .update(
            {
                models.ServiceApproval.status: new_status.value,
                models.ServiceApproval.responded_at: responded_at,
                models.ServiceApproval.items_snapshot: snapshot,
                models.ServiceApproval.total_value: snapshot_total(snapshot),
                models.ServiceApproval.approval_method: method.value,
                models.ServiceApproval.rejection_reason: reason,
                models.ServiceApproval.ip_address: client.ip,
                models.ServiceApproval.user_agent: client.user_agent,
            },
            synchronize_session="evaluate",
        )
    )
    if not claimed:
        logger.info("approval already closed approval=%s", approval.id)
        raise AlreadyResponded("Este orcamento ja foi respondido.")
    # The evaluate sync skips attributes never loaded on this instance, e.g. one created in this session.
    approval.status = new_status.value
    approval.responded_at = responded_at
    approval.items_snapshot = snapshot
    approval.total_value = snapshot_total(snapshot)
    approval.approval_method = method.value
    approval.rejection_reason = reason
    approval.ip_address = client.ip
    approval.user_agent = client.user_agent

    order = approval.order
    stored_signature = None
    if new_status == ApprovalStatus.APPROVED:
        stored_signature = models.DigitalSignature(
            approval_id=approval.id,
            kind=signature.kind.value,
            signature_image=signature.signature_image,
            document_evidence=signature.document_evidence,
            signed_name=signature.signed_name.strip(),
            signer_document=signature.signer_document,
            confirmation_checked=signature.confirmation_checked
            or signature.kind == SignatureKind.PHYSICAL_DOCUMENT,
            ip_address=client.ip,
            user_agent=client.user_agent,
            signed_at=responded_at,
        )
        db.add(stored_signature)
        db.flush()
        approval.digital_signature_id = stored_signature.id
        approval.signer_document = signature.signer_document
        if signature.document_evidence is not None:
            approval.evidence_id = signature.document_evidence.id
        # Hash first; the receipt prints it.
        approval.verification_hash = receipts.generate_verification_hash(approval, stored_signature)
        approval.receipt_url = receipts.issue_receipt(approval, stored_signature, storage)
        db.flush()
        db.expire(approval, ["signature"])
        details = (
            f"Orcamento aprovado por {stored_signature.signed_name} "
            f"(R$ {Decimal(str(approval.total_value)):.2f}, {method.value})"
        )
    else:
        details = f"Orcamento recusado. Motivo: {reason or 'Sem motivo'}"

    audit.record_order_event(
        db,
        order,
        action=f"APPROVAL_{new_status.value}",
        actor=actor,
        entity_type="APPROVAL",
        entity_id=approval.id,
        details=details,
        changes={"after": {"status": new_status.value, "items": snapshot, "method": method.value}},
        client=client,
    )
    logger.info("approval closed approval=%s status=%s method=%s", approval.id, new_status.value, method.value)
    return ApprovalResult(approval=approval, decision=decision, signature=stored_signature)


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
) -> ApprovalResult:
    approval = get_approval_by_token(db, token)
    return process_approval_decision(
        db,
        approval,
        decision,
        actor=Actor.customer(approval.tenant_id),
        method=ApprovalMethod.REMOTO,
        signature=signature,
        choices=choices,
        rejection_reason=rejection_reason,
        client=client,
        storage=storage,
    )


def _refresh_snapshot(
    db: Session,
    approval: models.ServiceApproval,
    order: models.ServiceOrder,
    actor: Actor,
    client: Optional[ClientInfo],
) -> None:
    """Bring a reused PENDING snapshot up to date with the order's current items.

    Items stay editable while the order waits for approval; the customer
    present at the counter signs over what the order holds now.
    """
    current = snapshot_items(order.items)
    if not current:
        raise ValidationError("Adicione ao menos um item antes de solicitar aprovacao.", field="items")
    if current == approval.items_snapshot:
        return
    before_total = approval.total_value
    approval.items_snapshot = current
    approval.total_value = snapshot_total(current)
    db.flush()
    audit.record_order_event(
        db,
        order,
        action="APPROVAL_SNAPSHOT_REFRESHED",
        actor=actor,
        entity_type="APPROVAL",
        entity_id=approval.id,
        details=f"Orcamento atualizado antes da assinatura (R$ {approval.total_value:.2f})",
        changes={"before": {"total": before_total}, "after": {"items": current, "total": approval.total_value}},
        client=client,
    )
    logger.info("approval snapshot refreshed approval=%s", approval.id)


def _open_or_reuse(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    description: str,
    client: Optional[ClientInfo],
) -> models.ServiceApproval:
    approval = pending_approval(db, order)
    if approval is not None:
        _refresh_snapshot(db, approval, order, actor, client)
        return approval
    approval, _ = create_approval_request(db, order, actor, description=description, client=client)
    return approval


def register_in_person_approval(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    signature: SignaturePayload,
    *,
    choices: Optional[dict[str, bool]] = None,
    description: str = "Aprovacao presencial no balcao",
    client: Optional[ClientInfo] = None,
    storage: Optional[StorageClient] = None,
) -> ApprovalResult:
    approval = _open_or_reuse(db, order, actor, description, client)
    return process_approval_decision(
        db,
        approval,
        ApprovalDecision.APPROVE,
        actor=actor,
        method=ApprovalMethod.PRESENCIAL,
        signature=signature,
        choices=choices,
        client=client,
        storage=storage,
    )


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
    description: str = "Aprovacao presencial com termo assinado",
    client: Optional[ClientInfo] = None,
    storage: Optional[StorageClient] = None,
) -> ApprovalResult:
    approval = _open_or_reuse(db, order, actor, description, client)
    document = evidence_service.upload_evidence(
        db,
        order,
        actor,
        data=data,
        stage=EvidenceStage.APROVACAO_DOCUMENTAL,
        description="Termo de aprovacao assinado pelo cliente",
        file_name=file_name or "termo-assinado",
        mime=mime,
        storage=storage,
        client=client,
    )
    signature = SignaturePayload(
        signed_name=signed_name or order.customer_name,
        signer_document=signer_document,
        confirmation_checked=True,
        document_evidence=document,
    )
    return process_approval_decision(
        db,
        approval,
        ApprovalDecision.APPROVE,
        actor=actor,
        method=ApprovalMethod.PRESENCIAL_DOCUMENTO,
        signature=signature,
        choices=choices,
        client=client,
        storage=storage,
    )


def approval_to_dict(approval: models.ServiceApproval) -> dict:
    return {
        "id": approval.id,
        "order_id": approval.order_id,
        "status": approval.status,
        "approval_method": approval.approval_method,
        "description": approval.description,
        "items": approval.items_snapshot,
        "total_value": f"{Decimal(str(approval.total_value)):.2f}",
        "warranty_terms": approval.warranty_terms,
        "created_at": approval.created_at,
        "responded_at": approval.responded_at,
        "rejection_reason": approval.rejection_reason,
        "signer_document": approval.signer_document,
        "digital_signature_id": approval.digital_signature_id,
        "evidence_id": approval.evidence_id,
        "verification_hash": approval.verification_hash,
        "has_receipt": bool(approval.receipt_url),
    }
