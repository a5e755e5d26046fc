import logging
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from assistec.core.authorization import apply_tenant_scope
from assistec.core.clock import utcnow
from assistec.core.constants import ORDER_STATUS_LABELS, ItemSeverity, OrderStatus
from assistec.core.errors import NotFound, ValidationError
from assistec.db import models
from assistec.services import audit
from assistec.services import state_machine as sm
from assistec.services.audit import Actor, ClientInfo

logger = logging.getLogger("assistec.orders")

CENT = Decimal("0.01")


def order_protocol(order_id: str) -> str:
    return order_id.replace("-", "")[:8].upper()


def parse_money(value, field: str = "price", allow_zero: bool = True) -> Decimal:
    try:
        amount = Decimal(str(value)).quantize(CENT)
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationError("Valor monetario invalido.", field=field) from exc
    if not amount.is_finite():
        raise ValidationError("Valor monetario invalido.", field=field)
    if amount < 0 or (amount == 0 and not allow_zero):
        message = "O valor nao pode ser negativo." if allow_zero else "O valor deve ser maior que zero."
        raise ValidationError(message, field=field)
    return amount


def coerce_severity(value) -> ItemSeverity:
    try:
        return ItemSeverity(value or ItemSeverity.CRITICAL.value)
    except ValueError as exc:
        raise ValidationError(f"Severidade invalida: {value}", field="severity") from exc


def approved_total(items: Iterable) -> Decimal:
    return sum((Decimal(str(item.price)) for item in items if item.approved), Decimal("0.00")).quantize(CENT)


def recompute_total(order: models.ServiceOrder) -> Decimal:
    order.total_value = approved_total(order.items)
    return order.total_value


def create_order(
    db: Session,
    actor: Actor,
    *,
    customer_name: str,
    device: str,
    customer_id: Optional[str] = None,
    customer_phone: Optional[str] = None,
    technical_notes: Optional[str] = None,
    tenant_id: Optional[str] = None,
    client: Optional[ClientInfo] = None,
) -> models.ServiceOrder:
    tenant_id = tenant_id if actor.is_super_admin and tenant_id else actor.tenant_id
    if not tenant_id:
        raise ValidationError("Empresa nao informada.", field="tenant_id")
    if not (customer_name or "").strip():
        raise ValidationError("Informe o cliente.", field="customer_name")
    if not (device or "").strip():
        raise ValidationError("Informe o equipamento.", field="device")
    order = models.ServiceOrder(
        tenant_id=tenant_id,
        customer_id=customer_id,
        customer_name=customer_name.strip(),
        customer_phone=customer_phone,
        device=device.strip(),
        technical_notes=technical_notes,
        status=OrderStatus.DRAFT.value,
        total_value=Decimal("0.00"),
        created_at=utcnow(),
        updated_at=utcnow(),
    )
    db.add(order)
    db.flush()
    audit.record_order_event(
        db,
        order,
        action="ORDER_CREATED",
        actor=actor,
        details=f"OS criada para {order.customer_name} ({order.device})",
        client=client,
    )
    return order


def get_order(db: Session, actor: Actor, order_id: str) -> models.ServiceOrder:
    query = db.query(models.ServiceOrder).filter(models.ServiceOrder.id == order_id)
    order = apply_tenant_scope(query, actor, models.ServiceOrder.tenant_id).first()
    if not order:
        raise NotFound("OS nao encontrada")
    return order


def add_item(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    *,
    name: str,
    price,
    severity=None,
    description: Optional[str] = None,
    required: bool = False,
    catalog_item_id: Optional[str] = None,
) -> models.ServiceItem:
    sm.assert_items_mutable(order)
    if not (name or "").strip():
        raise ValidationError("Informe o nome do item.", field="name")
    amount = parse_money(price)
    severity = coerce_severity(severity)
    position = max((item.position for item in order.items), default=0) + 1
    item = models.ServiceItem(
        name=name.strip(),
        description=description,
        price=amount,
        approved=True,
        required=required or severity == ItemSeverity.CRITICAL,
        severity=severity.value,
        position=position,
        catalog_item_id=catalog_item_id,
    )
    order.items.append(item)
    recompute_total(order)
    order.updated_at = utcnow()
    audit.record_order_event(
        db,
        order,
        action="ITEM_ADDED",
        actor=actor,
        entity_type="ITEM",
        details=f"Item adicionado: {item.name} (R$ {amount:.2f})",
        changes={"after": {"name": item.name, "price": amount, "severity": item.severity}},
    )
    db.flush()
    return item


def _find_item(order: models.ServiceOrder, item_id: str) -> models.ServiceItem:
    for item in order.items:
        if item.id == item_id:
            return item
    raise NotFound("Item nao encontrado")


def remove_item(db: Session, order: models.ServiceOrder, actor: Actor, item_id: str) -> None:
    sm.assert_items_mutable(order)
    item = _find_item(order, item_id)
    order.items.remove(item)
    recompute_total(order)
    order.updated_at = utcnow()
    audit.record_order_event(
        db,
        order,
        action="ITEM_REMOVED",
        actor=actor,
        entity_type="ITEM",
        entity_id=item_id,
        details=f"Item removido: {item.name}",
        changes={"before": {"name": item.name, "price": item.price}},
    )
    db.flush()


def set_item_approved(
    db: Session, order: models.ServiceOrder, actor: Actor, item_id: str, approved: bool
) -> models.ServiceItem:
    sm.assert_items_mutable(order)
    item = _find_item(order, item_id)
    if not approved and item.severity == ItemSeverity.CRITICAL.value:
        raise ValidationError("Itens criticos nao podem ser recusados.", field="items")
    if item.approved != approved:
        item.approved = approved
        recompute_total(order)
        order.updated_at = utcnow()
        audit.record_order_event(
            db,
            order,
            action="ITEM_UPDATED",
            actor=actor,
            entity_type="ITEM",
            entity_id=item_id,
            details=f"Item {'aprovado' if approved else 'recusado'}: {item.name}",
            changes={"before": {"approved": not approved}, "after": {"approved": approved}},
        )
        db.flush()
    return item


def apply_approval_snapshot(order: models.ServiceOrder, snapshot: list[dict], rejected: bool) -> Decimal:
    """Copy the customer's choices back onto the live items.

    Used by the orchestrator right before the APPROVED/REJECTED transition, while
    the order is still AWAITING_APPROVAL and the items are mutable. Items that were
    not part of the approved snapshot are left out of the total.
    """
    choices = {entry["id"]: bool(entry.get("approved")) for entry in snapshot}
    for item in order.items:
        item.approved = False if rejected else choices.get(item.id, False)
    return recompute_total(order)


def add_checklist_entry(
    db: Session,
    order: models.ServiceOrder,
    actor: Actor,
    *,
    label: str,
    checked: bool = True,
    notes: Optional[str] = None,
) -> models.ChecklistItem:
    sm.assert_not_terminal(order)
    if not (label or "").strip():
        raise ValidationError("Informe o item do checklist.", field="label")
    entry = models.ChecklistItem(
        label=label.strip(),
        checked=checked,
        notes=notes,
        position=max((c.position for c in order.checklist), default=0) + 1,
    )
    order.checklist.append(entry)
    order.updated_at = utcnow()
    audit.record_order_event(
        db,
        order,
        action="CHECKLIST_ADDED",
        actor=actor,
        entity_type="CHECKLIST",
        details=f"Checklist: {entry.label}",
    )
    db.flush()
    return entry


def remove_checklist_entry(db: Session, order: models.ServiceOrder, actor: Actor, entry_id: str) -> None:
    sm.assert_not_terminal(order)
    entry = next((c for c in order.checklist if c.id == entry_id), None)
    if entry is None:
        raise NotFound("Item de checklist nao encontrado")
    order.checklist.remove(entry)
    order.updated_at = utcnow()
    audit.record_order_event(
        db,
        order,
        action="CHECKLIST_REMOVED",
        actor=actor,
        entity_type="CHECKLIST",
        entity_id=entry_id,
        details=f"Checklist removido: {entry.label}",
    )
    db.flush()


def item_to_dict(item: models.ServiceItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "price": f"{Decimal(str(item.price)):.2f}",
        "approved": item.approved,
        "required": item.required,
        "severity": item.severity,
    }


def order_snapshot(order: models.ServiceOrder) -> dict:
    status = OrderStatus(order.status)
    return {
        "id": order.id,
        "protocol": order_protocol(order.id),
        "tenant_id": order.tenant_id,
        "customer_id": order.customer_id,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "device": order.device,
        "status": status.value,
        "status_label": ORDER_STATUS_LABELS[status],
        "allowed_transitions": [s.value for s in sm.allowed_targets(status)],
        "total_value": f"{Decimal(str(order.total_value)):.2f}",
        "technical_notes": order.technical_notes,
        "items": [item_to_dict(item) for item in order.items],
        "checklist": [
            {"id": c.id, "label": c.label, "checked": c.checked, "notes": c.notes}
            for c in order.checklist
        ],
        "status_history": [
            {
                "from": h.from_status,
                "to": h.to_status,
                "timestamp": h.created_at,
                "actor": h.changed_by_name,
                "reason": h.reason,
            }
            for h in order.status_history
        ],
        "audit_log": [audit.entry_to_dict(entry) for entry in order.audit_log],
        "version": order.version,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }
