from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from assistec.core.constants import ItemSeverity, OrderStatus
from assistec.core.security import get_current_user, require_any_function, require_functions
from assistec.db import models
from assistec.db.session import get_db, unit_of_work
from assistec.services import orchestration, orders, payments
from assistec.services.audit import Actor, ClientInfo

router = APIRouter(tags=["Orders"])


class OrderCreate(BaseModel):
    customer_name: str
    device: str
    customer_id: Optional[str] = None
    customer_phone: Optional[str] = None
    technical_notes: Optional[str] = None
    tenant_id: Optional[str] = None


class TransitionRequest(BaseModel):
    target: OrderStatus
    reason: Optional[str] = None
    confirm_underpaid: bool = False


class ItemCreate(BaseModel):
    name: str
    price: Decimal = Field(ge=0)
    severity: ItemSeverity = ItemSeverity.CRITICAL
    description: Optional[str] = None
    required: bool = False
    catalog_item_id: Optional[str] = None


class ItemToggle(BaseModel):
    approved: bool


class ChecklistCreate(BaseModel):
    label: str
    checked: bool = True
    notes: Optional[str] = None


class WithdrawalRequest(BaseModel):
    confirm_underpaid: bool = False
    reason: Optional[str] = None


def _transition_response(result) -> dict:
    return {"order": orders.order_snapshot(result.order), "warnings": result.warnings}


@router.post("/orders", status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderCreate,
    request: Request,
    current_user: models.User = Depends(require_functions("BALCAO")),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        order = orders.create_order(
            db,
            Actor.from_user(current_user),
            client=ClientInfo.from_request(request),
            **payload.model_dump(),
        )
    db.refresh(order)
    return orders.order_snapshot(order)


@router.get("/orders/{order_id}")
def get_order(
    order_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = orders.get_order(db, Actor.from_user(current_user), order_id)
    return orders.order_snapshot(order)


@router.get("/orders/{order_id}/transitions")
def list_transitions(
    order_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = orders.get_order(db, Actor.from_user(current_user), order_id)
    snapshot = orders.order_snapshot(order)
    return {"status": snapshot["status"], "allowed": snapshot["allowed_transitions"]}


@router.post("/orders/{order_id}/transitions")
def request_transition(
    order_id: str,
    payload: TransitionRequest,
    request: Request,
    current_user: models.User = Depends(require_any_function("BALCAO", "BANCADA")),
    db: Session = Depends(get_db),
):
    actor = Actor.from_user(current_user)
    with unit_of_work(db):
        order = orders.get_order(db, actor, order_id)
        result = orchestration.transition_order(
            db,
            order,
            payload.target,
            actor,
            payload.reason,
            confirm_underpaid=payload.confirm_underpaid,
            client=ClientInfo.from_request(request),
        )
    return _transition_response(result)


@router.post("/orders/{order_id}/items", status_code=status.HTTP_201_CREATED)
def add_item(
    order_id: str,
    payload: ItemCreate,
    current_user: models.User = Depends(require_functions("BALCAO")),
    db: Session = Depends(get_db),
):
    actor = Actor.from_user(current_user)
    with unit_of_work(db):
        order = orders.get_order(db, actor, order_id)
        item = orders.add_item(db, order, actor, **payload.model_dump())
    return {"item": orders.item_to_dict(item), "total_value": f"{Decimal(str(order.total_value)):.2f}"}


@router.patch("/orders/{order_id}/items/{item_id}")
def toggle_item(
    order_id: str,
    item_id: str,
    payload: ItemToggle,
    current_user: models.User = Depends(require_functions("BALCAO")),
    db: Session = Depends(get_db),
):
    actor = Actor.from_user(current_user)
    with unit_of_work(db):
        order = orders.get_order(db, actor, order_id)
        item = orders.set_item_approved(db, order, actor, item_id, payload.approved)
    return {"item": orders.item_to_dict(item), "total_value": f"{Decimal(str(order.total_value)):.2f}"}


@router.delete("/orders/{order_id}/items/{item_id}")
def remove_item(
    order_id: str,
    item_id: str,
    current_user: models.User = Depends(require_functions("BALCAO")),
    db: Session = Depends(get_db),
):
    actor = Actor.from_user(current_user)
    with unit_of_work(db):
        order = orders.get_order(db, actor, order_id)
        orders.remove_item(db, order, actor, item_id)
    return {"total_value": f"{Decimal(str(order.total_value)):.2f}"}


@router.post("/orders/{order_id}/checklist", status_code=status.HTTP_201_CREATED)
def add_checklist_entry(
    order_id: str,
    payload: ChecklistCreate,
    current_user: models.User = Depends(require_any_function("BALCAO", "BANCADA")),
    db: Session = Depends(get_db),
):
    actor = Actor.from_user(current_user)
    with unit_of_work(db):
        order = orders.get_order(db, actor, order_id)
        entry = orders.add_checklist_entry(db, order, actor, **payload.model_dump())
    return {"id": entry.id, "label": entry.label, "checked": entry.checked, "notes": entry.notes}


@router.delete("/orders/{order_id}/checklist/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_checklist_entry(
    order_id: str,
    entry_id: str,
    current_user: models.User = Depends(require_any_function("BALCAO", "BANCADA")),
    db: Session = Depends(get_db),
):
    actor = Actor.from_user(current_user)
    with unit_of_work(db):
        order = orders.get_order(db, actor, order_id)
        orders.remove_checklist_entry(db, order, actor, entry_id)
    return None


@router.post("/orders/{order_id}/withdrawal")
def confirm_withdrawal(
    order_id: str,
    payload: WithdrawalRequest,
    request: Request,
    current_user: models.User = Depends(require_functions("BALCAO")),
    db: Session = Depends(get_db),
):
    actor = Actor.from_user(current_user)
    with unit_of_work(db):
        order = orders.get_order(db, actor, order_id)
        result = orchestration.confirm_withdrawal(
            db,
            order,
            actor,
            confirm_underpaid=payload.confirm_underpaid,
            reason=payload.reason,
            client=ClientInfo.from_request(request),
        )
    response = _transition_response(result)
    response["payments"] = payments.withdrawal_check(result.order)
    return response
