from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from assistec.core.constants import PaymentMethod
from assistec.core.security import get_current_user, require_functions
from assistec.db import models
from assistec.db.session import get_db, unit_of_work
from assistec.services import orchestration, orders, payments
from assistec.services.audit import Actor, ClientInfo

router = APIRouter(tags=["Payments"])


class PaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    method: PaymentMethod
    notes: Optional[str] = None


def _ledger(order: models.ServiceOrder) -> dict:
    return {
        "payments": [payments.payment_to_dict(p) for p in order.payments],
        **payments.withdrawal_check(order),
    }


@router.post("/orders/{order_id}/payments", status_code=status.HTTP_201_CREATED)
def record_payment(
    order_id: str,
    payload: PaymentCreate,
    request: Request,
    current_user: models.User = Depends(require_functions("BALCAO")),
    db: Session = Depends(get_db),
):
    actor = Actor.from_user(current_user)
    with unit_of_work(db):
        order = orders.get_order(db, actor, order_id)
        payment, transition = orchestration.record_payment_and_settle(
            db,
            order,
            actor,
            amount=payload.amount,
            method=payload.method,
            notes=payload.notes,
            client=ClientInfo.from_request(request),
        )
    return {
        "payment": payments.payment_to_dict(payment),
        "status": order.status,
        "settled": transition is not None,
        **payments.withdrawal_check(order),
    }


@router.get("/orders/{order_id}/payments")
def list_payments(
    order_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = orders.get_order(db, Actor.from_user(current_user), order_id)
    return _ledger(order)


@router.delete("/payments/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment(
    payment_id: str,
    request: Request,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        payments.delete_payment(
            db, Actor.from_user(current_user), payment_id, ClientInfo.from_request(request)
        )
    return None
