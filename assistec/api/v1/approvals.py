from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from assistec.core.errors import NotFound
from assistec.core.security import get_current_user, require_functions
from assistec.db import models
from assistec.db.session import get_db, unit_of_work
from assistec.services import approvals, orchestration, orders, receipts
from assistec.services.approvals import SignaturePayload
from assistec.services.audit import Actor, ClientInfo

router = APIRouter(tags=["Approvals"])


class ApprovalCreate(BaseModel):
    item_ids: Optional[list[str]] = None
    description: str = ""


class InPersonApproval(BaseModel):
    signed_name: str
    signature_image: str
    confirmation_checked: bool
    signer_document: Optional[str] = None
    choices: Optional[dict[str, bool]] = None


def _outcome_response(outcome) -> dict:
    return {
        "approval": approvals.approval_to_dict(outcome.result.approval),
        "order": orders.order_snapshot(outcome.transition.order),
        "warnings": outcome.transition.warnings,
    }


@router.post("/orders/{order_id}/approvals", status_code=status.HTTP_201_CREATED)
def create_approval_request(
    order_id: str,
    payload: ApprovalCreate,
    request: Request,
    current_user: models.User = Depends(require_functions("BALCAO")),
    db: Session = Depends(get_db),
):
    actor = Actor.from_user(current_user)
    with unit_of_work(db):
        order = orders.get_order(db, actor, order_id)
        created = orchestration.request_approval(
            db,
            order,
            actor,
            item_ids=payload.item_ids,
            description=payload.description,
            client=ClientInfo.from_request(request),
        )
    notification = created.notification
    return {
        "approval": approvals.approval_to_dict(created.approval),
        "token": created.token,
        "link": created.link,
        "whatsapp_link": notification.link if notification else None,
    }


@router.get("/orders/{order_id}/approval")
def latest_approval(
    order_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = orders.get_order(db, Actor.from_user(current_user), order_id)
    approval = approvals.latest_approval(db, order)
    if approval is None:
        raise NotFound("Nenhuma aprovacao registrada para esta OS")
    return approvals.approval_to_dict(approval)


@router.post("/orders/{order_id}/approvals/in-person")
def register_in_person_approval(
    order_id: str,
    payload: InPersonApproval,
    request: Request,
    current_user: models.User = Depends(require_functions("BALCAO")),
    db: Session = Depends(get_db),
):
    actor = Actor.from_user(current_user)
    signature = SignaturePayload(
        signed_name=payload.signed_name,
        signature_image=payload.signature_image,
        confirmation_checked=payload.confirmation_checked,
        signer_document=payload.signer_document,
    )
    with unit_of_work(db):
        order = orders.get_order(db, actor, order_id)
        outcome = orchestration.register_in_person_approval(
            db,
            order,
            actor,
            signature,
            choices=payload.choices,
            client=ClientInfo.from_request(request),
        )
    return _outcome_response(outcome)


@router.post("/orders/{order_id}/approvals/physical")
def register_physical_approval(
    order_id: str,
    request: Request,
    file: UploadFile = File(...),
    signed_name: Optional[str] = Form(None),
    signer_document: Optional[str] = Form(None),
    current_user: models.User = Depends(require_functions("BALCAO")),
    db: Session = Depends(get_db),
):
    actor = Actor.from_user(current_user)
    data = file.file.read()
    with unit_of_work(db):
        order = orders.get_order(db, actor, order_id)
        outcome = orchestration.register_physical_approval(
            db,
            order,
            actor,
            data=data,
            file_name=file.filename,
            mime=file.content_type,
            signed_name=signed_name,
            signer_document=signer_document,
            client=ClientInfo.from_request(request),
        )
    return _outcome_response(outcome)


@router.get("/orders/{order_id}/approval-term.pdf")
def approval_term(
    order_id: str,
    current_user: models.User = Depends(require_functions("BALCAO")),
    db: Session = Depends(get_db),
):
    order = orders.get_order(db, Actor.from_user(current_user), order_id)
    pdf_bytes = receipts.render_approval_term(order)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="termo-{orders.order_protocol(order.id)}.pdf"'},
    )


@router.get("/approvals/{approval_id}/receipt")
def approval_receipt(
    approval_id: str,
    regenerate: bool = False,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        url = receipts.ensure_receipt(
            db, Actor.from_user(current_user), approval_id, regenerate=regenerate
        )
    return {"url": url}
