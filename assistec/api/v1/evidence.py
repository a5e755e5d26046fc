from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from sqlalchemy.orm import Session

from assistec.core.security import get_current_user, require_any_function
from assistec.db import models
from assistec.db.session import get_db, unit_of_work
from assistec.services import evidence, orders
from assistec.services.audit import Actor, ClientInfo

router = APIRouter(tags=["Evidence"])


@router.post("/orders/{order_id}/evidence", status_code=status.HTTP_201_CREATED)
def upload_evidence(
    order_id: str,
    request: Request,
    file: UploadFile = File(...),
    stage: str = Form(...),
    description: str = Form(""),
    current_user: models.User = Depends(require_any_function("BALCAO", "BANCADA")),
    db: Session = Depends(get_db),
):
    actor = Actor.from_user(current_user)
    data = file.file.read()
    with unit_of_work(db):
        order = orders.get_order(db, actor, order_id)
        record = evidence.upload_evidence(
            db,
            order,
            actor,
            data=data,
            stage=stage,
            description=description,
            file_name=file.filename,
            mime=file.content_type,
            client=ClientInfo.from_request(request),
        )
    return evidence.evidence_to_dict(record)


@router.get("/orders/{order_id}/evidence")
def list_evidence(
    order_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = orders.get_order(db, Actor.from_user(current_user), order_id)
    return [
        {
            "stage": group["stage"],
            "label": group["label"],
            "evidence": [evidence.evidence_to_dict(record) for record in group["evidence"]],
        }
        for group in evidence.list_active_evidence(order)
    ]


@router.get("/evidence/{evidence_id}")
def get_evidence(
    evidence_id: str,
    request: Request,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        record = evidence.get_evidence(
            db, Actor.from_user(current_user), evidence_id, ClientInfo.from_request(request)
        )
    return evidence.evidence_to_dict(record)


@router.get("/evidence/{evidence_id}/verify")
def verify_evidence(
    evidence_id: str,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        result = evidence.verify_evidence_digest(db, Actor.from_user(current_user), evidence_id)
    return result


@router.delete("/evidence/{evidence_id}")
def retire_evidence(
    evidence_id: str,
    request: Request,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        record = evidence.retire_evidence(
            db, Actor.from_user(current_user), evidence_id, ClientInfo.from_request(request)
        )
    return evidence.evidence_to_dict(record)
