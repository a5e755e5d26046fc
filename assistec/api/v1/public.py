from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from assistec.core.constants import ApprovalDecision
from assistec.db.session import get_db, unit_of_work
from assistec.services import approvals, orchestration, receipts
from assistec.services.approvals import SignaturePayload
from assistec.services.audit import ClientInfo

router = APIRouter(prefix="/public", tags=["Public"])


class DecisionRequest(BaseModel):
    decision: ApprovalDecision
    signed_name: Optional[str] = None
    signature_image: Optional[str] = None
    confirmation_checked: bool = False
    signer_document: Optional[str] = None
    choices: Optional[dict[str, bool]] = None
    rejection_reason: Optional[str] = None


@router.get("/approvals/{token}")
def get_approval(token: str, db: Session = Depends(get_db)):
    approval = approvals.get_approval_by_token(db, token)
    return approvals.build_approval_view(approval)


@router.post("/approvals/{token}/decision")
def submit_decision(
    token: str,
    payload: DecisionRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    signature = None
    if payload.decision == ApprovalDecision.APPROVE:
        signature = SignaturePayload(
            signed_name=payload.signed_name or "",
            signature_image=payload.signature_image,
            confirmation_checked=payload.confirmation_checked,
            signer_document=payload.signer_document,
        )
    with unit_of_work(db):
        outcome = orchestration.submit_approval_decision(
            db,
            token,
            payload.decision,
            signature=signature,
            choices=payload.choices,
            rejection_reason=payload.rejection_reason,
            client=ClientInfo.from_request(request),
        )
    approval = outcome.result.approval
    return {
        "status": approval.status,
        "total_value": approvals.build_approval_view(approval)["total_value"],
        "verification_hash": approval.verification_hash,
        "verification_url": (
            receipts.verification_url(approval.verification_hash) if approval.verification_hash else None
        ),
    }


@router.get("/verify/{verification_hash}")
def verify(verification_hash: str, request: Request, db: Session = Depends(get_db)):
    with unit_of_work(db):
        summary = receipts.verify(db, verification_hash, ClientInfo.from_request(request))
    return summary
