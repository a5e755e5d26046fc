from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from assistec.core.security import get_current_user
from assistec.db import models
from assistec.db.session import get_db
from assistec.services import audit
from assistec.services.audit import Actor

router = APIRouter(tags=["Audit"])


@router.get("/audit-logs")
def list_audit_logs(
    order_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    tenant_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    entries = audit.list_entries(
        db,
        Actor.from_user(current_user),
        order_id=order_id,
        entity_type=entity_type,
        tenant_id=tenant_id,
        limit=limit,
    )
    return [audit.entry_to_dict(entry) for entry in entries]
