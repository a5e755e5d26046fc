import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from assistec.core import authorization
from assistec.core.clock import utcnow
from assistec.db import models

logger = logging.getLogger("assistec.audit")

SENSITIVE_KEYS = {"password", "password_hash", "signature_image", "token"}


@dataclass(frozen=True)
class Actor:
    id: str
    name: str
    role: str
    tenant_id: Optional[str] = None

    @classmethod
    def from_user(cls, user: models.User) -> "Actor":
        return cls(id=user.id, name=user.name, role=user.role, tenant_id=user.tenant_id)

    @classmethod
    def customer(cls, tenant_id: Optional[str] = None) -> "Actor":
        return cls(id="CUSTOMER", name="Cliente (Via Web)", role="CUSTOMER", tenant_id=tenant_id)

    @classmethod
    def system(cls) -> "Actor":
        return cls(id="SYSTEM", name="Sistema", role="SYSTEM")

    @property
    def is_super_admin(self) -> bool:
        return authorization.is_super_admin(self)

    @property
    def is_privileged(self) -> bool:
        return authorization.is_privileged(self)


@dataclass(frozen=True)
class ClientInfo:
    ip: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request) -> "ClientInfo":
        return cls(
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )


def sanitize_changes(changes: Optional[dict]) -> Optional[dict]:
    if not changes:
        return changes

    def _clean(value: Any) -> Any:
        if isinstance(value, dict):
            return {
                key: ("[REDACTED]" if key in SENSITIVE_KEYS else _clean(item))
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [_clean(item) for item in value]
        if isinstance(value, Decimal):
            return f"{value:.2f}"
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return value

    return _clean(changes)


def build_entry(
    *,
    tenant_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: Optional[str],
    actor: Actor,
    details: str,
    changes: Optional[dict] = None,
    client: Optional[ClientInfo] = None,
    order_id: Optional[str] = None,
) -> models.AuditLog:
    """Unattached entry; callers either add it or hand it to a DomainError."""
    return models.AuditLog(
        tenant_id=tenant_id,
        order_id=order_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor.id,
        actor_name=actor.name,
        actor_role=actor.role,
        details=details,
        changes=sanitize_changes(changes),
        ip=client.ip if client else None,
        user_agent=client.user_agent if client else None,
        created_at=utcnow(),
    )


def record(
    db: Session,
    *,
    tenant_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: Optional[str],
    actor: Actor,
    details: str,
    changes: Optional[dict] = None,
    client: Optional[ClientInfo] = None,
) -> models.AuditLog:
    entry = build_entry(
        tenant_id=tenant_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor=actor,
        details=details,
        changes=changes,
        client=client,
    )
    db.add(entry)
    return entry


def record_order_event(
    db: Session,
    order: models.ServiceOrder,
    *,
    action: str,
    actor: Actor,
    details: str,
    entity_type: str = "ORDER",
    entity_id: Optional[str] = None,
    changes: Optional[dict] = None,
    client: Optional[ClientInfo] = None,
) -> models.AuditLog:
    entry = build_entry(
        tenant_id=order.tenant_id,
        order_id=order.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id or order.id,
        actor=actor,
        details=details,
        changes=changes,
        client=client,
    )
    entry.position = len(order.audit_log) + 1
    order.audit_log.insert(0, entry)
    db.add(entry)
    logger.info("audit action=%s order=%s actor=%s", action, order.id, actor.id)
    return entry


def list_entries(
    db: Session,
    actor: Actor,
    *,
    order_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    tenant_id: Optional[str] = None,
    limit: int = 100,
) -> list[models.AuditLog]:
    query = authorization.apply_tenant_scope(db.query(models.AuditLog), actor, models.AuditLog.tenant_id)
    if actor.is_super_admin and tenant_id:
        query = query.filter(models.AuditLog.tenant_id == tenant_id)
    if order_id:
        query = query.filter(models.AuditLog.order_id == order_id)
    if entity_type:
        query = query.filter(models.AuditLog.entity_type == entity_type)
    return query.order_by(models.AuditLog.created_at.desc()).limit(limit).all()


def entry_to_dict(entry: models.AuditLog) -> dict:
    return {
        "id": entry.id,
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "order_id": entry.order_id,
        "actor_name": entry.actor_name,
        "actor_role": entry.actor_role,
        "details": entry.details,
        "changes": entry.changes,
        "timestamp": entry.created_at,
    }
