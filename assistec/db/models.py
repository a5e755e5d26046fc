import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from assistec.core.clock import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    cnpj = Column(String, nullable=True)
    address = Column(String, nullable=True)
    whatsapp = Column(String, nullable=True)
    logo_url = Column(String, nullable=True)
    warranty_terms = Column(Text, nullable=True)
    approval_template = Column(Text, nullable=True)
    pickup_template = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="ATIVO")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    users = relationship("User", back_populates="tenant", cascade="all, delete-orphan")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("tenant_id", "login", name="uq_tenant_login"),)

    id = Column(String, primary_key=True, default=_uuid)
    # SUPER_ADMIN users are not bound to a tenant.
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=True)
    name = Column(String, nullable=False)
    login = Column(String, nullable=False)
    email = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False)
    functions = Column(JSON, nullable=False, default=list)
    status = Column(String, nullable=False, default="active")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="users")


class ServiceOrder(Base):
    __tablename__ = "service_orders"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    customer_id = Column(String, nullable=True)
    customer_name = Column(String, nullable=False)
    customer_phone = Column(String, nullable=True)
    device = Column(String, nullable=False)
    status = Column(String, nullable=False, default="DRAFT")
    total_value = Column(Numeric(12, 2), nullable=False, default=0)
    technical_notes = Column(Text, nullable=True)
    technician_id = Column(String, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    tenant = relationship("Tenant")
    items = relationship(
        "ServiceItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="ServiceItem.position",
    )
    checklist = relationship(
        "ChecklistItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="ChecklistItem.position",
    )
    status_history = relationship(
        "StatusHistoryEntry",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="StatusHistoryEntry.position.desc()",
    )
    audit_log = relationship(
        "AuditLog",
        back_populates="order",
        order_by="AuditLog.position.desc()",
    )
    evidence = relationship(
        "Evidence",
        back_populates="order",
        order_by="Evidence.created_at",
    )
    payments = relationship(
        "ServicePayment",
        back_populates="order",
        order_by="ServicePayment.paid_at.desc()",
    )

    __mapper_args__ = {"version_id_col": version}


class ServiceItem(Base):
    __tablename__ = "service_items"

    id = Column(String, primary_key=True, default=_uuid)
    order_id = Column(String, ForeignKey("service_orders.id"), nullable=False, index=True)
    catalog_item_id = Column(String, nullable=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    approved = Column(Boolean, nullable=False, default=True)
    required = Column(Boolean, nullable=False, default=False)
    severity = Column(String, nullable=False, default="critical")
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("ServiceOrder", back_populates="items")


class ChecklistItem(Base):
    __tablename__ = "checklist_items"

    id = Column(String, primary_key=True, default=_uuid)
    order_id = Column(String, ForeignKey("service_orders.id"), nullable=False, index=True)
    label = Column(String, nullable=False)
    checked = Column(Boolean, nullable=False, default=True)
    notes = Column(String, nullable=True)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("ServiceOrder", back_populates="checklist")


class StatusHistoryEntry(Base):
    __tablename__ = "status_history"

    id = Column(String, primary_key=True, default=_uuid)
    order_id = Column(String, ForeignKey("service_orders.id"), nullable=False, index=True)
    from_status = Column(String, nullable=False)
    to_status = Column(String, nullable=False)
    changed_by = Column(String, nullable=True)
    changed_by_name = Column(String, nullable=True)
    reason = Column(String, nullable=True)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("ServiceOrder", back_populates="status_history")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=_uuid)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=True, index=True)
    order_id = Column(String, ForeignKey("service_orders.id"), nullable=True, index=True)
    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=True)
    actor_id = Column(String, nullable=True)
    actor_name = Column(String, nullable=True)
    actor_role = Column(String, nullable=True)
    details = Column(Text, nullable=True)
    changes = Column(JSON, nullable=True)
    ip = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    position = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("ServiceOrder", back_populates="audit_log")


class ServiceApproval(Base):
    __tablename__ = "service_approvals"

    id = Column(String, primary_key=True, default=_uuid)
    order_id = Column(String, ForeignKey("service_orders.id"), nullable=False, index=True)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False)
    token_hash = Column(String, nullable=False, unique=True)
    type = Column(String, nullable=False, default="ORCAMENTO")
    status = Column(String, nullable=False, default="PENDING")
    approval_method = Column(String, nullable=True)
    description = Column(Text, nullable=False, default="")
    items_snapshot = Column(JSON, nullable=False, default=list)
    total_value = Column(Numeric(12, 2), nullable=False, default=0)
    warranty_terms = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    responded_at = Column(DateTime, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    rejection_reason = Column(String, nullable=True)
    signer_document = Column(String, nullable=True)
    digital_signature_id = Column(String, nullable=True)
    evidence_id = Column(String, ForeignKey("evidence.id"), nullable=True)
    receipt_url = Column(String, nullable=True)
    verification_hash = Column(String, nullable=True, unique=True, index=True)

    order = relationship("ServiceOrder")
    signature = relationship(
        "DigitalSignature",
        primaryjoin="foreign(ServiceApproval.digital_signature_id) == DigitalSignature.id",
        viewonly=True,
    )


class DigitalSignature(Base):
    __tablename__ = "digital_signatures"

    id = Column(String, primary_key=True, default=_uuid)
    approval_id = Column(String, ForeignKey("service_approvals.id"), nullable=False, unique=True)
    kind = Column(String, nullable=False, default="DRAWN")
    signature_image = Column(Text, nullable=True)
    document_evidence_id = Column(String, ForeignKey("evidence.id"), nullable=True)
    signed_name = Column(String, nullable=False)
    signer_document = Column(String, nullable=True)
    confirmation_checked = Column(Boolean, nullable=False, default=False)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    signed_at = Column(DateTime, default=utcnow, nullable=False)

    document_evidence = relationship("Evidence", foreign_keys=[document_evidence_id])


class Evidence(Base):
    __tablename__ = "evidence"

    id = Column(String, primary_key=True, default=_uuid)
    order_id = Column(String, ForeignKey("service_orders.id"), nullable=False, index=True)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False)
    stage = Column(String, nullable=False)
    url = Column(String, nullable=False)
    thumb_url = Column(String, nullable=True)
    file_name = Column(String, nullable=True)
    mime = Column(String, nullable=True)
    size = Column(Integer, nullable=True)
    description = Column(Text, nullable=False, default="")
    file_hash = Column(String(64), nullable=False)
    uploaded_by = Column(String, nullable=True)
    uploaded_by_name = Column(String, nullable=True)
    lifecycle = Column(String, nullable=False, default="ACTIVE")
    retired_at = Column(DateTime, nullable=True)
    retired_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("ServiceOrder", back_populates="evidence")

    @property
    def active(self) -> bool:
        return self.lifecycle == "ACTIVE"


class ServicePayment(Base):
    __tablename__ = "service_payments"

    id = Column(String, primary_key=True, default=_uuid)
    order_id = Column(String, ForeignKey("service_orders.id"), nullable=False, index=True)
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String, nullable=False)
    notes = Column(String, nullable=True)
    received_by = Column(String, nullable=True)
    received_by_id = Column(String, nullable=True)
    paid_at = Column(DateTime, default=utcnow, nullable=False)

    order = relationship("ServiceOrder", back_populates="payments")
