"""order lifecycle, approvals, evidence and payments

Revision ID: 0001_order_lifecycle
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_order_lifecycle"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str = "created_at", nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(), nullable=nullable, server_default=sa.text("(CURRENT_TIMESTAMP)"))


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("cnpj", sa.String(), nullable=True),
        sa.Column("address", sa.String(), nullable=True),
        sa.Column("whatsapp", sa.String(), nullable=True),
        sa.Column("logo_url", sa.String(), nullable=True),
        sa.Column("warranty_terms", sa.Text(), nullable=True),
        sa.Column("approval_template", sa.Text(), nullable=True),
        sa.Column("pickup_template", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="ATIVO"),
        _timestamp(),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("login", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("functions", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        _timestamp(),
        sa.UniqueConstraint("tenant_id", "login", name="uq_tenant_login"),
    )

    op.create_table(
        "service_orders",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("customer_id", sa.String(), nullable=True),
        sa.Column("customer_name", sa.String(), nullable=False),
        sa.Column("customer_phone", sa.String(), nullable=True),
        sa.Column("device", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="DRAFT"),
        sa.Column("total_value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("technical_notes", sa.Text(), nullable=True),
        sa.Column("technician_id", sa.String(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _timestamp(),
        _timestamp("updated_at"),
    )
    op.create_index("ix_service_orders_tenant_id", "service_orders", ["tenant_id"])

    op.create_table(
        "service_items",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("order_id", sa.String(), sa.ForeignKey("service_orders.id"), nullable=False),
        sa.Column("catalog_item_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("approved", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("severity", sa.String(), nullable=False, server_default="critical"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        _timestamp(),
    )
    op.create_index("ix_service_items_order_id", "service_items", ["order_id"])

    op.create_table(
        "checklist_items",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("order_id", sa.String(), sa.ForeignKey("service_orders.id"), nullable=False),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("checked", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        _timestamp(),
    )
    op.create_index("ix_checklist_items_order_id", "checklist_items", ["order_id"])

    op.create_table(
        "status_history",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("order_id", sa.String(), sa.ForeignKey("service_orders.id"), nullable=False),
        sa.Column("from_status", sa.String(), nullable=False),
        sa.Column("to_status", sa.String(), nullable=False),
        sa.Column("changed_by", sa.String(), nullable=True),
        sa.Column("changed_by_name", sa.String(), nullable=True),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        _timestamp(),
    )
    op.create_index("ix_status_history_order_id", "status_history", ["order_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=True),
        sa.Column("order_id", sa.String(), sa.ForeignKey("service_orders.id"), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=True),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("actor_name", sa.String(), nullable=True),
        sa.Column("actor_role", sa.String(), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("ip", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=True),
        _timestamp(),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    op.create_index("ix_audit_logs_order_id", "audit_logs", ["order_id"])

    op.create_table(
        "evidence",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("order_id", sa.String(), sa.ForeignKey("service_orders.id"), nullable=False),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("stage", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("thumb_url", sa.String(), nullable=True),
        sa.Column("file_name", sa.String(), nullable=True),
        sa.Column("mime", sa.String(), nullable=True),
        sa.Column("size", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("file_hash", sa.String(64), nullable=False),
        sa.Column("uploaded_by", sa.String(), nullable=True),
        sa.Column("uploaded_by_name", sa.String(), nullable=True),
        sa.Column("lifecycle", sa.String(), nullable=False, server_default="ACTIVE"),
        sa.Column("retired_at", sa.DateTime(), nullable=True),
        sa.Column("retired_by", sa.String(), nullable=True),
        _timestamp(),
    )
    op.create_index("ix_evidence_order_id", "evidence", ["order_id"])

    op.create_table(
        "service_approvals",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("order_id", sa.String(), sa.ForeignKey("service_orders.id"), nullable=False),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("token_hash", sa.String(), nullable=False, unique=True),
        sa.Column("type", sa.String(), nullable=False, server_default="ORCAMENTO"),
        sa.Column("status", sa.String(), nullable=False, server_default="PENDING"),
        sa.Column("approval_method", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("items_snapshot", sa.JSON(), nullable=False),
        sa.Column("total_value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("warranty_terms", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        _timestamp(),
        sa.Column("responded_at", sa.DateTime(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.Column("signer_document", sa.String(), nullable=True),
        sa.Column("digital_signature_id", sa.String(), nullable=True),
        sa.Column("evidence_id", sa.String(), sa.ForeignKey("evidence.id"), nullable=True),
        sa.Column("receipt_url", sa.String(), nullable=True),
        sa.Column("verification_hash", sa.String(), nullable=True),
    )
    op.create_index("ix_service_approvals_order_id", "service_approvals", ["order_id"])
    op.create_index(
        "ix_service_approvals_verification_hash", "service_approvals", ["verification_hash"], unique=True
    )

    op.create_table(
        "digital_signatures",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("approval_id", sa.String(), sa.ForeignKey("service_approvals.id"), nullable=False, unique=True),
        sa.Column("kind", sa.String(), nullable=False, server_default="DRAWN"),
        sa.Column("signature_image", sa.Text(), nullable=True),
        sa.Column("document_evidence_id", sa.String(), sa.ForeignKey("evidence.id"), nullable=True),
        sa.Column("signed_name", sa.String(), nullable=False),
        sa.Column("signer_document", sa.String(), nullable=True),
        sa.Column("confirmation_checked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        _timestamp("signed_at"),
    )

    op.create_table(
        "service_payments",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("order_id", sa.String(), sa.ForeignKey("service_orders.id"), nullable=False),
        sa.Column("tenant_id", sa.String(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("received_by", sa.String(), nullable=True),
        sa.Column("received_by_id", sa.String(), nullable=True),
        _timestamp("paid_at"),
    )
    op.create_index("ix_service_payments_order_id", "service_payments", ["order_id"])


def downgrade() -> None:
    op.drop_index("ix_service_payments_order_id", table_name="service_payments")
    op.drop_table("service_payments")
    op.drop_table("digital_signatures")
    op.drop_index("ix_service_approvals_verification_hash", table_name="service_approvals")
    op.drop_index("ix_service_approvals_order_id", table_name="service_approvals")
    op.drop_table("service_approvals")
    op.drop_index("ix_evidence_order_id", table_name="evidence")
    op.drop_table("evidence")
    op.drop_index("ix_audit_logs_order_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_tenant_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_status_history_order_id", table_name="status_history")
    op.drop_table("status_history")
    op.drop_index("ix_checklist_items_order_id", table_name="checklist_items")
    op.drop_table("checklist_items")
    op.drop_index("ix_service_items_order_id", table_name="service_items")
    op.drop_table("service_items")
    op.drop_index("ix_service_orders_tenant_id", table_name="service_orders")
    op.drop_table("service_orders")
    op.drop_table("users")
    op.drop_table("tenants")
