"""production settlement, inventory ledger, insights, event bus

Revision ID: 0001_production_settlement
Revises:
Create Date: 2026-10-19T09:00:00Z
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_production_settlement"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "inv_product",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=True),
        sa.Column("unit", sa.String(length=16), nullable=False, server_default="pza"),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint("stock >= 0", name="ck_inv_product_stock_non_negative"),
    )
    op.create_index("ix_inv_product_organization_id", "inv_product", ["organization_id"])
    op.create_index("ix_inv_product_sku", "inv_product", ["sku"])

    op.create_table(
        "inv_movement",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("reference_id", sa.String(length=36), nullable=True),
        sa.Column("before_stock", sa.Integer(), nullable=True),
        sa.Column("after_stock", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_inv_movement_organization_id", "inv_movement", ["organization_id"])
    op.create_index("ix_inv_movement_product_id", "inv_movement", ["product_id"])
    op.create_index("ix_inv_movement_type", "inv_movement", ["type"])
    op.create_index("ix_inv_movement_reference_id", "inv_movement", ["reference_id"])
    op.create_index("ix_inv_movement_product_date", "inv_movement", ["product_id", "date"])

    op.create_table(
        "prod_process",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=32), nullable=False, server_default="production"),
        sa.Column("recipe", sa.JSON(), nullable=False),
    )
    op.create_index("ix_prod_process_organization_id", "prod_process", ["organization_id"])
    op.create_index("ix_prod_process_type", "prod_process", ["type"])

    op.create_table(
        "prod_batch",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("process_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_batch_id", sa.String(length=36), nullable=True),
        sa.Column("context", sa.JSON(), nullable=False),
    )
    op.create_index("ix_prod_batch_organization_id", "prod_batch", ["organization_id"])
    op.create_index("ix_prod_batch_process_id", "prod_batch", ["process_id"])
    op.create_index("ix_prod_batch_status", "prod_batch", ["status"])
    op.create_index("ix_prod_batch_started_at", "prod_batch", ["started_at"])
    op.create_index("ix_prod_batch_source_batch_id", "prod_batch", ["source_batch_id"])

    op.create_table(
        "prod_batch_event",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("batch_id", sa.String(length=36), sa.ForeignKey("prod_batch.id"), nullable=False),
        sa.Column("step_id", sa.String(length=64), nullable=True),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_prod_batch_event_batch_id", "prod_batch_event", ["batch_id"])
    op.create_index("ix_prod_batch_event_event_type", "prod_batch_event", ["event_type"])
    op.create_index("ix_prod_event_batch_time", "prod_batch_event", ["batch_id", "timestamp"])

    op.create_table(
        "prod_piecework_ticket",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=True),
        sa.Column("employee_id", sa.String(length=64), nullable=False),
        sa.Column("creator_id", sa.String(length=64), nullable=True),
        sa.Column("task_name", sa.String(length=256), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Integer(), nullable=False),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("approved_by", sa.String(length=64), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attributes", sa.JSON(), nullable=False),
    )
    op.create_index("ix_prod_piecework_ticket_organization_id", "prod_piecework_ticket", ["organization_id"])
    op.create_index("ix_prod_piecework_ticket_batch_id", "prod_piecework_ticket", ["batch_id"])
    op.create_index("ix_prod_piecework_ticket_employee_id", "prod_piecework_ticket", ["employee_id"])
    op.create_index("ix_prod_piecework_ticket_status", "prod_piecework_ticket", ["status"])

    op.create_table(
        "ai_insight",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("impact", sa.String(length=16), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=False),
        sa.Column("acknowledged", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_ai_insight_organization_id", "ai_insight", ["organization_id"])
    op.create_index("ix_ai_insight_type", "ai_insight", ["type"])
    op.create_index("ix_ai_insight_org_ack", "ai_insight", ["organization_id", "acknowledged"])

    op.create_table(
        "sys_audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("organization_id", sa.String(length=64), nullable=True),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("payload", sa.JSON(), nullable=False),
    )
    op.create_index("ix_sys_audit_log_organization_id", "sys_audit_log", ["organization_id"])
    op.create_index("ix_sys_audit_log_actor", "sys_audit_log", ["actor"])
    op.create_index("ix_sys_audit_log_action", "sys_audit_log", ["action"])
    op.create_index("ix_sys_audit_log_entity_type", "sys_audit_log", ["entity_type"])
    op.create_index("ix_sys_audit_log_entity_id", "sys_audit_log", ["entity_id"])
    op.create_index("ix_audit_org_time", "sys_audit_log", ["organization_id", "created_at"])

    op.create_table(
        "outbox_event",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("organization_id", sa.String(length=64), nullable=True),
        sa.Column("topic", sa.String(length=128), nullable=False),
        sa.Column("reference_id", sa.String(length=36), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("handled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_event_organization_id", "outbox_event", ["organization_id"])
    op.create_index("ix_outbox_event_topic", "outbox_event", ["topic"])
    op.create_index("ix_outbox_event_reference_id", "outbox_event", ["reference_id"])
    op.create_index("ix_outbox_topic_created", "outbox_event", ["topic", "created_at"])
    op.create_index("ix_outbox_delivery", "outbox_event", ["delivered", "available_at"])

    op.create_table(
        "event_subscription",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("organization_id", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("topic_pattern", sa.String(length=128), nullable=False),
        sa.Column("target_url", sa.Text(), nullable=False),
        sa.Column("headers", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_event_subscription_organization_id", "event_subscription", ["organization_id"])
    op.create_index("ix_event_subscription_topic_pattern", "event_subscription", ["topic_pattern"])
    op.create_index("ix_event_sub_active", "event_subscription", ["is_active", "topic_pattern"])


def downgrade():
    for table in (
        "event_subscription",
        "outbox_event",
        "sys_audit_log",
        "ai_insight",
        "prod_piecework_ticket",
        "prod_batch_event",
        "prod_batch",
        "prod_process",
        "inv_movement",
        "inv_product",
    ):
        op.drop_table(table)
