"""Initial database schema

Revision ID: 000_initial_schema
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "000_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


COMMISSION_STATUSES = (
    "pending", "approved", "paid", "disputed", "resolved_paid", "resolved_rejected", "cancelled",
)
PAYMENT_METHODS = ("bank_transfer", "paypal", "check", "digital_wallet")


def upgrade() -> None:
    """Create all commission engine tables."""

    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.Enum("organizer", "agent", name="userrole"), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # Commission plan per organizer
    op.create_table(
        "commission_configs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("default_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("tier_system_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("individual_overrides_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.Enum("active", "inactive", name="configstatus"), nullable=False),
        sa.Column(
            "payout_frequency",
            sa.Enum("weekly", "biweekly", "monthly", name="payoutfrequency"),
            nullable=False,
        ),
        sa.Column("minimum_payout", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("hold_period_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax_withholding_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("tax_withholding_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("limit_basis", sa.Enum("gross", "net", name="limitbasis"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_commission_configs_organizer_id", "commission_configs", ["organizer_id"], unique=True)

    # Volume tiers
    op.create_table(
        "commission_tiers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "config_id",
            sa.Integer(),
            sa.ForeignKey("commission_configs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("min_sales_volume", sa.Numeric(12, 2), nullable=False),
        sa.Column("max_sales_volume", sa.Numeric(12, 2), nullable=True),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("bonus_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("color", sa.String(20), nullable=True),
        sa.UniqueConstraint("config_id", "min_sales_volume", name="uq_tier_config_min"),
    )
    op.create_index("ix_commission_tiers_config_id", "commission_tiers", ["config_id"])

    # Agent overrides
    op.create_table(
        "agent_commission_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("event_id", sa.String(64), nullable=True),
        sa.Column("override_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_agent_commission_overrides_organizer_id", "agent_commission_overrides", ["organizer_id"])
    op.create_index("ix_agent_commission_overrides_agent_id", "agent_commission_overrides", ["agent_id"])
    op.create_index("ix_agent_commission_overrides_event_id", "agent_commission_overrides", ["event_id"])

    # Agent permissions (projection)
    op.create_table(
        "agent_permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("active", "suspended", "revoked", name="permissionstatus"),
            nullable=False,
        ),
        sa.Column(
            "commission_type",
            sa.Enum("percentage", "fixed_amount", "tiered", name="commissiontype"),
            nullable=False,
        ),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("commission_fixed_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("max_daily_sales", sa.Numeric(12, 2), nullable=True),
        sa.Column("max_monthly_sales", sa.Numeric(12, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("organizer_id", "agent_id", name="uq_permission_organizer_agent"),
    )
    op.create_index("ix_agent_permissions_organizer_id", "agent_permissions", ["organizer_id"])
    op.create_index("ix_agent_permissions_agent_id", "agent_permissions", ["agent_id"])

    # Trackable links
    op.create_table(
        "trackable_links",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "permission_id",
            sa.Integer(),
            sa.ForeignKey("agent_permissions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_id", sa.String(64), nullable=True),
        sa.Column("link_code", sa.String(64), nullable=False, unique=True),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("conversion_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("revenue_generated", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("commission_earned", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_trackable_links_permission_id", "trackable_links", ["permission_id"])

    # Sales attributions (order_id is the idempotency key)
    op.create_table(
        "sales_attributions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.String(64), nullable=False, unique=True),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("agent_permissions.id"), nullable=False),
        sa.Column(
            "trackable_link_id",
            sa.Integer(),
            sa.ForeignKey("trackable_links.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("event_id", sa.String(64), nullable=True),
        sa.Column(
            "attribution_method",
            sa.Enum("trackable_link", "promo_code", "manual", name="attributionmethod"),
            nullable=False,
        ),
        sa.Column("referrer_data", sa.JSON(), nullable=True),
        sa.Column("sale_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_rate_used", sa.Numeric(5, 2), nullable=False),
        sa.Column("attributed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_sales_attributions_permission_id", "sales_attributions", ["permission_id"])
    op.create_index("ix_sales_attributions_attributed_at", "sales_attributions", ["attributed_at"])

    # Payout batches (before commission_records, which reference them)
    op.create_table(
        "payout_batches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("batch_name", sa.String(200), nullable=False),
        sa.Column("payment_method", sa.Enum(*PAYMENT_METHODS, name="paymentmethod"), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("record_count", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("draft", "completed", "failed", name="payoutbatchstatus"),
            nullable=False,
        ),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("payment_reference", sa.String(100), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_payout_batches_organizer_id", "payout_batches", ["organizer_id"])
    op.create_index("ix_payout_batches_status", "payout_batches", ["status"])

    # Commission ledger
    op.create_table(
        "commission_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("kind", sa.Enum("commission", "adjustment", name="recordkind"), nullable=False),
        sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("agent_permissions.id"), nullable=False),
        sa.Column(
            "attribution_id",
            sa.Integer(),
            sa.ForeignKey("sales_attributions.id"),
            nullable=True,
            unique=True,
        ),
        sa.Column("adjusts_record_id", sa.Integer(), sa.ForeignKey("commission_records.id"), nullable=True),
        sa.Column("sale_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("rate_source", sa.Enum("override", "tier", "default", name="ratesource"), nullable=True),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("bonus_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("was_clamped", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("limit_type", sa.String(20), nullable=True),
        sa.Column("status", sa.Enum(*COMMISSION_STATUSES, name="commissionstatus"), nullable=False),
        sa.Column("earned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("payout_batch_id", sa.Integer(), sa.ForeignKey("payout_batches.id"), nullable=True),
        sa.Column(
            "payment_method",
            postgresql.ENUM(*PAYMENT_METHODS, name="paymentmethod", create_type=False),
            nullable=True,
        ),
        sa.Column("payment_reference", sa.String(100), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_commission_records_organizer_id", "commission_records", ["organizer_id"])
    op.create_index("ix_commission_records_agent_id", "commission_records", ["agent_id"])
    op.create_index("ix_commission_records_adjusts_record_id", "commission_records", ["adjusts_record_id"])
    op.create_index("ix_commission_records_status", "commission_records", ["status"])
    op.create_index("ix_commission_records_earned_at", "commission_records", ["earned_at"])
    op.create_index("ix_commission_records_payout_batch_id", "commission_records", ["payout_batch_id"])

    # Audit trail (append-only)
    op.create_table(
        "commission_audit_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("record_id", sa.Integer(), sa.ForeignKey("commission_records.id"), nullable=False),
        sa.Column(
            "action",
            sa.Enum(
                "record_created", "adjustment_created", "approved", "marked_paid", "disputed",
                "dispute_resolved", "cancelled", "added_to_batch", "transition_rejected",
                name="auditaction",
            ),
            nullable=False,
        ),
        sa.Column("performed_by", sa.String(64), nullable=False),
        sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("succeeded", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
    )
    op.create_index("ix_commission_audit_entries_record_id", "commission_audit_entries", ["record_id"])
    op.create_index("ix_commission_audit_entries_action", "commission_audit_entries", ["action"])
    op.create_index("ix_commission_audit_entries_performed_at", "commission_audit_entries", ["performed_at"])

    # Disputes
    op.create_table(
        "payment_disputes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("record_id", sa.Integer(), sa.ForeignKey("commission_records.id"), nullable=False),
        sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "dispute_type",
            sa.Enum(
                "amount_incorrect", "missing_sales", "calculation_error", "payment_not_received", "other",
                name="disputetype",
            ),
            nullable=False,
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount_disputed", sa.Numeric(12, 2), nullable=False),
        sa.Column("evidence", sa.JSON(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("open", "investigating", "resolved", "rejected", name="disputestatus"),
            nullable=False,
        ),
        sa.Column("record_status_at_open", sa.String(20), nullable=False),
        sa.Column("opened_by", sa.String(64), nullable=False),
        sa.Column(
            "outcome",
            sa.Enum("resolved_paid", "resolved_rejected", name="disputeoutcome"),
            nullable=True,
        ),
        sa.Column("resolution_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("adjustment_record_id", sa.Integer(), sa.ForeignKey("commission_records.id"), nullable=True),
        sa.Column("resolved_by", sa.String(64), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_payment_disputes_record_id", "payment_disputes", ["record_id"])
    op.create_index("ix_payment_disputes_agent_id", "payment_disputes", ["agent_id"])
    op.create_index("ix_payment_disputes_status", "payment_disputes", ["status"])

    # Tier progression
    op.create_table(
        "tier_progressions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "current_tier_id",
            sa.Integer(),
            sa.ForeignKey("commission_tiers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("current_tier_since", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("rolling_sales_volume", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("agent_id", "organizer_id", name="uq_progression_agent_organizer"),
    )
    op.create_index("ix_tier_progressions_agent_id", "tier_progressions", ["agent_id"])
    op.create_index("ix_tier_progressions_organizer_id", "tier_progressions", ["organizer_id"])

    op.create_table(
        "tier_history_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "progression_id",
            sa.Integer(),
            sa.ForeignKey("tier_progressions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "tier_id",
            sa.Integer(),
            sa.ForeignKey("commission_tiers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("tier_name", sa.String(100), nullable=False),
        sa.Column(
            "change_type",
            sa.Enum("initial", "promotion", "demotion", "retained", name="tierchangetype"),
            nullable=False,
        ),
        sa.Column("promoted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sales_volume_at_promotion", sa.Numeric(12, 2), nullable=False),
        sa.Column("previous_tier_name", sa.String(100), nullable=True),
        sa.Column("previous_tier_duration_days", sa.Integer(), nullable=True),
    )
    op.create_index("ix_tier_history_entries_progression_id", "tier_history_entries", ["progression_id"])

    # Limit counters
    op.create_table(
        "commission_limit_counters",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("agent_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("period", sa.Enum("daily", "monthly", name="limitperiod"), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "agent_id", "organizer_id", "period", "period_start",
            name="uq_limit_counter_window",
        ),
    )
    op.create_index("ix_commission_limit_counters_agent_id", "commission_limit_counters", ["agent_id"])

    # Notification outbox
    op.create_table(
        "notification_outbox",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "event_type",
            sa.Enum("TierPromoted", "PayoutCompleted", "DisputeResolved", name="notificationtype"),
            nullable=False,
        ),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.Enum("pending", "sent", "failed", name="outboxstatus"), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("recipient", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notification_outbox_event_type", "notification_outbox", ["event_type"])
    op.create_index("ix_notification_outbox_status", "notification_outbox", ["status"])


def downgrade() -> None:
    """Drop all tables."""
    for table in (
        "notification_outbox",
        "commission_limit_counters",
        "tier_history_entries",
        "tier_progressions",
        "payment_disputes",
        "commission_audit_entries",
        "commission_records",
        "payout_batches",
        "sales_attributions",
        "trackable_links",
        "agent_permissions",
        "agent_commission_overrides",
        "commission_tiers",
        "commission_configs",
        "users",
    ):
        op.drop_table(table)

    for enum_name in (
        "outboxstatus", "notificationtype", "limitperiod", "tierchangetype", "disputeoutcome",
        "disputestatus", "disputetype", "auditaction", "commissionstatus", "ratesource", "recordkind",
        "payoutbatchstatus", "paymentmethod", "attributionmethod", "commissiontype", "permissionstatus",
        "limitbasis", "payoutfrequency", "configstatus", "userrole",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
