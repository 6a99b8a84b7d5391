"""Initial settlement schema."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "20261001_initial_settlement_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


HOLD_STATUS = sa.Enum(
    "held",
    "release_pending",
    "released",
    "refunded",
    "partially_refunded",
    "disputed",
    name="holdstatus",
)
OUTCOME_VALUES = ("full_refund", "partial_refund", "release")


def upgrade() -> None:
    op.create_table(
        "api_keys",
        *_timestamps(),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("prefix", sa.String(length=32), nullable=False),
        sa.Column("key_hash", sa.String(length=128), nullable=False, unique=True),
        sa.Column("scope", sa.Enum("party", "arbiter", "admin", name="apiscope"), nullable=False),
        sa.Column("principal_id", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_api_keys_prefix", "api_keys", ["prefix"])
    op.create_index("ix_api_keys_principal_id", "api_keys", ["principal_id"])

    op.create_table(
        "audit_logs",
        *_timestamps(),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "scheduler_locks",
        *_timestamps(),
        sa.Column("name", sa.String(length=64), nullable=False, unique=True),
        sa.Column("owner", sa.String(length=128), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "engagements",
        *_timestamps(),
        sa.Column("external_ref", sa.String(length=64), nullable=False, unique=True),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("practitioner_id", sa.String(length=64), nullable=False),
        sa.Column("firm_id", sa.String(length=64), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("platform_fee_percent", sa.Numeric(5, 2), nullable=True),
        sa.Column("firm_commission_percent", sa.Numeric(5, 2), nullable=True),
        sa.Column("withholding_tax_percent", sa.Numeric(5, 2), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_engagement_amount_positive"),
    )
    op.create_index("ix_engagements_client_id", "engagements", ["client_id"])
    op.create_index("ix_engagements_practitioner_id", "engagements", ["practitioner_id"])
    op.create_index("ix_engagements_firm_id", "engagements", ["firm_id"])

    op.create_table(
        "escrow_holds",
        *_timestamps(),
        sa.Column("engagement_id", sa.Integer(), sa.ForeignKey("engagements.id"), nullable=False, unique=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", HOLD_STATUS, nullable=False),
        sa.Column("auto_release_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("release_claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("distributed_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_escrow_hold_amount_positive"),
        sa.CheckConstraint("distributed_amount >= 0", name="ck_escrow_hold_distributed_non_negative"),
    )
    op.create_index("ix_escrow_holds_status", "escrow_holds", ["status"])
    op.create_index("ix_escrow_holds_auto_release_at", "escrow_holds", ["auto_release_at"])

    op.create_table(
        "disputes",
        *_timestamps(),
        sa.Column("hold_id", sa.Integer(), sa.ForeignKey("escrow_holds.id"), nullable=False, unique=True),
        sa.Column("raised_by_party", sa.Enum("client", "practitioner", name="disputeparty"), nullable=False),
        sa.Column("raised_by", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("open", "under_review", "resolved", "closed", name="disputestatus"),
            nullable=False,
        ),
        sa.Column(
            "priority",
            sa.Enum("low", "medium", "high", "urgent", name="disputepriority"),
            nullable=False,
        ),
        sa.Column("is_escalated", sa.Boolean(), nullable=False),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalated_by", sa.String(length=64), nullable=True),
        sa.Column("counterparty_responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("outcome", sa.Enum(*OUTCOME_VALUES, name="disputeoutcome"), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("refund_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("resolved_by", sa.String(length=64), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by", sa.String(length=64), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "refund_percentage IS NULL OR (refund_percentage >= 0 AND refund_percentage <= 100)",
            name="ck_dispute_refund_percentage_range",
        ),
    )
    op.create_index("ix_disputes_status", "disputes", ["status"])
    op.create_index("ix_disputes_priority", "disputes", ["priority"])

    op.create_table(
        "dispute_evidence",
        *_timestamps(),
        sa.Column("dispute_id", sa.Integer(), sa.ForeignKey("disputes.id"), nullable=False),
        sa.Column("party", sa.Enum("client", "practitioner", name="evidenceparty"), nullable=False),
        sa.Column("submitted_by", sa.String(length=64), nullable=False),
        sa.Column("evidence_type", sa.String(length=50), nullable=False),
        sa.Column("reference_url", sa.String(length=2048), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("attached_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_dispute_evidence_dispute_id", "dispute_evidence", ["dispute_id"])

    op.create_table(
        "arbiter_notes",
        *_timestamps(),
        sa.Column("dispute_id", sa.Integer(), sa.ForeignKey("disputes.id"), nullable=False),
        sa.Column("arbiter_id", sa.String(length=64), nullable=False),
        sa.Column("note", sa.Text(), nullable=False),
        sa.Column("noted_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_arbiter_notes_dispute_id", "arbiter_notes", ["dispute_id"])

    op.create_table(
        "distribution_records",
        *_timestamps(),
        sa.Column("hold_id", sa.Integer(), sa.ForeignKey("escrow_holds.id"), nullable=False, unique=True),
        sa.Column("outcome", sa.Enum(*OUTCOME_VALUES, name="distributionoutcome"), nullable=False),
        sa.Column("is_auto_release", sa.Boolean(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("gross_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("refund_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("refund_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("platform_fee_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("platform_fee_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("firm_commission_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("firm_commission_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("practitioner_gross_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("withholding_tax_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("withheld_tax_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("practitioner_net_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("financial_year", sa.String(length=16), nullable=False),
        sa.Column("quarter", sa.String(length=2), nullable=False),
        sa.CheckConstraint("gross_amount > 0", name="ck_distribution_gross_positive"),
    )

    op.create_table(
        "payout_requests",
        *_timestamps(),
        sa.Column("distribution_id", sa.Integer(), sa.ForeignKey("distribution_records.id"), nullable=False),
        sa.Column("hold_id", sa.Integer(), sa.ForeignKey("escrow_holds.id"), nullable=False),
        sa.Column(
            "payee_kind",
            sa.Enum("practitioner", "firm", "client_refund", "tax_withholding", name="payeekind"),
            nullable=False,
        ),
        sa.Column("payee_id", sa.String(length=64), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.Enum("requested", "sent", "failed", name="payoutstatus"), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_payout_amount_positive"),
    )
    op.create_index("ix_payout_requests_distribution_id", "payout_requests", ["distribution_id"])
    op.create_index("ix_payout_requests_hold_id", "payout_requests", ["hold_id"])

    op.create_table(
        "settlement_events",
        *_timestamps(),
        sa.Column("hold_id", sa.Integer(), sa.ForeignKey("escrow_holds.id"), nullable=False),
        sa.Column("dispute_id", sa.Integer(), sa.ForeignKey("disputes.id"), nullable=True),
        sa.Column("subject", sa.String(length=16), nullable=False),
        sa.Column("new_status", sa.String(length=32), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
    )
    op.create_index("ix_settlement_events_hold_id", "settlement_events", ["hold_id"])
    op.create_index("ix_settlement_events_delivered_at", "settlement_events", ["delivered_at"])


def downgrade() -> None:
    op.drop_index("ix_settlement_events_delivered_at", table_name="settlement_events")
    op.drop_index("ix_settlement_events_hold_id", table_name="settlement_events")
    op.drop_table("settlement_events")
    op.drop_index("ix_payout_requests_hold_id", table_name="payout_requests")
    op.drop_index("ix_payout_requests_distribution_id", table_name="payout_requests")
    op.drop_table("payout_requests")
    op.drop_table("distribution_records")
    op.drop_index("ix_arbiter_notes_dispute_id", table_name="arbiter_notes")
    op.drop_table("arbiter_notes")
    op.drop_index("ix_dispute_evidence_dispute_id", table_name="dispute_evidence")
    op.drop_table("dispute_evidence")
    op.drop_index("ix_disputes_priority", table_name="disputes")
    op.drop_index("ix_disputes_status", table_name="disputes")
    op.drop_table("disputes")
    op.drop_index("ix_escrow_holds_auto_release_at", table_name="escrow_holds")
    op.drop_index("ix_escrow_holds_status", table_name="escrow_holds")
    op.drop_table("escrow_holds")
    op.drop_index("ix_engagements_firm_id", table_name="engagements")
    op.drop_index("ix_engagements_practitioner_id", table_name="engagements")
    op.drop_index("ix_engagements_client_id", table_name="engagements")
    op.drop_table("engagements")
    op.drop_table("scheduler_locks")
    op.drop_table("audit_logs")
    op.drop_index("ix_api_keys_principal_id", table_name="api_keys")
    op.drop_index("ix_api_keys_prefix", table_name="api_keys")
    op.drop_table("api_keys")
