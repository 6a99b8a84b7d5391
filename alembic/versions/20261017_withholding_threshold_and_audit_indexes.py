"""Record the withholding threshold on distributions; index the audit trail."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "20261017_withholding_threshold_and_audit_indexes"
down_revision = "20261001_initial_settlement_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("distribution_records") as batch_op:
        batch_op.add_column(
            sa.Column(
                "withholding_threshold",
                sa.Numeric(18, 2),
                nullable=False,
                server_default=sa.text("0"),
            )
        )

    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])
    op.create_index("ix_audit_logs_action_at", "audit_logs", ["action", "at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    with op.batch_alter_table("distribution_records") as batch_op:
        batch_op.drop_column("withholding_threshold")
