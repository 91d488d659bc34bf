"""Add claimed_until lease column to notification_outbox

Revision ID: 002_add_outbox_claimed_until
Revises: 001_add_removed_from_batch_audit
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002_add_outbox_claimed_until"
down_revision: Union[str, None] = "001_add_removed_from_batch_audit"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add claimed_until column to notification_outbox table."""
    op.add_column(
        "notification_outbox",
        sa.Column("claimed_until", sa.DateTime(timezone=True), nullable=True)
    )


def downgrade() -> None:
    """Remove claimed_until column from notification_outbox table."""
    op.drop_column("notification_outbox", "claimed_until")
