"""Add removed_from_batch audit action for cancelled payout batches.

Revision ID: 001_add_removed_from_batch_audit
Revises: 000_initial_schema
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_add_removed_from_batch_audit"
down_revision: Union[str, None] = "000_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("ALTER TYPE auditaction ADD VALUE IF NOT EXISTS 'removed_from_batch'")


def downgrade() -> None:
    # PostgreSQL does not support removing values from enums
    pass
