"""Payment processing claim

payments.processing_claimed_at marks a pending payment whose gateway call is
in flight. process_payment only calls the gateway after setting it with a
conditional UPDATE, so two terminals cannot both charge the same payment.

Revision ID: pc002_payment_claim
Revises: pc001_checkout_core
Create Date: 2026-10-20
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'pc002_payment_claim'
down_revision = 'pc001_checkout_core'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.add_column(sa.Column('processing_claimed_at', sa.DateTime(timezone=True), nullable=True))


def downgrade():
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.drop_column('processing_claimed_at')
