"""add plan prices

Revision ID: 8f41c2d9e7b3
Revises: 5d2e8b7c1a40
Create Date: 2026-10-19 16:40:02.118954

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8f41c2d9e7b3'
down_revision: Union[str, Sequence[str], None] = '5d2e8b7c1a40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'plan_prices',
        sa.Column('stripe_price_id', sa.String(), nullable=False),
        sa.Column('plan_id', sa.String(length=64), nullable=False),
        sa.Column('unit_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('retired_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['plan_id'], ['subscription_plans.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('stripe_price_id')
    )
    op.create_index(op.f('ix_plan_prices_plan_id'), 'plan_prices', ['plan_id'], unique=False)

    # Prices already on plans become the first history rows
    op.execute(
        "INSERT INTO plan_prices (stripe_price_id, plan_id, unit_amount, currency) "
        "SELECT stripe_price_id, id, price_cents, currency FROM subscription_plans "
        "WHERE stripe_price_id IS NOT NULL"
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_plan_prices_plan_id'), table_name='plan_prices')
    op.drop_table('plan_prices')
