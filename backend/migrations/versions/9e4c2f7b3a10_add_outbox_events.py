"""add outbox_events for AnswerSubmitted / AttemptCompleted

Revision ID: 9e4c2f7b3a10
Revises: 5b7d1e0a9c21
Create Date: 2025-01-20 00:00:00
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '9e4c2f7b3a10'
down_revision = '5b7d1e0a9c21'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    if 'outbox_events' in set(sa.inspect(bind).get_table_names()):
        return
    op.create_table(
        'outbox_events',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('aggregate_type', sa.String(length=32), nullable=False),
        sa.Column('aggregate_id', sa.String(length=36), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('event_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('actor_player_id', sa.String(length=64), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('published_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_outbox_events_aggregate_id', 'outbox_events', ['aggregate_id'])


def downgrade():
    op.drop_index('ix_outbox_events_aggregate_id', table_name='outbox_events')
    op.drop_table('outbox_events')
