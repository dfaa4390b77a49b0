"""create OTLP trace, span and log tables

Revision ID: 3f1a9c2b7d40
Revises:
Create Date: 2026-10-19 10:02:11.418205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '3f1a9c2b7d40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'trace',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_ns', sa.BigInteger(), nullable=True),
        sa.Column('span_count', sa.Integer(), nullable=False),
        sa.CheckConstraint('span_count >= 1', name='chk_trace_span_count'),
    )
    op.create_index('idx_trace_started_at', 'trace', ['started_at'])

    op.create_table(
        'span',
        sa.Column('id', sa.String(16), primary_key=True),
        sa.Column('trace_id', sa.String(32), sa.ForeignKey('trace.id'), nullable=False),
        sa.Column('parent_span_id', sa.String(16), nullable=True),
        sa.Column('operation_name', sa.Text(), nullable=False),
        # Timing
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_ns', sa.BigInteger(), nullable=False),
        # Status
        sa.Column('status_code', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('status_message', sa.Text(), nullable=True),
        sa.Column('kind', sa.String(16), nullable=False, server_default=sa.text("'UNSPECIFIED'")),
        # Origin
        sa.Column('instrumentation_library', sa.Text(), nullable=True),
        sa.Column('service_name', sa.Text(), nullable=True),
        sa.CheckConstraint('status_code IN (0, 1, 2)', name='chk_span_status_code'),
        sa.CheckConstraint(
            "kind IN ('UNSPECIFIED', 'INTERNAL', 'SERVER', 'CLIENT', 'PRODUCER', 'CONSUMER')",
            name='chk_span_kind',
        ),
    )
    op.create_index('idx_span_trace_id', 'span', ['trace_id'])
    op.create_index('idx_span_started_at', 'span', ['started_at'])

    op.create_table(
        'span_attribute',
        sa.Column('span_id', sa.String(16), sa.ForeignKey('span.id'), nullable=False),
        sa.Column('key', sa.Text(), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('span_id', 'key'),
    )

    op.create_table(
        'log',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('trace_id', sa.String(32), nullable=True),
        sa.Column('span_id', sa.String(16), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('observed_timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.Column('severity_number', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('severity_text', sa.Text(), nullable=True),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('instrumentation_library', sa.Text(), nullable=True),
        sa.Column('service_name', sa.Text(), nullable=True),
    )
    op.create_index('idx_log_timestamp', 'log', ['timestamp'])
    op.create_index('idx_log_trace_id', 'log', ['trace_id'])

    op.create_table(
        'log_attribute',
        sa.Column('log_id', UUID(as_uuid=True), sa.ForeignKey('log.id'), nullable=False),
        sa.Column('key', sa.Text(), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('log_id', 'key'),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('log_attribute')
    op.drop_index('idx_log_trace_id', table_name='log')
    op.drop_index('idx_log_timestamp', table_name='log')
    op.drop_table('log')
    op.drop_table('span_attribute')
    op.drop_index('idx_span_started_at', table_name='span')
    op.drop_index('idx_span_trace_id', table_name='span')
    op.drop_table('span')
    op.drop_index('idx_trace_started_at', table_name='trace')
    op.drop_table('trace')
