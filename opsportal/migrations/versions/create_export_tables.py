"""create export tables

Revision ID: create_export_tables
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'create_export_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENTITY_TYPES = (
    'services', 'invoices', 'customers', 'vehicles', 'properties',
    'inquiries', 'emergencies', 'payments', 'staff', 'messages',
)
FORMATS = ('csv', 'document')
STATUSES = ('PENDING', 'PROCESSING', 'READY', 'FAILED')
DELIVERY_MODES = ('sync', 'async', 'stream')


def upgrade() -> None:
    """Create export_jobs, export_column_preferences and export_logs"""

    entity_type = sa.Enum(*ENTITY_TYPES, name='exportentitytype')
    export_format = sa.Enum(*FORMATS, name='exportformat')

    op.create_table(
        'export_jobs',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('entity_type', entity_type, nullable=False),
        sa.Column('format', export_format, nullable=False),
        sa.Column('status', sa.Enum(*STATUSES, name='exportstatus'), nullable=False),
        sa.Column('celery_task_id', sa.String(length=255), nullable=True),
        sa.Column('filters', sa.JSON(), nullable=True),
        sa.Column('result_ref', sa.String(length=500), nullable=True),
        sa.Column('file_name', sa.String(length=255), nullable=True),
        sa.Column('total_records', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('requested_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('result_ref', name='uq_export_jobs_result_ref'),

        # Indexes for performance
        sa.Index('ix_export_jobs_entity_type', 'entity_type'),
        sa.Index('ix_export_jobs_status', 'status'),
        sa.Index('ix_export_jobs_celery_task_id', 'celery_task_id'),
        sa.Index('ix_export_jobs_created_at', 'created_at'),
        sa.Index('ix_export_jobs_requested_by', 'requested_by'),
    )

    op.create_table(
        'export_column_preferences',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('entity_type', entity_type, nullable=False),
        sa.Column('columns', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'entity_type', name='uq_export_column_preferences_user_entity'),
        sa.Index('ix_export_column_preferences_user_id', 'user_id'),
    )

    op.create_table(
        'export_logs',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('entity_type', entity_type, nullable=False),
        sa.Column('format', export_format, nullable=False),
        sa.Column('delivery_mode', sa.Enum(*DELIVERY_MODES, name='deliverymode'), nullable=False),
        sa.Column('filters', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.Index('ix_export_logs_user_id', 'user_id'),
        sa.Index('ix_export_logs_created_at_entity_type', 'created_at', 'entity_type'),
    )


def downgrade() -> None:
    """Drop export tables"""
    op.drop_table('export_logs')
    op.drop_table('export_column_preferences')
    op.drop_table('export_jobs')

    # Drop custom enums (PostgreSQL only)
    if op.get_bind().dialect.name == "postgresql":
        for enum_name in ("deliverymode", "exportstatus", "exportformat", "exportentitytype"):
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
