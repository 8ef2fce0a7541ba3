"""create_outreach_tables

Revision ID: 1f4e0a9b7c21
Revises:
Create Date: 2025-01-14 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import sqlite
from outreach_agent.db.base import UUIDType

# revision identifiers, used by Alembic.
revision: str = '1f4e0a9b7c21'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def upgrade() -> None:
    """Create cases, scheduled_emails, call_records, batches and batch_items."""
    op.create_table('cases',
        sa.Column('id', UUIDType(), nullable=False),
        sa.Column('owner_id', UUIDType(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='draft', comment='draft, ongoing, completed, reviewed'),

        # Patient and owner contact
        sa.Column('patient_id', UUIDType(), nullable=True),
        sa.Column('patient_name', sa.String(length=255), nullable=False, server_default='Unknown'),
        sa.Column('owner_name', sa.String(length=255), nullable=True),
        sa.Column('owner_email', sa.String(length=255), nullable=True),
        sa.Column('owner_phone', sa.String(length=50), nullable=True),

        sa.Column('has_summary', sa.Boolean(), nullable=False, server_default=sa.false(), comment='Discharge summary exists'),
        sa.Column('is_urgent', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cases_owner_id', 'cases', ['owner_id'])
    op.create_index('ix_cases_status', 'cases', ['status'])
    op.create_index('ix_cases_owner_status', 'cases', ['owner_id', 'status'])

    op.create_table('scheduled_emails',
        sa.Column('id', UUIDType(), nullable=False),
        sa.Column('case_id', UUIDType(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='queued', comment='queued, sent, failed, cancelled'),
        sa.Column('recipient_email', sa.String(length=255), nullable=True),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['case_id'], ['cases.id']),
    )
    op.create_index('ix_scheduled_emails_case_id', 'scheduled_emails', ['case_id'])

    op.create_table('call_records',
        sa.Column('id', UUIDType(), nullable=False),
        sa.Column('case_id', UUIDType(), nullable=False),
        sa.Column('provider_call_id', sa.String(length=100), nullable=True, comment='Identifier assigned by the voice provider'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='queued', comment='queued, ringing, in_progress, completed, failed, cancelled'),
        sa.Column('ended_reason', sa.String(length=100), nullable=True),
        sa.Column('customer_phone', sa.String(length=50), nullable=True),

        # Timing
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.Column('cost', sa.Float(), nullable=True),

        # Content
        sa.Column('transcript', sa.Text(), nullable=True),
        sa.Column('transcript_messages', sqlite.JSON(), nullable=True),
        sa.Column('cleaned_transcript', sa.Text(), nullable=True),
        sa.Column('recording_url', sa.Text(), nullable=True),
        sa.Column('stereo_recording_url', sa.Text(), nullable=True),

        # Provider analysis
        sa.Column('call_analysis', sqlite.JSON(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('success_evaluation', sa.String(length=255), nullable=True),
        sa.Column('user_sentiment', sa.String(length=20), nullable=True, comment='positive, neutral, negative'),

        # Structured outputs
        sa.Column('structured_data', sqlite.JSON(), nullable=True, comment='Flattened structured output record'),
        sa.Column('call_outcome_data', sqlite.JSON(), nullable=True),
        sa.Column('pet_health_data', sqlite.JSON(), nullable=True),
        sa.Column('medication_compliance_data', sqlite.JSON(), nullable=True),
        sa.Column('owner_sentiment_data', sqlite.JSON(), nullable=True),
        sa.Column('escalation_data', sqlite.JSON(), nullable=True),
        sa.Column('follow_up_data', sqlite.JSON(), nullable=True),

        # Attention flags
        sa.Column('attention_types', sqlite.JSON(), nullable=True),
        sa.Column('attention_severity', sa.String(length=20), nullable=True, comment='routine, urgent, critical'),
        sa.Column('attention_summary', sa.Text(), nullable=True),
        sa.Column('attention_flagged_at', sa.DateTime(timezone=True), nullable=True),

        # Retry bookkeeping
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_retry_reason', sa.String(length=100), nullable=True),
        sa.Column('last_retry_error', sa.Text(), nullable=True),
        sa.Column('queue_message_id', sa.String(length=255), nullable=True, comment='Outstanding delayed job for this call'),
        sa.Column('final_failure', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('final_failure_reason', sa.String(length=100), nullable=True),

        # Event bookkeeping
        sa.Column('last_event_type', sa.String(length=50), nullable=True),
        sa.Column('last_report_key', sa.String(length=255), nullable=True, comment='Identity of the last applied end-of-call report'),
        sa.Column('metadata_json', sqlite.JSON(), nullable=True, comment='Per-call context such as voicemail settings'),
        *_timestamps(),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['case_id'], ['cases.id']),
        sa.UniqueConstraint('provider_call_id'),
    )
    op.create_index('ix_call_records_case_id', 'call_records', ['case_id'])
    op.create_index('ix_call_records_status', 'call_records', ['status'])
    op.create_index('ix_call_records_scheduled_for', 'call_records', ['scheduled_for'])
    op.create_index('ix_call_records_case_status', 'call_records', ['case_id', 'status'])

    op.create_table('batches',
        sa.Column('id', UUIDType(), nullable=False),
        sa.Column('owner_id', UUIDType(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending, processing, partial_success, completed, cancelled'),

        # Counters
        sa.Column('total_cases', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_cases', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('successful_cases', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_cases', sa.Integer(), nullable=False, server_default='0'),

        sa.Column('email_schedule_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('call_schedule_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_summary', sqlite.JSON(), nullable=True, comment='Per-case failures: case_id, patient_name, error'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_batches_owner_id', 'batches', ['owner_id'])
    op.create_index('ix_batches_status', 'batches', ['status'])

    op.create_table('batch_items',
        sa.Column('id', UUIDType(), nullable=False),
        sa.Column('batch_id', UUIDType(), nullable=False),
        sa.Column('case_id', UUIDType(), nullable=False),
        sa.Column('patient_id', UUIDType(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='pending, success, failed'),
        sa.Column('email_scheduled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('call_scheduled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('email_id', sa.String(length=100), nullable=True),
        sa.Column('call_id', sa.String(length=100), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['batch_id'], ['batches.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('batch_id', 'case_id', name='uq_batch_items_batch_case'),
    )
    op.create_index('ix_batch_items_batch_id', 'batch_items', ['batch_id'])
    op.create_index('ix_batch_items_case_id', 'batch_items', ['case_id'])


def downgrade() -> None:
    """Drop all outreach tables."""
    op.drop_index('ix_batch_items_case_id', 'batch_items')
    op.drop_index('ix_batch_items_batch_id', 'batch_items')
    op.drop_table('batch_items')

    op.drop_index('ix_batches_status', 'batches')
    op.drop_index('ix_batches_owner_id', 'batches')
    op.drop_table('batches')

    op.drop_index('ix_call_records_case_status', 'call_records')
    op.drop_index('ix_call_records_scheduled_for', 'call_records')
    op.drop_index('ix_call_records_status', 'call_records')
    op.drop_index('ix_call_records_case_id', 'call_records')
    op.drop_table('call_records')

    op.drop_index('ix_scheduled_emails_case_id', 'scheduled_emails')
    op.drop_table('scheduled_emails')

    op.drop_index('ix_cases_owner_status', 'cases')
    op.drop_index('ix_cases_status', 'cases')
    op.drop_index('ix_cases_owner_id', 'cases')
    op.drop_table('cases')
