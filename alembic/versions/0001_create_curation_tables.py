"""Create curation pipeline tables.

Revision ID: 0001_curation
Revises:
Create Date: 2026-10-19

Stage store (drafts, candidates, validated, approved_*), the audit trail
(transition events, validation failures, review queue, approval events,
immutability violations, deprecations) and pipeline orchestration
(document pipelines, pipeline tasks, pipeline events).
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_curation'
down_revision = None
branch_labels = None
depends_on = None

KINDS = ('meaning', 'utterance', 'rule', 'exercise')
STAGES = ('DRAFT', 'CANDIDATE', 'VALIDATED', 'APPROVED')
TASK_STATUSES = ('pending', 'processing', 'completed', 'failed')
TASK_TYPES = ('extract', 'chunk', 'map', 'transform', 'validate', 'approve')


def _uuid_pk() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True)


def _created_at(name: str = 'created_at') -> sa.Column:
    return sa.Column(name, sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False)


def _in(column: str, values: tuple) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


def upgrade() -> None:
    """Create all curation tables."""
    # Stage store: lineage
    op.create_table(
        'drafts',
        _uuid_pk(),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('source', sa.String(100), nullable=False),
        _created_at(),
        sa.CheckConstraint(_in('kind', KINDS), name='ck_drafts_kind'),
    )
    op.create_index('ix_drafts_kind', 'drafts', ['kind'])

    op.create_table(
        'candidates',
        _uuid_pk(),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('draft_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('drafts.id'), nullable=False, unique=True,
                  comment='At most one candidate per draft'),
        _created_at(),
    )
    op.create_index('ix_candidates_kind', 'candidates', ['kind'])

    op.create_table(
        'validated',
        _uuid_pk(),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('candidate_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('candidates.id'), nullable=False, unique=True,
                  comment='At most one validated row per candidate'),
        sa.Column('validation_results', postgresql.JSONB(), nullable=False, server_default='[]'),
        _created_at(),
    )
    op.create_index('ix_validated_kind', 'validated', ['kind'])

    # Stage store: published content
    op.create_table(
        'approved_meanings',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('validated_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('validated.id'), nullable=False, unique=True),
        sa.Column('level', sa.String(2), nullable=False),
        sa.Column('tags', postgresql.JSONB(), nullable=False, server_default='[]'),
        _created_at(),
    )

    op.create_table(
        'approved_utterances',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('validated_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('validated.id'), nullable=False, unique=True),
        sa.Column('meaning_id', sa.String(100), sa.ForeignKey('approved_meanings.id'), nullable=False),
        sa.Column('language', sa.String(2), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('register', sa.String(20), nullable=True),
        sa.Column('usage_notes', sa.Text(), nullable=True),
        sa.Column('audio_url', sa.String(500), nullable=True),
        _created_at(),
    )
    op.create_index('ix_approved_utterances_meaning_id', 'approved_utterances', ['meaning_id'])
    op.create_index('ix_approved_utterances_language', 'approved_utterances', ['language'])

    op.create_table(
        'approved_rules',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('validated_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('validated.id'), nullable=False, unique=True),
        sa.Column('language', sa.String(2), nullable=False),
        sa.Column('level', sa.String(2), nullable=False),
        sa.Column('category', sa.String(50), nullable=False, server_default='general'),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('explanation', sa.Text(), nullable=False),
        sa.Column('examples', postgresql.JSONB(), nullable=False, server_default='[]'),
        _created_at(),
    )
    op.create_index('idx_approved_rules_language_level', 'approved_rules', ['language', 'level'])

    op.create_table(
        'approved_exercises',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('validated_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('validated.id'), nullable=False, unique=True),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('level', sa.String(2), nullable=False),
        sa.Column('languages', postgresql.JSONB(), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('correct_answer', sa.Text(), nullable=False),
        sa.Column('options', postgresql.JSONB(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        _created_at(),
    )
    op.create_index('idx_approved_exercises_type_level', 'approved_exercises', ['type', 'level'])

    # Audit trail
    op.create_table(
        'state_transition_events',
        _uuid_pk(),
        sa.Column('item_id', sa.String(100), nullable=False),
        sa.Column('item_type', sa.String(20), nullable=False),
        sa.Column('from_stage', sa.String(20), nullable=False),
        sa.Column('to_stage', sa.String(20), nullable=False),
        sa.Column('destination_id', sa.String(100), nullable=False),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        _created_at(),
        sa.CheckConstraint(_in('from_stage', STAGES), name='ck_state_transition_events_from_stage'),
        sa.CheckConstraint(_in('to_stage', STAGES), name='ck_state_transition_events_to_stage'),
    )
    op.create_index('ix_state_transition_events_item_id', 'state_transition_events', ['item_id'])
    op.create_index('ix_state_transition_events_item_type', 'state_transition_events', ['item_type'])
    op.create_index('ix_state_transition_events_to_stage', 'state_transition_events', ['to_stage'])

    op.create_table(
        'validation_failures',
        _uuid_pk(),
        sa.Column('candidate_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('candidates.id'), nullable=False),
        sa.Column('gate_name', sa.String(100), nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=False),
        sa.Column('failure_details', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        _created_at(),
        sa.UniqueConstraint('candidate_id', 'retry_count', name='uq_validation_failures_attempt'),
    )
    op.create_index('ix_validation_failures_candidate_id', 'validation_failures', ['candidate_id'])

    op.create_table(
        'review_queue',
        _uuid_pk(),
        sa.Column('item_id', sa.String(100), nullable=False),
        sa.Column('item_type', sa.String(50), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='5',
                  comment='Lower is more urgent'),
        sa.Column('reason', sa.Text(), nullable=True),
        _created_at('queued_at'),
        sa.Column('assigned_to', sa.String(100), nullable=True),
        sa.Column('assigned_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('reviewed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('review_decision', sa.String(20), nullable=True),
        sa.Column('reviewed_by', sa.String(100), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.CheckConstraint(
            "review_decision IS NULL OR review_decision IN ('approve', 'reject', 'revise')",
            name='ck_review_queue_decision',
        ),
    )
    op.create_index('ix_review_queue_item_id', 'review_queue', ['item_id'])
    op.create_index('ix_review_queue_assigned_to', 'review_queue', ['assigned_to'])
    op.create_index('idx_review_queue_priority', 'review_queue', ['priority', 'queued_at'])
    op.create_index(
        'uq_review_queue_active_item', 'review_queue', ['item_id'],
        unique=True, postgresql_where=sa.text('reviewed_at IS NULL'),
    )

    op.create_table(
        'approval_events',
        _uuid_pk(),
        sa.Column('item_id', sa.String(100), nullable=False),
        sa.Column('item_type', sa.String(50), nullable=False),
        sa.Column('validated_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('validated.id'), nullable=True),
        sa.Column('operator_id', sa.String(100), nullable=True),
        sa.Column('approval_type', sa.String(20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "(approval_type = 'manual' AND operator_id IS NOT NULL) "
            "OR (approval_type = 'automatic' AND operator_id IS NULL)",
            name='ck_approval_events_operator_matches_type',
        ),
    )
    op.create_index('ix_approval_events_item_id', 'approval_events', ['item_id'])
    op.create_index('ix_approval_events_item_type', 'approval_events', ['item_type'])
    op.create_index('ix_approval_events_operator_id', 'approval_events', ['operator_id'])
    op.create_index('ix_approval_events_approval_type', 'approval_events', ['approval_type'])

    op.create_table(
        'immutability_violations',
        _uuid_pk(),
        sa.Column('item_id', sa.String(100), nullable=False),
        sa.Column('item_type', sa.String(50), nullable=False),
        sa.Column('attempted_operation', sa.String(10), nullable=False),
        sa.Column('user_id', sa.String(100), nullable=True),
        _created_at('attempted_at'),
        sa.CheckConstraint(
            "attempted_operation IN ('UPDATE', 'DELETE')",
            name='ck_immutability_violations_operation',
        ),
    )
    op.create_index('ix_immutability_violations_item_id', 'immutability_violations', ['item_id'])
    op.create_index('ix_immutability_violations_attempted_at', 'immutability_violations', ['attempted_at'])

    op.create_table(
        'deprecations',
        _uuid_pk(),
        sa.Column('item_id', sa.String(100), nullable=False, unique=True),
        sa.Column('item_type', sa.String(20), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('replacement_id', sa.String(100), nullable=True),
        sa.Column('operator_id', sa.String(100), nullable=False),
        _created_at('deprecated_at'),
    )
    op.create_index('ix_deprecations_item_type', 'deprecations', ['item_type'])
    op.create_index('ix_deprecations_replacement_id', 'deprecations', ['replacement_id'])

    # Pipeline orchestration
    op.create_table(
        'document_pipelines',
        _uuid_pk(),
        sa.Column('document_id', postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('current_stage', sa.String(50), nullable=False, server_default='created'),
        sa.Column('progress_percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('total_tasks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_tasks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_tasks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
        _created_at('updated_at'),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.CheckConstraint(
            'progress_percentage >= 0 AND progress_percentage <= 100',
            name='ck_document_pipelines_progress_range',
        ),
    )
    op.create_index('idx_document_pipelines_status_stage', 'document_pipelines', ['status', 'current_stage'])

    op.create_table(
        'pipeline_tasks',
        _uuid_pk(),
        sa.Column('scope', sa.String(20), nullable=False, comment='item | document'),
        sa.Column('pipeline_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('document_pipelines.id', ondelete='CASCADE'), nullable=True),
        sa.Column('item_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('depends_on_task_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('pipeline_tasks.id', ondelete='SET NULL'), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
        _created_at('updated_at'),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        # Item task columns
        sa.Column('item_kind', sa.String(20), nullable=True),
        sa.Column('current_stage', sa.String(20), nullable=True),
        sa.Column('source', sa.String(100), nullable=True),
        # Document task columns
        sa.Column('task_type', sa.String(20), nullable=True),
        sa.CheckConstraint(_in('status', TASK_STATUSES), name='ck_pipeline_tasks_status'),
        sa.CheckConstraint(
            f"task_type IS NULL OR {_in('task_type', TASK_TYPES)}",
            name='ck_pipeline_tasks_task_type',
        ),
    )
    op.create_index('ix_pipeline_tasks_pipeline_id', 'pipeline_tasks', ['pipeline_id'])
    op.create_index('ix_pipeline_tasks_item_id', 'pipeline_tasks', ['item_id'])
    op.create_index('ix_pipeline_tasks_status', 'pipeline_tasks', ['status'])
    op.create_index('ix_pipeline_tasks_depends_on_task_id', 'pipeline_tasks', ['depends_on_task_id'])
    op.create_index('ix_pipeline_tasks_current_stage', 'pipeline_tasks', ['current_stage'])
    op.create_index('idx_pipeline_tasks_pipeline_status', 'pipeline_tasks', ['pipeline_id', 'status'])

    op.create_table(
        'pipeline_events',
        _uuid_pk(),
        sa.Column('task_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('pipeline_tasks.id', ondelete='CASCADE'), nullable=True),
        sa.Column('pipeline_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('document_pipelines.id', ondelete='CASCADE'), nullable=True),
        sa.Column('item_id', sa.String(100), nullable=False),
        sa.Column('item_type', sa.String(20), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('stage', sa.String(20), nullable=True),
        sa.Column('status', sa.String(50), nullable=True),
        sa.Column('from_stage', sa.String(20), nullable=True),
        sa.Column('to_stage', sa.String(20), nullable=True),
        sa.Column('from_status', sa.String(50), nullable=True),
        sa.Column('to_status', sa.String(50), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('payload', postgresql.JSONB(), nullable=False, server_default='{}'),
        _created_at(),
    )
    op.create_index('ix_pipeline_events_task_id', 'pipeline_events', ['task_id'])
    op.create_index('ix_pipeline_events_pipeline_id', 'pipeline_events', ['pipeline_id'])
    op.create_index('ix_pipeline_events_event_type', 'pipeline_events', ['event_type'])
    op.create_index('idx_pipeline_events_item_created', 'pipeline_events', ['item_id', 'created_at'])


def downgrade() -> None:
    """Drop all curation tables."""
    for table in (
        'pipeline_events',
        'pipeline_tasks',
        'document_pipelines',
        'deprecations',
        'immutability_violations',
        'approval_events',
        'review_queue',
        'validation_failures',
        'state_transition_events',
        'approved_exercises',
        'approved_rules',
        'approved_utterances',
        'approved_meanings',
        'validated',
        'candidates',
        'drafts',
    ):
        op.drop_table(table)
