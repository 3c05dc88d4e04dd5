"""Production workflow: stages, workflows, stage transitions, tasks, issues

Revision ID: 5e1a9c3b7d20
Revises:
Create Date: 2026-10-19 09:12:04.118230

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5e1a9c3b7d20'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'production_stages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('stage_order', sa.Integer(), nullable=False,
                  comment='1-based position in the catalog'),
        sa.Column('department', sa.String(length=20), nullable=False,
                  comment='engineering | shop | paint | shipping | field'),
        sa.Column('required_approvals', sa.Integer(), nullable=False),
        sa.Column('estimated_hours', sa.Float(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("department IN ('engineering','shop','paint','shipping','field')",
                           name='ck_production_stage_department'),
        sa.CheckConstraint('stage_order > 0', name='ck_production_stage_order'),
        sa.CheckConstraint('required_approvals >= 0', name='ck_production_stage_approvals'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sa.UniqueConstraint('stage_order'),
    )

    op.create_table(
        'production_workflows',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('piece_mark_id', sa.String(length=64), nullable=False,
                  comment='Reference to the tracked piece mark (owned by the piece-mark service)'),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column('current_stage_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False,
                  comment='not_started | in_progress | on_hold | completed | cancelled'),
        sa.Column('priority', sa.String(length=10), nullable=False,
                  comment='low | normal | high | urgent'),
        sa.Column('scheduled_start', sa.Date(), nullable=True),
        sa.Column('scheduled_end', sa.Date(), nullable=True),
        sa.Column('actual_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('progress_percentage', sa.Integer(), nullable=False),
        sa.Column('assigned_to', sa.String(length=100), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('not_started','in_progress','on_hold','completed','cancelled')",
                           name='ck_production_workflow_status'),
        sa.CheckConstraint("priority IN ('low','normal','high','urgent')",
                           name='ck_production_workflow_priority'),
        sa.CheckConstraint('progress_percentage >= 0 AND progress_percentage <= 100',
                           name='ck_production_workflow_progress'),
        sa.ForeignKeyConstraint(['current_stage_id'], ['production_stages.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('production_workflows', schema=None) as batch_op:
        batch_op.create_index('ix_production_workflows_piece_mark_id', ['piece_mark_id'], unique=False)
        batch_op.create_index('ix_production_workflows_project_id', ['project_id'], unique=False)
        batch_op.create_index('ix_production_workflows_current_stage_id', ['current_stage_id'], unique=False)
        batch_op.create_index('ix_production_workflows_status', ['status'], unique=False)

    op.create_table(
        'stage_transitions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workflow_id', sa.Integer(), nullable=False),
        sa.Column('from_stage_id', sa.Integer(), nullable=True),
        sa.Column('to_stage_id', sa.Integer(), nullable=False),
        sa.Column('transitioned_by', sa.String(length=100), nullable=False),
        sa.Column('transition_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('duration_hours', sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(['workflow_id'], ['production_workflows.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['from_stage_id'], ['production_stages.id']),
        sa.ForeignKeyConstraint(['to_stage_id'], ['production_stages.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('stage_transitions', schema=None) as batch_op:
        batch_op.create_index('ix_stage_transitions_workflow_id', ['workflow_id'], unique=False)
        batch_op.create_index('idx_stage_transitions_workflow_date',
                              ['workflow_id', 'transition_date'], unique=False)

    op.create_table(
        'production_tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workflow_id', sa.Integer(), nullable=False),
        sa.Column('stage_id', sa.Integer(), nullable=False),
        sa.Column('task_name', sa.String(length=200), nullable=False),
        sa.Column('task_type', sa.String(length=20), nullable=False,
                  comment='fabrication | welding | drilling | cutting | assembly | painting | inspection | shipping'),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('assigned_to', sa.String(length=100), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_hours', sa.Float(), nullable=True),
        sa.Column('actual_hours', sa.Float(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('pending','in_progress','completed','skipped','failed')",
                           name='ck_production_task_status'),
        sa.ForeignKeyConstraint(['workflow_id'], ['production_workflows.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['stage_id'], ['production_stages.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('workflow_id', 'stage_id', 'task_name',
                            name='uq_production_task_workflow_stage_name'),
    )
    with op.batch_alter_table('production_tasks', schema=None) as batch_op:
        batch_op.create_index('ix_production_tasks_workflow_id', ['workflow_id'], unique=False)
        batch_op.create_index('ix_production_tasks_stage_id', ['stage_id'], unique=False)
        batch_op.create_index('ix_production_tasks_status', ['status'], unique=False)

    op.create_table(
        'production_issues',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workflow_id', sa.Integer(), nullable=False),
        sa.Column('issue_type', sa.String(length=20), nullable=False,
                  comment='material | equipment | labor | quality | design | weather | other'),
        sa.Column('severity', sa.String(length=10), nullable=False,
                  comment='low | medium | high | critical'),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('impact_hours', sa.Float(), nullable=True),
        sa.Column('reported_by', sa.String(length=100), nullable=False),
        sa.Column('assigned_to', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('resolution', sa.Text(), nullable=True),
        sa.Column('reported_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("severity IN ('low','medium','high','critical')",
                           name='ck_production_issue_severity'),
        sa.CheckConstraint("status IN ('open','in_progress','resolved','closed')",
                           name='ck_production_issue_status'),
        sa.ForeignKeyConstraint(['workflow_id'], ['production_workflows.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('production_issues', schema=None) as batch_op:
        batch_op.create_index('ix_production_issues_workflow_id', ['workflow_id'], unique=False)
        batch_op.create_index('ix_production_issues_status', ['status'], unique=False)


def downgrade():
    with op.batch_alter_table('production_issues', schema=None) as batch_op:
        batch_op.drop_index('ix_production_issues_status')
        batch_op.drop_index('ix_production_issues_workflow_id')
    op.drop_table('production_issues')

    with op.batch_alter_table('production_tasks', schema=None) as batch_op:
        batch_op.drop_index('ix_production_tasks_status')
        batch_op.drop_index('ix_production_tasks_stage_id')
        batch_op.drop_index('ix_production_tasks_workflow_id')
    op.drop_table('production_tasks')

    with op.batch_alter_table('stage_transitions', schema=None) as batch_op:
        batch_op.drop_index('idx_stage_transitions_workflow_date')
        batch_op.drop_index('ix_stage_transitions_workflow_id')
    op.drop_table('stage_transitions')

    with op.batch_alter_table('production_workflows', schema=None) as batch_op:
        batch_op.drop_index('ix_production_workflows_status')
        batch_op.drop_index('ix_production_workflows_current_stage_id')
        batch_op.drop_index('ix_production_workflows_project_id')
        batch_op.drop_index('ix_production_workflows_piece_mark_id')
    op.drop_table('production_workflows')

    op.drop_table('production_stages')
