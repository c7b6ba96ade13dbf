"""create_approval_workflow_tables

Revision ID: 3b7e1c2a9d40
Revises:
Create Date: 2026-10-17 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3b7e1c2a9d40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    'role': ('SUPER_ADMIN', 'VP', 'PM', 'ENGINEER', 'PROJECT_MANAGER', 'DEVELOPER', 'VIEWER'),
    'entitytype': ('TASK', 'PROJECT'),
    'approvertype': ('ROLE', 'DYNAMIC'),
    'dynamicapprovertype': ('ENGINEERING_TEAM', 'TASK_PROJECT_MANAGER', 'TASK_PM', 'TASK_ASSIGNED_DEVELOPER'),
    'workflowactiontype': ('APPROVE', 'REJECT', 'SEND_BACK', 'REQUEST_CHANGE', 'START', 'RESUBMIT'),
    'instancestatus': ('NOT_STARTED', 'IN_PROGRESS', 'COMPLETED', 'REJECTED', 'CHANGES_REQUESTED'),
    'packagestatus': ('PM_DRAFT', 'PJM_REVIEW', 'ENG_REVIEW', 'PM_ACTIVATE', 'SENT_BACK', 'ACTIVE'),
    'packagestage': ('PM', 'PJM', 'ENG'),
    'packageeventtype': ('ADVANCE', 'SEND_BACK', 'ACTIVATE'),
}


def enum(name: str) -> postgresql.ENUM:
    # Types are created once up front; several columns share 'role' and 'packagestatus'.
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table('workflow_definitions',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('entity_type', enum('entitytype'), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
    sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    sa.Column('previous_version_id', sa.String(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['previous_version_id'], ['workflow_definitions.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflow_definitions_id'), 'workflow_definitions', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_definitions_entity_type'), 'workflow_definitions', ['entity_type'], unique=False)

    op.create_table('workflow_step_definitions',
    sa.Column('pk', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('workflow_definition_id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('order', sa.Integer(), nullable=False),
    sa.Column('assignee_role', enum('role'), nullable=False),
    sa.Column('approver_type', enum('approvertype'), nullable=False),
    sa.Column('approver_role', enum('role'), nullable=True),
    sa.Column('dynamic_approver_type', enum('dynamicapprovertype'), nullable=True),
    sa.Column('requires_comment_on_reject', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('requires_comment_on_send_back', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('allowed_actions', sa.JSON(), nullable=False),
    sa.ForeignKeyConstraint(['workflow_definition_id'], ['workflow_definitions.id'], ),
    sa.PrimaryKeyConstraint('pk'),
    sa.UniqueConstraint('workflow_definition_id', 'order', name='uq_step_definition_order')
    )
    op.create_index(op.f('ix_workflow_step_definitions_id'), 'workflow_step_definitions', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_step_definitions_workflow_definition_id'), 'workflow_step_definitions',
                    ['workflow_definition_id'], unique=False)

    op.create_table('workflow_instances',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('definition_id', sa.String(), nullable=False),
    sa.Column('entity_id', sa.String(), nullable=False),
    sa.Column('entity_type', enum('entitytype'), nullable=False),
    sa.Column('status', enum('instancestatus'), nullable=False),
    sa.Column('current_step_id', sa.String(), nullable=True),
    sa.Column('context', sa.JSON(), nullable=False),
    sa.Column('steps', sa.JSON(), nullable=False),
    sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    sa.Column('completion_notified_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['definition_id'], ['workflow_definitions.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('entity_type', 'entity_id', name='uq_instance_entity')
    )
    op.create_index(op.f('ix_workflow_instances_id'), 'workflow_instances', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_instances_definition_id'), 'workflow_instances', ['definition_id'], unique=False)
    op.create_index(op.f('ix_workflow_instances_entity_id'), 'workflow_instances', ['entity_id'], unique=False)

    op.create_table('workflow_actions',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('instance_id', sa.String(), nullable=False),
    sa.Column('sequence', sa.Integer(), nullable=False),
    sa.Column('step_id', sa.String(), nullable=False),
    sa.Column('actor_id', sa.String(), nullable=False),
    sa.Column('action', enum('workflowactiontype'), nullable=False),
    sa.Column('comment', sa.Text(), nullable=True),
    sa.Column('extra_data', sa.JSON(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['instance_id'], ['workflow_instances.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('instance_id', 'sequence', name='uq_action_sequence')
    )
    op.create_index(op.f('ix_workflow_actions_id'), 'workflow_actions', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_actions_instance_id'), 'workflow_actions', ['instance_id'], unique=False)

    op.create_table('projects',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('owner_id', sa.String(), nullable=False),
    sa.Column('delivery_manager_id', sa.String(), nullable=True),
    sa.Column('vendor_company_ids', sa.JSON(), nullable=False),
    sa.Column('package_status', enum('packagestatus'), nullable=False, server_default='PM_DRAFT'),
    sa.Column('package_sent_back_to', enum('packagestage'), nullable=True),
    sa.Column('package_sent_back_reason', sa.Text(), nullable=True),
    sa.Column('package_sent_back_by_id', sa.String(), nullable=True),
    sa.Column('package_sent_back_at', sa.DateTime(), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    sa.Column('activation_notified_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_projects_id'), 'projects', ['id'], unique=False)
    op.create_index(op.f('ix_projects_owner_id'), 'projects', ['owner_id'], unique=False)
    op.create_index(op.f('ix_projects_delivery_manager_id'), 'projects', ['delivery_manager_id'], unique=False)

    op.create_table('project_package_events',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('project_id', sa.String(), nullable=False),
    sa.Column('sequence', sa.Integer(), nullable=False),
    sa.Column('actor_id', sa.String(), nullable=False),
    sa.Column('event', enum('packageeventtype'), nullable=False),
    sa.Column('from_status', enum('packagestatus'), nullable=False),
    sa.Column('to_status', enum('packagestatus'), nullable=False),
    sa.Column('target_stage', enum('packagestage'), nullable=True),
    sa.Column('reason', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('project_id', 'sequence', name='uq_package_event_sequence')
    )
    op.create_index(op.f('ix_project_package_events_id'), 'project_package_events', ['id'], unique=False)
    op.create_index(op.f('ix_project_package_events_project_id'), 'project_package_events', ['project_id'],
                    unique=False)


def downgrade() -> None:
    op.drop_table('project_package_events')
    op.drop_table('projects')
    op.drop_table('workflow_actions')
    op.drop_table('workflow_instances')
    op.drop_table('workflow_step_definitions')
    op.drop_table('workflow_definitions')

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
