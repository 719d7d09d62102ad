"""task tags

Revision ID: 8f2d4c6a1b93
Revises: 3c1e9a7b2d40
Create Date: 2026-10-18 16:04:12.518274

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8f2d4c6a1b93'
down_revision: Union[str, None] = '3c1e9a7b2d40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'task_tags',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('community_id', sa.Integer(), sa.ForeignKey('communities.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('color', sa.String(length=20), nullable=False, server_default='#3B82F6'),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('community_id', 'name', name='uq_task_tag_community_name'),
    )
    op.create_index('ix_task_tags_id', 'task_tags', ['id'])
    op.create_index('ix_task_tags_community_id', 'task_tags', ['community_id'])

    op.create_table(
        'task_tag_assignments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('task_id', sa.Integer(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tag_id', sa.Integer(), sa.ForeignKey('task_tags.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assigned_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('task_id', 'tag_id', name='uq_task_tag_assignment'),
    )
    op.create_index('ix_task_tag_assignments_id', 'task_tag_assignments', ['id'])
    op.create_index('ix_task_tag_assignments_task_id', 'task_tag_assignments', ['task_id'])
    op.create_index('ix_task_tag_assignments_tag_id', 'task_tag_assignments', ['tag_id'])


def downgrade() -> None:
    op.drop_table('task_tag_assignments')
    op.drop_table('task_tags')
