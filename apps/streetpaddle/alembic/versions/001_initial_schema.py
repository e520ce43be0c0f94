"""001_initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 10:00:00.000000

Initial schema: users, group chats with read watermarks, the announcement
feed, tournaments and persisted draw rounds.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('username', sa.String(50), nullable=False, unique=True),
        sa.Column('email', sa.String(255), nullable=True, unique=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('last_read_announcements_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'groups',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('creator_id', sa.String(64), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('latest_message', sa.Text(), nullable=True),
        sa.Column('latest_message_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'group_members',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('group_id', sa.String(64), sa.ForeignKey('groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('last_read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('group_id', 'user_id', name='uq_group_members_group_user'),
    )
    op.create_index('idx_group_members_user', 'group_members', ['user_id'])

    op.create_table(
        'group_messages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('group_id', sa.String(64), sa.ForeignKey('groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.String(64), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_group_messages_group_created', 'group_messages', ['group_id', 'created_at'])

    op.create_table(
        'public_messages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('sender_id', sa.String(64), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('sender_username', sa.String(50), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_public_messages_created', 'public_messages', ['created_at'])

    op.create_table(
        'tournaments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('number_of_players', sa.Integer(), nullable=False),
        sa.Column('categories', sa.JSON(), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('link', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'draw_rounds',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('tournament_id', sa.Integer(), sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('round_key', sa.String(32), nullable=False),
        sa.Column('round_index', sa.Integer(), nullable=True),
        sa.Column('player_names', sa.JSON(), nullable=True),
        sa.Column('scores', sa.JSON(), nullable=True),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('champion_name', sa.String(255), nullable=True),
        sa.Column('champion_score', sa.String(100), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('tournament_id', 'category', 'round_key', name='uq_draw_rounds_key'),
    )
    op.create_index('idx_draw_rounds_category', 'draw_rounds', ['tournament_id', 'category'])


def downgrade() -> None:
    op.drop_index('idx_draw_rounds_category', table_name='draw_rounds')
    op.drop_table('draw_rounds')
    op.drop_table('tournaments')
    op.drop_index('idx_public_messages_created', table_name='public_messages')
    op.drop_table('public_messages')
    op.drop_index('idx_group_messages_group_created', table_name='group_messages')
    op.drop_table('group_messages')
    op.drop_index('idx_group_members_user', table_name='group_members')
    op.drop_table('group_members')
    op.drop_table('groups')
    op.drop_table('users')
