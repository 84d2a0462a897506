"""create users, game_sessions and leaderboard

Revision ID: 4c2a9e7b1d30
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c2a9e7b1d30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=128), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False),
        sa.Column('subscription', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'game_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('game_mode', sa.String(length=32), nullable=False),
        sa.Column('difficulty', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('reported_duration', sa.Float(), nullable=True),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('aggregated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_game_sessions_user_id', 'game_sessions', ['user_id'])
    op.create_index('ix_game_sessions_status', 'game_sessions', ['status'])
    op.create_index('ix_game_sessions_user_status', 'game_sessions', ['user_id', 'status'])
    op.create_index('ix_game_sessions_mode_score', 'game_sessions', ['game_mode', 'score'])

    op.create_table(
        'leaderboard',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('best_score', sa.Integer(), nullable=False),
        sa.Column('total_games', sa.Integer(), nullable=False),
        sa.Column('total_playtime', sa.Integer(), nullable=False),
        sa.Column('last_played', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )
    op.create_index('ix_leaderboard_best_score', 'leaderboard', ['best_score'])


def downgrade():
    op.drop_index('ix_leaderboard_best_score', table_name='leaderboard')
    op.drop_table('leaderboard')
    op.drop_index('ix_game_sessions_mode_score', table_name='game_sessions')
    op.drop_index('ix_game_sessions_user_status', table_name='game_sessions')
    op.drop_index('ix_game_sessions_status', table_name='game_sessions')
    op.drop_index('ix_game_sessions_user_id', table_name='game_sessions')
    op.drop_table('game_sessions')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
