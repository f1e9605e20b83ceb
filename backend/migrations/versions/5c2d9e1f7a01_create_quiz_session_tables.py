"""create quiz, session, player and answer event tables

Revision ID: 5c2d9e1f7a01
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2d9e1f7a01'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa.inspect(bind).get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    op.create_table(
        'quiz',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
    )
    op.create_table(
        'question',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('quiz_id', sa.Integer(), sa.ForeignKey('quiz.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('time_limit_seconds', sa.Integer(), nullable=False),
        sa.CheckConstraint('time_limit_seconds BETWEEN 5 AND 120', name='ck_question_time_limit'),
    )
    op.create_index('ix_question_quiz_id', 'question', ['quiz_id'])
    op.create_table(
        'option',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('question.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index('ix_option_question_id', 'option', ['question_id'])
    op.create_table(
        'game_session',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('quiz_id', sa.Integer(), sa.ForeignKey('quiz.id'), nullable=False),
        sa.Column('host_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('pin', sa.String(length=12), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='lobby'),
        sa.Column('current_question_index', sa.Integer(), nullable=True),
        sa.Column('question_started_at', sa.Float(), nullable=True),
        sa.Column('question_open', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.Float(), nullable=False),
    )
    op.create_index('ix_game_session_pin', 'game_session', ['pin'], unique=True)
    op.create_table(
        'player',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.Integer(), sa.ForeignKey('game_session.id'), nullable=False),
        sa.Column('display_name', sa.String(length=64), nullable=False),
        sa.Column('joined_at', sa.Float(), nullable=False),
    )
    op.create_index('ix_player_session_id', 'player', ['session_id'])
    op.create_table(
        'answer_event',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.Integer(), sa.ForeignKey('game_session.id'), nullable=False),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=False),
        sa.Column('question_index', sa.Integer(), nullable=False),
        sa.Column('option_id', sa.Integer(), sa.ForeignKey('option.id'), nullable=False),
        sa.Column('time_taken_seconds', sa.Float(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False),
        sa.Column('submitted_at', sa.Float(), nullable=False),
        sa.UniqueConstraint('session_id', 'player_id', 'question_index', name='uq_answer_event_once'),
    )
    op.create_index('ix_answer_event_session_id', 'answer_event', ['session_id'])


def downgrade():
    op.drop_index('ix_answer_event_session_id', table_name='answer_event')
    op.drop_table('answer_event')
    op.drop_index('ix_player_session_id', table_name='player')
    op.drop_table('player')
    op.drop_index('ix_game_session_pin', table_name='game_session')
    op.drop_table('game_session')
    op.drop_index('ix_option_question_id', table_name='option')
    op.drop_table('option')
    op.drop_index('ix_question_quiz_id', table_name='question')
    op.drop_table('question')
    op.drop_table('quiz')
