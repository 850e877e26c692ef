"""create quiz content, players, attempts, attempt_answers, daily_scores

Revision ID: 5b7d1e0a9c21
Revises:
Create Date: 2025-01-19 00:00:00
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5b7d1e0a9c21'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa.inspect(bind).get_table_names())

    if 'players' not in existing_tables:
        op.create_table(
            'players',
            sa.Column('id', sa.String(length=64), primary_key=True),
            sa.Column('handle_display', sa.String(length=64), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )

    if 'quizzes' not in existing_tables:
        op.create_table(
            'quizzes',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('release_at', sa.DateTime(), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_quizzes_release_at', 'quizzes', ['release_at'])

    if 'questions' not in existing_tables:
        op.create_table(
            'questions',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('prompt', sa.Text(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )

    if 'question_answers' not in existing_tables:
        op.create_table(
            'question_answers',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('question_id', sa.String(length=36),
                      sa.ForeignKey('questions.id', ondelete='CASCADE'), nullable=False),
            sa.Column('body', sa.Text(), nullable=False),
            sa.Column('sort_index', sa.Integer(), nullable=False),
            sa.Column('is_correct', sa.Boolean(), nullable=False),
            sa.UniqueConstraint('question_id', 'sort_index', name='uq_question_answers_question_sort'),
            sa.CheckConstraint('sort_index BETWEEN 0 AND 3', name='ck_question_answers_sort_index'),
        )

    if 'quiz_questions' not in existing_tables:
        op.create_table(
            'quiz_questions',
            sa.Column('quiz_id', sa.String(length=36),
                      sa.ForeignKey('quizzes.id', ondelete='CASCADE'), primary_key=True),
            sa.Column('question_id', sa.String(length=36),
                      sa.ForeignKey('questions.id', ondelete='CASCADE'), primary_key=True),
            sa.Column('order_index', sa.Integer(), nullable=False),
            sa.UniqueConstraint('quiz_id', 'order_index', name='uq_quiz_questions_quiz_order'),
            sa.CheckConstraint('order_index BETWEEN 1 AND 10', name='ck_quiz_questions_order_index'),
        )

    if 'attempts' not in existing_tables:
        op.create_table(
            'attempts',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('quiz_id', sa.String(length=36),
                      sa.ForeignKey('quizzes.id', ondelete='RESTRICT'), nullable=False),
            sa.Column('player_id', sa.String(length=64),
                      sa.ForeignKey('players.id', ondelete='CASCADE'), nullable=False),
            sa.Column('started_at', sa.DateTime(), nullable=False),
            sa.Column('finalized_at', sa.DateTime(), nullable=True),
            sa.Column('current_index', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('current_question_started_at', sa.DateTime(), nullable=True),
            sa.Column('current_question_expires_at', sa.DateTime(), nullable=True),
            sa.Column('total_score', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_time_ms', sa.Integer(), nullable=False, server_default='0'),
            # One attempt per (player, quiz): concurrent starts converge here
            sa.UniqueConstraint('player_id', 'quiz_id', name='uq_attempts_player_quiz'),
            sa.CheckConstraint('current_index BETWEEN 1 AND 11', name='ck_attempts_current_index'),
        )
        op.create_index('ix_attempts_player_id', 'attempts', ['player_id'])

    if 'attempt_answers' not in existing_tables:
        op.create_table(
            'attempt_answers',
            # Composite key (attempt_id, question_id): concurrent submits converge here
            sa.Column('attempt_id', sa.String(length=36),
                      sa.ForeignKey('attempts.id', ondelete='CASCADE'), primary_key=True),
            sa.Column('question_id', sa.String(length=36),
                      sa.ForeignKey('questions.id', ondelete='CASCADE'), primary_key=True),
            sa.Column('answer_kind', sa.String(length=16), nullable=False),
            sa.Column('selected_answer_id', sa.String(length=36),
                      sa.ForeignKey('question_answers.id'), nullable=True),
            sa.Column('is_correct', sa.Boolean(), nullable=False),
            sa.Column('time_ms', sa.Integer(), nullable=False),
            sa.Column('base_points', sa.Integer(), nullable=False),
            sa.Column('bonus_points', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.CheckConstraint("answer_kind IN ('selected', 'timeout')", name='ck_attempt_answers_kind'),
            sa.CheckConstraint('time_ms BETWEEN 0 AND 16000', name='ck_attempt_answers_time_ms'),
            sa.CheckConstraint('bonus_points BETWEEN 0 AND 5', name='ck_attempt_answers_bonus'),
            sa.CheckConstraint(
                "(answer_kind = 'selected' AND selected_answer_id IS NOT NULL) OR "
                "(answer_kind = 'timeout' AND selected_answer_id IS NULL)",
                name='ck_attempt_answers_selection',
            ),
        )

    if 'daily_scores' not in existing_tables:
        op.create_table(
            'daily_scores',
            sa.Column('quiz_id', sa.String(length=36),
                      sa.ForeignKey('quizzes.id', ondelete='RESTRICT'), primary_key=True),
            sa.Column('player_id', sa.String(length=64),
                      sa.ForeignKey('players.id', ondelete='CASCADE'), primary_key=True),
            sa.Column('completed_at', sa.DateTime(), nullable=False),
            sa.Column('score', sa.Integer(), nullable=False),
            sa.Column('total_time_ms', sa.Integer(), nullable=False),
            sa.Column('correct_count', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.CheckConstraint('correct_count BETWEEN 0 AND 10', name='ck_daily_scores_correct_count'),
        )
        op.create_index('ix_daily_scores_completed_at', 'daily_scores', ['completed_at'])


def downgrade():
    op.drop_index('ix_daily_scores_completed_at', table_name='daily_scores')
    op.drop_table('daily_scores')
    op.drop_table('attempt_answers')
    op.drop_index('ix_attempts_player_id', table_name='attempts')
    op.drop_table('attempts')
    op.drop_table('quiz_questions')
    op.drop_table('question_answers')
    op.drop_table('questions')
    op.drop_index('ix_quizzes_release_at', table_name='quizzes')
    op.drop_table('quizzes')
    op.drop_table('players')
