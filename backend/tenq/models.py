from tenq import db
from tenq.constants import (
    QUESTION_TIME_LIMIT_MS,
    READY_TO_FINALIZE_INDEX,
    ANSWER_KIND_SELECTED,
    ANSWER_KIND_TIMEOUT,
)
from tenq.utils import new_id, utcnow, isoformat


class Player(db.Model):
    __tablename__ = 'players'
    id = db.Column(db.String(64), primary_key=True)
    handle_display = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @staticmethod
    def default_handle(player_id):
        return f"Player{str(player_id)[:8]}"


# ---- Quiz content (authored and published elsewhere; read-only here) ----

class Quiz(db.Model):
    __tablename__ = 'quizzes'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    release_at = db.Column(db.DateTime, nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default='draft')  # draft, published, archived
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def is_published(self):
        return self.status == 'published'

    def to_dict(self):
        return {
            'quiz_id': self.id,
            'release_at': isoformat(self.release_at),
        }


class Question(db.Model):
    __tablename__ = 'questions'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    prompt = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    answers = db.relationship(
        'QuestionAnswer', back_populates='question', order_by='QuestionAnswer.sort_index'
    )


class QuestionAnswer(db.Model):
    __tablename__ = 'question_answers'
    __table_args__ = (
        db.UniqueConstraint('question_id', 'sort_index', name='uq_question_answers_question_sort'),
        db.CheckConstraint('sort_index BETWEEN 0 AND 3', name='ck_question_answers_sort_index'),
    )
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    question_id = db.Column(db.String(36), db.ForeignKey('questions.id', ondelete='CASCADE'), nullable=False)
    body = db.Column(db.Text, nullable=False)
    sort_index = db.Column(db.Integer, nullable=False)
    # Server-side only. Never serialize this column to clients.
    is_correct = db.Column(db.Boolean, nullable=False, default=False)
    question = db.relationship('Question', back_populates='answers')

    def to_public_dict(self):
        return {
            'answer_id': self.id,
            'body': self.body,
            'sort_index': self.sort_index,
        }


class QuizQuestion(db.Model):
    __tablename__ = 'quiz_questions'
    __table_args__ = (
        db.UniqueConstraint('quiz_id', 'order_index', name='uq_quiz_questions_quiz_order'),
        db.CheckConstraint('order_index BETWEEN 1 AND 10', name='ck_quiz_questions_order_index'),
    )
    quiz_id = db.Column(db.String(36), db.ForeignKey('quizzes.id', ondelete='CASCADE'), primary_key=True)
    question_id = db.Column(db.String(36), db.ForeignKey('questions.id', ondelete='CASCADE'), primary_key=True)
    order_index = db.Column(db.Integer, nullable=False)
    quiz = db.relationship('Quiz')
    question = db.relationship('Question')


# ---- Attempt store ----

class Attempt(db.Model):
    __tablename__ = 'attempts'
    __table_args__ = (
        db.UniqueConstraint('player_id', 'quiz_id', name='uq_attempts_player_quiz'),
        db.CheckConstraint('current_index BETWEEN 1 AND 11', name='ck_attempts_current_index'),
    )
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    quiz_id = db.Column(db.String(36), db.ForeignKey('quizzes.id', ondelete='RESTRICT'), nullable=False)
    player_id = db.Column(db.String(64), db.ForeignKey('players.id', ondelete='CASCADE'), nullable=False, index=True)
    started_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    finalized_at = db.Column(db.DateTime, nullable=True)
    current_index = db.Column(db.Integer, nullable=False, default=1)
    current_question_started_at = db.Column(db.DateTime, nullable=True)
    # Always current_question_started_at + QUESTION_TIME_LIMIT_MS
    current_question_expires_at = db.Column(db.DateTime, nullable=True)
    total_score = db.Column(db.Integer, nullable=False, default=0)
    total_time_ms = db.Column(db.Integer, nullable=False, default=0)

    @property
    def is_finalized(self):
        return self.finalized_at is not None

    @property
    def is_ready_to_finalize(self):
        return not self.is_finalized and self.current_index >= READY_TO_FINALIZE_INDEX

    def to_dict(self):
        return {
            'attempt_id': self.id,
            'quiz_id': self.quiz_id,
            'player_id': self.player_id,
            'current_index': self.current_index,
            'current_question_started_at': isoformat(self.current_question_started_at),
            'current_question_expires_at': isoformat(self.current_question_expires_at),
            'total_score': self.total_score,
            'total_time_ms': self.total_time_ms,
            'finalized_at': isoformat(self.finalized_at),
            'question_time_limit_ms': QUESTION_TIME_LIMIT_MS,
        }


class AttemptAnswer(db.Model):
    __tablename__ = 'attempt_answers'
    __table_args__ = (
        db.CheckConstraint(
            f"answer_kind IN ('{ANSWER_KIND_SELECTED}', '{ANSWER_KIND_TIMEOUT}')",
            name='ck_attempt_answers_kind',
        ),
        db.CheckConstraint(
            f"time_ms BETWEEN 0 AND {QUESTION_TIME_LIMIT_MS}", name='ck_attempt_answers_time_ms'
        ),
        db.CheckConstraint('bonus_points BETWEEN 0 AND 5', name='ck_attempt_answers_bonus'),
        db.CheckConstraint(
            f"(answer_kind = '{ANSWER_KIND_SELECTED}' AND selected_answer_id IS NOT NULL) OR "
            f"(answer_kind = '{ANSWER_KIND_TIMEOUT}' AND selected_answer_id IS NULL)",
            name='ck_attempt_answers_selection',
        ),
    )
    # (attempt_id, question_id) is the idempotency anchor for submits
    attempt_id = db.Column(db.String(36), db.ForeignKey('attempts.id', ondelete='CASCADE'), primary_key=True)
    question_id = db.Column(db.String(36), db.ForeignKey('questions.id', ondelete='CASCADE'), primary_key=True)
    answer_kind = db.Column(db.String(16), nullable=False)
    selected_answer_id = db.Column(db.String(36), db.ForeignKey('question_answers.id'), nullable=True)
    is_correct = db.Column(db.Boolean, nullable=False)
    time_ms = db.Column(db.Integer, nullable=False)
    base_points = db.Column(db.Integer, nullable=False)
    bonus_points = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def total_points(self):
        return self.base_points + self.bonus_points

    def to_dict(self):
        return {
            'question_id': self.question_id,
            'answer_kind': self.answer_kind,
            'selected_answer_id': self.selected_answer_id,
            'is_correct': self.is_correct,
            'time_ms': self.time_ms,
            'base_points': self.base_points,
            'bonus_points': self.bonus_points,
            'total_points': self.total_points,
        }


class DailyScore(db.Model):
    __tablename__ = 'daily_scores'
    __table_args__ = (
        db.CheckConstraint('correct_count BETWEEN 0 AND 10', name='ck_daily_scores_correct_count'),
    )
    quiz_id = db.Column(db.String(36), db.ForeignKey('quizzes.id', ondelete='RESTRICT'), primary_key=True)
    player_id = db.Column(db.String(64), db.ForeignKey('players.id', ondelete='CASCADE'), primary_key=True)
    completed_at = db.Column(db.DateTime, nullable=False, index=True)
    score = db.Column(db.Integer, nullable=False)
    total_time_ms = db.Column(db.Integer, nullable=False)
    correct_count = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'quiz_id': self.quiz_id,
            'player_id': self.player_id,
            'score': self.score,
            'total_time_ms': self.total_time_ms,
            'correct_count': self.correct_count,
            'completed_at': isoformat(self.completed_at),
        }


class OutboxEvent(db.Model):
    __tablename__ = 'outbox_events'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    aggregate_type = db.Column(db.String(32), nullable=False)
    aggregate_id = db.Column(db.String(36), nullable=False, index=True)
    event_type = db.Column(db.String(64), nullable=False)
    event_version = db.Column(db.Integer, nullable=False, default=1)
    actor_player_id = db.Column(db.String(64), nullable=True)
    payload = db.Column(db.JSON, nullable=False)
    published_at = db.Column(db.DateTime, nullable=True)
