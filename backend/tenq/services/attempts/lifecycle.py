"""Attempt lifecycle: start/resume, submit, finalize.

State per attempt::

    NOT_STARTED -> IN_PROGRESS (current_index 1..10)
                -> READY_TO_FINALIZE (current_index 11)
                -> FINALIZED (finalized_at set, row immutable)

There are no in-process locks and no timers. The two unique constraints,
``attempts (player_id, quiz_id)`` and ``attempt_answers (attempt_id,
question_id)``, are the only serialization points: a writer that loses the
race on either one rolls back and re-reads the winner's row. Deadlines are
persisted once and compared against the server clock on every contact; a
question whose deadline passed while nobody was looking is resolved as a
timeout by the next ``start_or_resume`` or ``resume_attempt``; ``finalize``
only counts what is already recorded.
"""
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from tenq import db
from tenq.constants import (
    ANSWER_KIND_SELECTED,
    ANSWER_KIND_TIMEOUT,
    MAX_QUESTIONS_PER_QUIZ,
    QUESTION_TIME_LIMIT_MS,
    STATE_FINALIZED,
    STATE_IN_PROGRESS,
    STATE_READY_TO_FINALIZE,
)
from tenq.errors import (
    ErrorCodes,
    NotAuthorized,
    NotFound,
    StateConflict,
    ValidationFailed,
    attempt_not_found,
    validation_error,
)
from tenq.models import Attempt, AttemptAnswer, DailyScore, OutboxEvent, Player
from tenq.services.attempts.scoring import QuestionScore, score
from tenq.services.quizzes import quiz_provider
from tenq.utils import elapsed_ms, isoformat, to_naive_utc, utcnow

QUESTION_TIME_LIMIT = timedelta(milliseconds=QUESTION_TIME_LIMIT_MS)


# ---- lookups ----

def _find_attempt(player_id, quiz_id):
    return Attempt.query.filter_by(player_id=player_id, quiz_id=quiz_id).first()


def _get_owned_attempt(player_id, attempt_id):
    # Someone else's attempt is reported exactly like a missing one
    attempt = Attempt.query.filter_by(id=attempt_id).first() if attempt_id else None
    if attempt is None or attempt.player_id != player_id:
        raise attempt_not_found()
    return attempt


def _find_answer(attempt_id, question_id):
    return AttemptAnswer.query.filter_by(attempt_id=attempt_id, question_id=question_id).first()


def _ensure_player(player_id):
    if db.session.get(Player, player_id) is not None:
        return
    try:
        db.session.add(Player(id=player_id, handle_display=Player.default_handle(player_id)))
        db.session.commit()
    except IntegrityError:
        # Created by a concurrent first request
        db.session.rollback()


def _question_timing(started_at, index):
    if index > MAX_QUESTIONS_PER_QUIZ:
        return None, None
    return started_at, started_at + QUESTION_TIME_LIMIT


def _write_event(event_type, attempt_id, actor_player_id, payload):
    db.session.add(OutboxEvent(
        aggregate_type='attempt',
        aggregate_id=attempt_id,
        event_type=event_type,
        actor_player_id=actor_player_id,
        payload=payload,
    ))


# ---- the single write path for answers (selected and timeout) ----

def _record_answer(attempt, question_id, result: QuestionScore, selected_answer_id, resolved_at):
    """Insert the answer and advance the attempt in one transaction.

    Returns ``(answer, inserted)``. When a concurrent writer already stored
    an answer for this question, ours is discarded and theirs is returned
    with ``inserted=False``.
    """
    attempt_id = attempt.id
    player_id = attempt.player_id
    expected_index = attempt.current_index
    next_started_at, next_expires_at = _question_timing(resolved_at, expected_index + 1)
    answer = AttemptAnswer(
        attempt_id=attempt_id,
        question_id=question_id,
        answer_kind=ANSWER_KIND_TIMEOUT if result.is_timeout else ANSWER_KIND_SELECTED,
        selected_answer_id=None if result.is_timeout else selected_answer_id,
        is_correct=result.is_correct,
        time_ms=result.clamped_elapsed_ms,
        base_points=result.base_points,
        bonus_points=result.bonus_points,
    )
    try:
        db.session.add(answer)
        db.session.flush()
        advanced = (
            Attempt.query
            .filter(
                Attempt.id == attempt_id,
                Attempt.current_index == expected_index,
                Attempt.finalized_at.is_(None),
            )
            .update({
                Attempt.current_index: Attempt.current_index + 1,
                Attempt.total_score: Attempt.total_score + result.total_points,
                Attempt.total_time_ms: Attempt.total_time_ms + result.clamped_elapsed_ms,
                Attempt.current_question_started_at: next_started_at,
                Attempt.current_question_expires_at: next_expires_at,
            }, synchronize_session=False)
        )
        if advanced != 1:
            db.session.rollback()
            raise StateConflict(
                ErrorCodes.INVALID_STATE_TRANSITION,
                'Attempt moved on before this answer could be recorded; re-fetch the attempt',
            )
        _write_event('AnswerSubmitted', attempt_id, player_id, {
            'attempt_id': attempt_id,
            'question_id': question_id,
            'answer_kind': answer.answer_kind,
            'is_correct': result.is_correct,
            'score': result.total_points,
            'time_ms': result.clamped_elapsed_ms,
        })
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        winner = _find_answer(attempt_id, question_id)
        if winner is None:
            raise
        current_app.logger.info(
            f"[answer-race] attempt={attempt_id} question={question_id} kept first writer's answer"
        )
        return winner, False
    db.session.refresh(attempt)
    return answer, True


def _sweep_expired(attempt, now, provider):
    """Record timeouts for every question whose deadline has passed.

    Each lapsed question's successor is timed from the lapsed deadline, so a
    long absence resolves to the same state no matter when the player
    returns.
    """
    swept = 0
    # Bounded: at most one timeout per question
    for _ in range(MAX_QUESTIONS_PER_QUIZ):
        db.session.refresh(attempt)
        if attempt.is_finalized or attempt.current_index > MAX_QUESTIONS_PER_QUIZ:
            break
        expires_at = attempt.current_question_expires_at
        if expires_at is None or now < expires_at:
            break
        question_id = provider.get_question_id_at(attempt.quiz_id, attempt.current_index)
        if question_id is None:
            raise NotFound(ErrorCodes.QUESTION_NOT_FOUND, 'Question not found')
        result = score(False, QUESTION_TIME_LIMIT_MS, is_timeout=True)
        try:
            _, inserted = _record_answer(attempt, question_id, result, None, resolved_at=expires_at)
        except StateConflict:
            continue
        if inserted:
            swept += 1
            current_app.logger.info(
                f"[attempt-timeout] attempt={attempt.id} index={attempt.current_index - 1} deadline={isoformat(expires_at)}"
            )
    return swept


# ---- views ----

def _state_of(attempt):
    if attempt.is_finalized:
        return STATE_FINALIZED
    if attempt.is_ready_to_finalize:
        return STATE_READY_TO_FINALIZE
    return STATE_IN_PROGRESS


def _current_question(attempt, provider):
    if _state_of(attempt) != STATE_IN_PROGRESS:
        return None
    question = provider.get_question_at(attempt.quiz_id, attempt.current_index)
    if question is None:
        raise NotFound(ErrorCodes.QUESTION_NOT_FOUND, 'Question not found')
    return question


def _attempt_view(attempt, now, provider, timeouts_recorded=0):
    state = _state_of(attempt)
    payload = attempt.to_dict()
    if state != STATE_IN_PROGRESS:
        payload['current_question_started_at'] = None
        payload['current_question_expires_at'] = None
    payload.update({
        'state': state,
        'current_question': _current_question(attempt, provider),
        'timeouts_recorded': timeouts_recorded,
        'server_time': isoformat(now),
    })
    return payload


def _submit_view(attempt, answer, provider, replayed):
    payload = answer.to_dict()
    payload.update({
        'attempt_id': attempt.id,
        'replayed': replayed,
        'state': _state_of(attempt),
        'current_index': attempt.current_index,
        'next_question': _current_question(attempt, provider),
        'current_question_started_at': isoformat(attempt.current_question_started_at),
        'current_question_expires_at': isoformat(attempt.current_question_expires_at),
        'total_score': attempt.total_score,
        'total_time_ms': attempt.total_time_ms,
    })
    return payload


def _finalize_view(attempt, daily, already_finalized):
    return {
        'attempt_id': attempt.id,
        'quiz_id': attempt.quiz_id,
        'state': STATE_FINALIZED,
        'finalized_at': isoformat(attempt.finalized_at),
        'total_score': attempt.total_score,
        'total_time_ms': attempt.total_time_ms,
        'correct_count': daily.correct_count if daily else None,
        'daily_score': daily.to_dict() if daily else None,
        'already_finalized': already_finalized,
    }


# ---- operations ----

def start_or_resume(player_id, quiz_id=None, now=None, provider=None):
    """Create the player's attempt for a quiz, or resume the existing one.

    Without ``quiz_id`` the currently released quiz is used. Concurrent
    duplicate starts converge on a single row.
    """
    provider = provider or quiz_provider
    now = to_naive_utc(now) or utcnow()

    if not quiz_id:
        current = provider.get_current_quiz(now)
        if current is None:
            raise NotFound(ErrorCodes.QUIZ_NOT_AVAILABLE, 'No quiz is currently available')
        quiz_id = current.id

    attempt = _find_attempt(player_id, quiz_id)
    if attempt is None:
        quiz = provider.get_quiz(quiz_id)
        if quiz is None:
            raise NotFound(ErrorCodes.QUIZ_NOT_FOUND, 'Quiz not found or not published')
        if quiz.release_at > now:
            raise NotFound(ErrorCodes.QUIZ_NOT_AVAILABLE, 'Quiz has not been released yet')
        if provider.get_question_id_at(quiz_id, 1) is None:
            raise NotFound(ErrorCodes.QUESTION_NOT_FOUND, 'Question not found')
        _ensure_player(player_id)
        started_at, expires_at = _question_timing(now, 1)
        attempt = Attempt(
            player_id=player_id,
            quiz_id=quiz_id,
            current_index=1,
            started_at=now,
            current_question_started_at=started_at,
            current_question_expires_at=expires_at,
        )
        try:
            db.session.add(attempt)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            attempt = _find_attempt(player_id, quiz_id)
            if attempt is None:
                raise
            current_app.logger.info(
                f"[attempt-race] attempt={attempt.id} player={player_id} quiz={quiz_id} reusing existing row"
            )
        else:
            current_app.logger.info(
                f"[attempt-start] attempt={attempt.id} player={player_id} quiz={quiz_id} expires={isoformat(expires_at)}"
            )
            return _attempt_view(attempt, now, provider)

    swept = _sweep_expired(attempt, now, provider)
    current_app.logger.info(
        f"[attempt-resume] attempt={attempt.id} player={player_id} index={attempt.current_index} timeouts={swept}"
    )
    return _attempt_view(attempt, now, provider, timeouts_recorded=swept)


def resume_attempt(player_id, attempt_id, now=None, provider=None):
    provider = provider or quiz_provider
    now = to_naive_utc(now) or utcnow()
    attempt = _get_owned_attempt(player_id, attempt_id)
    swept = _sweep_expired(attempt, now, provider)
    current_app.logger.info(
        f"[attempt-resume] attempt={attempt.id} player={player_id} index={attempt.current_index} timeouts={swept}"
    )
    return _attempt_view(attempt, now, provider, timeouts_recorded=swept)


def submit_answer(player_id, attempt_id, question_id, selected_answer_id, now=None, provider=None):
    """Score and store the answer to the attempt's current question.

    Safe to repeat: a second call for the same question returns the stored
    result untouched. Elapsed time comes from the server clock only.
    """
    provider = provider or quiz_provider
    now = to_naive_utc(now) or utcnow()
    if not question_id or not selected_answer_id:
        raise validation_error('question_id and selected_answer_id are required')

    attempt = _get_owned_attempt(player_id, attempt_id)
    if attempt.is_finalized:
        raise StateConflict(ErrorCodes.ATTEMPT_ALREADY_COMPLETED, 'Attempt has already been completed')

    existing = _find_answer(attempt.id, question_id)
    if existing is not None:
        current_app.logger.info(f"[answer-replay] attempt={attempt.id} question={question_id}")
        return _submit_view(attempt, existing, provider, replayed=True)

    question_index = provider.get_question_index(attempt.quiz_id, question_id)
    if question_index is None:
        raise NotFound(ErrorCodes.QUESTION_NOT_FOUND, 'Question not found')
    if question_index != attempt.current_index:
        current_app.logger.warning(
            f"[answer-reject] attempt={attempt.id} question_index={question_index} current_index={attempt.current_index}"
        )
        raise StateConflict(
            ErrorCodes.INVALID_STATE_TRANSITION,
            'Question is not the current question; resume the attempt to resynchronize',
            details={'current_index': attempt.current_index, 'question_index': question_index},
        )

    started_at = attempt.current_question_started_at
    elapsed = max(0, elapsed_ms(started_at, now))
    is_timeout = elapsed >= QUESTION_TIME_LIMIT_MS
    if not is_timeout:
        options = provider.get_question_at(attempt.quiz_id, question_index)['answers']
        if selected_answer_id not in {o['answer_id'] for o in options}:
            raise validation_error('selected_answer_id is not an answer to this question')

    correct_answer_id = provider.get_correct_answer(attempt.quiz_id, question_id)
    if correct_answer_id is None:
        raise NotFound(ErrorCodes.QUESTION_NOT_FOUND, 'Question not found')
    is_correct = not is_timeout and selected_answer_id == correct_answer_id
    result = score(is_correct, elapsed, is_timeout)

    # A lapsed question resolved at its deadline, not at the late submit
    resolved_at = min(now, attempt.current_question_expires_at or now)
    answer, inserted = _record_answer(attempt, question_id, result, selected_answer_id, resolved_at)
    if inserted:
        current_app.logger.info(
            f"[answer-submit] attempt={attempt.id} question={question_id} kind={answer.answer_kind} "
            f"points={answer.total_points} time_ms={answer.time_ms}"
        )
    return _submit_view(attempt, answer, provider, replayed=not inserted)


def finalize(player_id, attempt_id, now=None, provider=None):
    """Seal the attempt and publish its Daily Score. Idempotent."""
    provider = provider or quiz_provider
    now = to_naive_utc(now) or utcnow()
    attempt = _get_owned_attempt(player_id, attempt_id)
    if attempt.is_finalized:
        daily = db.session.get(DailyScore, (attempt.quiz_id, attempt.player_id))
        return _finalize_view(attempt, daily, already_finalized=True)

    # Lapsed questions are recorded by start/resume only; finalize never writes answers
    answers = AttemptAnswer.query.filter_by(attempt_id=attempt.id).all()
    if len(answers) < MAX_QUESTIONS_PER_QUIZ:
        answered = {a.question_id for a in answers}
        missing = [
            index for index, question_id in provider.get_question_order(attempt.quiz_id)
            if question_id not in answered
        ]
        current_app.logger.warning(
            f"[finalize-reject] attempt={attempt.id} answered={len(answers)} missing={missing}"
        )
        raise ValidationFailed(
            ErrorCodes.VALIDATION_ERROR,
            f"Attempt incomplete: {len(answers)}/{MAX_QUESTIONS_PER_QUIZ} questions answered",
            details={'answered': len(answers), 'missing_indices': missing},
        )

    correct_count = sum(1 for a in answers if a.is_correct)
    attempt_key = attempt.id
    quiz_id = attempt.quiz_id
    total_score = attempt.total_score
    total_time_ms = attempt.total_time_ms
    try:
        stamped = (
            Attempt.query
            .filter(Attempt.id == attempt_key, Attempt.finalized_at.is_(None))
            .update({Attempt.finalized_at: now}, synchronize_session=False)
        )
        if stamped != 1:
            db.session.rollback()
            return finalize(player_id, attempt_id, now=now, provider=provider)
        daily = db.session.get(DailyScore, (quiz_id, player_id))
        if daily is None:
            daily = DailyScore(quiz_id=quiz_id, player_id=player_id)
            db.session.add(daily)
        daily.score = total_score
        daily.total_time_ms = total_time_ms
        daily.correct_count = correct_count
        daily.completed_at = now
        _write_event('AttemptCompleted', attempt_key, player_id, {
            'attempt_id': attempt_key,
            'quiz_id': quiz_id,
            'score': total_score,
            'total_time_ms': total_time_ms,
            'correct_count': correct_count,
        })
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return finalize(player_id, attempt_id, now=now, provider=provider)

    db.session.refresh(attempt)
    current_app.logger.info(
        f"[attempt-finalize] attempt={attempt_key} player={player_id} score={total_score} correct={correct_count}"
    )
    from tenq.socketio_events import broadcast_leaderboard_update
    broadcast_leaderboard_update(quiz_id)
    return _finalize_view(attempt, daily, already_finalized=False)


def get_attempt_results(player_id, attempt_id, provider=None):
    """Per-question breakdown of a finalized attempt (no answer key)."""
    provider = provider or quiz_provider
    attempt = _get_owned_attempt(player_id, attempt_id)
    if not attempt.is_finalized:
        raise validation_error('Attempt is not finalized')
    answers = {a.question_id: a for a in AttemptAnswer.query.filter_by(attempt_id=attempt.id)}
    questions = []
    for index, question_id in provider.get_question_order(attempt.quiz_id):
        answer = answers.get(question_id)
        question = provider.get_question_at(attempt.quiz_id, index)
        if answer is None or question is None:
            continue
        entry = answer.to_dict()
        entry.update({
            'order_index': index,
            'prompt': question['prompt'],
            'answers': question['answers'],
        })
        questions.append(entry)
    daily = db.session.get(DailyScore, (attempt.quiz_id, attempt.player_id))
    return {
        'attempt_id': attempt.id,
        'quiz_id': attempt.quiz_id,
        'finalized_at': isoformat(attempt.finalized_at),
        'total_score': attempt.total_score,
        'total_time_ms': attempt.total_time_ms,
        'questions': questions,
        'daily_score': daily.to_dict() if daily else None,
    }


def reset_attempt(player_id, quiz_id):
    """Development only: forget the player's attempt and score for a quiz."""
    if not current_app.config.get('ALLOW_ATTEMPT_RESET'):
        raise NotAuthorized(ErrorCodes.NOT_AUTHORIZED, 'Attempt reset is disabled')
    if not quiz_id:
        raise validation_error('quiz_id is required')
    attempt = _find_attempt(player_id, quiz_id)
    if attempt is None:
        return {'deleted': False, 'quiz_id': quiz_id}
    attempt_key = attempt.id
    AttemptAnswer.query.filter_by(attempt_id=attempt_key).delete(synchronize_session=False)
    DailyScore.query.filter_by(quiz_id=quiz_id, player_id=player_id).delete(synchronize_session=False)
    db.session.delete(attempt)
    db.session.commit()
    current_app.logger.warning(f"[attempt-reset] attempt={attempt_key} player={player_id} quiz={quiz_id}")
    return {'deleted': True, 'attempt_id': attempt_key, 'quiz_id': quiz_id}
