from datetime import timedelta

import pytest

from tenq import db
from tenq.constants import QUESTION_TIME_LIMIT_MS
from tenq.errors import ErrorCodes, NotAuthorized, NotFound, StateConflict, ValidationFailed
from tenq.models import Attempt, AttemptAnswer, DailyScore, OutboxEvent, Player
from tenq.seed import DEMO_QUESTIONS, create_quiz
from tenq.services.attempts import lifecycle
from tenq.utils import utcnow

ALICE = 'player-alice-0001'
BOB = 'player-bob-0002'


def ms(value):
    return timedelta(milliseconds=value)


@pytest.fixture()
def t0(quiz):
    return utcnow()


def play(quiz, answer_key, player, count, start, step_ms=1000, correct=True):
    """Start and answer ``count`` questions, one every ``step_ms``."""
    started = lifecycle.start_or_resume(player, quiz.id, now=start)
    now = start
    for index in range(1, count + 1):
        now = now + ms(step_ms)
        question_id, right, wrong = answer_key(quiz.id, index)
        lifecycle.submit_answer(player, started['attempt_id'], question_id, right if correct else wrong, now=now)
    return started['attempt_id'], now


def test_start_creates_attempt_with_first_deadline(quiz, t0):
    result = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)
    assert result['state'] == 'IN_PROGRESS'
    assert result['current_index'] == 1
    assert result['current_question']['order_index'] == 1
    assert len(result['current_question']['answers']) == 4
    for option in result['current_question']['answers']:
        assert 'is_correct' not in option

    attempt = db.session.get(Attempt, result['attempt_id'])
    assert attempt.current_question_expires_at - attempt.current_question_started_at == ms(QUESTION_TIME_LIMIT_MS)
    player = db.session.get(Player, ALICE)
    assert player.handle_display == 'Playerplayer-a'


def test_start_without_quiz_id_uses_current_quiz(quiz, t0):
    result = lifecycle.start_or_resume(ALICE, now=t0)
    assert result['quiz_id'] == quiz.id


def test_start_unknown_quiz_is_not_found(quiz, t0):
    with pytest.raises(NotFound) as exc:
        lifecycle.start_or_resume(ALICE, 'no-such-quiz', now=t0)
    assert exc.value.code == ErrorCodes.QUIZ_NOT_FOUND


def test_start_unpublished_quiz_is_not_found(quiz, t0):
    draft = create_quiz(DEMO_QUESTIONS, status='draft')
    with pytest.raises(NotFound) as exc:
        lifecycle.start_or_resume(ALICE, draft.id, now=t0)
    assert exc.value.code == ErrorCodes.QUIZ_NOT_FOUND


def test_start_without_any_released_quiz(flask_app):
    with pytest.raises(NotFound) as exc:
        lifecycle.start_or_resume(ALICE)
    assert exc.value.code == ErrorCodes.QUIZ_NOT_AVAILABLE


def test_start_twice_returns_same_attempt(quiz, t0):
    first = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)
    second = lifecycle.start_or_resume(ALICE, quiz.id, now=t0 + ms(500))
    assert first['attempt_id'] == second['attempt_id']
    assert second['current_question_expires_at'] == first['current_question_expires_at']
    assert Attempt.query.filter_by(player_id=ALICE, quiz_id=quiz.id).count() == 1


def test_concurrent_start_converges_on_one_row(quiz, t0, monkeypatch):
    first = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)

    # The second request looked before the first one's insert was visible
    real_find = lifecycle._find_attempt
    calls = {'n': 0}

    def stale_find(player_id, quiz_id):
        calls['n'] += 1
        if calls['n'] == 1:
            return None
        return real_find(player_id, quiz_id)

    monkeypatch.setattr(lifecycle, '_find_attempt', stale_find)
    second = lifecycle.start_or_resume(ALICE, quiz.id, now=t0 + ms(10))
    assert second['attempt_id'] == first['attempt_id']
    assert Attempt.query.filter_by(player_id=ALICE, quiz_id=quiz.id).count() == 1


def test_submit_correct_answer_scores_and_advances(quiz, answer_key, t0):
    attempt_id = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)['attempt_id']
    question_id, right, _ = answer_key(quiz.id, 1)
    result = lifecycle.submit_answer(ALICE, attempt_id, question_id, right, now=t0 + ms(1500))
    assert result['is_correct'] is True
    assert (result['base_points'], result['bonus_points'], result['total_points']) == (5, 5, 10)
    assert result['time_ms'] == 1500
    assert result['replayed'] is False
    assert result['current_index'] == 2
    assert result['next_question']['order_index'] == 2
    assert result['total_score'] == 10

    attempt = db.session.get(Attempt, attempt_id)
    assert attempt.current_question_started_at == t0 + ms(1500)
    assert attempt.current_question_expires_at == t0 + ms(1500 + QUESTION_TIME_LIMIT_MS)


def test_submit_wrong_answer(quiz, answer_key, t0):
    attempt_id = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)['attempt_id']
    question_id, _, wrong = answer_key(quiz.id, 1)
    result = lifecycle.submit_answer(ALICE, attempt_id, question_id, wrong, now=t0)
    assert result['is_correct'] is False
    assert result['total_points'] == 0
    assert result['current_index'] == 2


def test_submit_twice_is_idempotent(quiz, answer_key, t0):
    attempt_id = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)['attempt_id']
    question_id, right, wrong = answer_key(quiz.id, 1)
    first = lifecycle.submit_answer(ALICE, attempt_id, question_id, right, now=t0 + ms(3000))
    # Retry arrives later and even claims a different choice; the stored result wins
    again = lifecycle.submit_answer(ALICE, attempt_id, question_id, wrong, now=t0 + ms(9000))
    assert again['replayed'] is True
    for key in ('is_correct', 'base_points', 'bonus_points', 'total_points', 'time_ms', 'selected_answer_id'):
        assert again[key] == first[key]

    attempt = db.session.get(Attempt, attempt_id)
    assert attempt.current_index == 2
    assert attempt.total_score == 9
    assert AttemptAnswer.query.filter_by(attempt_id=attempt_id).count() == 1


def test_concurrent_submit_keeps_first_writers_answer(quiz, answer_key, t0, monkeypatch):
    attempt_id = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)['attempt_id']
    question_id, right, wrong = answer_key(quiz.id, 1)

    # Another request's row is already in place when ours tries to insert
    db.session.execute(AttemptAnswer.__table__.insert().values(
        attempt_id=attempt_id, question_id=question_id, answer_kind='selected',
        selected_answer_id=wrong, is_correct=False, time_ms=700, base_points=0, bonus_points=0,
    ))
    db.session.commit()

    real_find = lifecycle._find_answer
    calls = {'n': 0}

    def stale_find(a_id, q_id):
        calls['n'] += 1
        if calls['n'] == 1:
            return None
        return real_find(a_id, q_id)

    monkeypatch.setattr(lifecycle, '_find_answer', stale_find)
    result = lifecycle.submit_answer(ALICE, attempt_id, question_id, right, now=t0 + ms(500))
    assert result['replayed'] is True
    assert result['is_correct'] is False
    assert result['time_ms'] == 700
    assert db.session.get(Attempt, attempt_id).total_score == 0


def test_submit_rejects_question_that_is_not_current(quiz, answer_key, t0):
    attempt_id = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)['attempt_id']
    question_id, right, _ = answer_key(quiz.id, 2)
    with pytest.raises(StateConflict) as exc:
        lifecycle.submit_answer(ALICE, attempt_id, question_id, right, now=t0 + ms(100))
    assert exc.value.code == ErrorCodes.INVALID_STATE_TRANSITION
    assert exc.value.details == {'current_index': 1, 'question_index': 2}


def test_submit_rejects_answer_from_another_question(quiz, answer_key, t0):
    attempt_id = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)['attempt_id']
    question_id, _, _ = answer_key(quiz.id, 1)
    _, other_right, _ = answer_key(quiz.id, 2)
    with pytest.raises(ValidationFailed):
        lifecycle.submit_answer(ALICE, attempt_id, question_id, other_right, now=t0 + ms(100))


def test_other_players_attempt_looks_missing(quiz, answer_key, t0):
    attempt_id = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)['attempt_id']
    question_id, right, _ = answer_key(quiz.id, 1)
    with pytest.raises(NotFound) as foreign:
        lifecycle.submit_answer(BOB, attempt_id, question_id, right, now=t0)
    with pytest.raises(NotFound) as missing:
        lifecycle.submit_answer(BOB, 'no-such-attempt', question_id, right, now=t0)
    assert foreign.value.code == missing.value.code == ErrorCodes.ATTEMPT_NOT_FOUND
    assert foreign.value.message == missing.value.message


def test_late_submit_is_recorded_as_timeout(quiz, answer_key, t0):
    attempt_id = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)['attempt_id']
    question_id, right, _ = answer_key(quiz.id, 1)
    result = lifecycle.submit_answer(ALICE, attempt_id, question_id, right, now=t0 + ms(16000))
    assert result['answer_kind'] == 'timeout'
    assert result['selected_answer_id'] is None
    assert result['total_points'] == 0
    assert result['time_ms'] == QUESTION_TIME_LIMIT_MS

    attempt = db.session.get(Attempt, attempt_id)
    # The next question's clock started when the first one lapsed
    assert attempt.current_question_started_at == t0 + ms(QUESTION_TIME_LIMIT_MS)


def test_resume_after_absence_records_timeouts(quiz, t0):
    start = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)
    deadline = t0 + ms(QUESTION_TIME_LIMIT_MS)
    resumed = lifecycle.start_or_resume(ALICE, quiz.id, now=deadline + timedelta(seconds=30))
    assert resumed['attempt_id'] == start['attempt_id']
    assert resumed['timeouts_recorded'] == 2
    assert resumed['current_index'] == 3
    assert resumed['current_question']['order_index'] == 3

    answers = AttemptAnswer.query.filter_by(attempt_id=start['attempt_id']).all()
    assert len(answers) == 2
    assert all(a.answer_kind == 'timeout' and a.time_ms == QUESTION_TIME_LIMIT_MS for a in answers)
    attempt = db.session.get(Attempt, start['attempt_id'])
    assert attempt.total_time_ms == 2 * QUESTION_TIME_LIMIT_MS
    assert attempt.current_question_started_at == t0 + ms(2 * QUESTION_TIME_LIMIT_MS)


def test_resume_by_id_sweeps_the_same_way(quiz, t0):
    attempt_id = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)['attempt_id']
    resumed = lifecycle.resume_attempt(ALICE, attempt_id, now=t0 + ms(QUESTION_TIME_LIMIT_MS))
    assert resumed['current_index'] == 2
    assert resumed['timeouts_recorded'] == 1
    with pytest.raises(NotFound):
        lifecycle.resume_attempt(BOB, attempt_id, now=t0)


def test_abandoned_attempt_resolves_to_ready_to_finalize(quiz, t0):
    lifecycle.start_or_resume(ALICE, quiz.id, now=t0)
    later = lifecycle.start_or_resume(ALICE, quiz.id, now=t0 + timedelta(days=1))
    assert later['state'] == 'READY_TO_FINALIZE'
    assert later['current_index'] == 11
    assert later['current_question'] is None
    assert later['current_question_expires_at'] is None
    assert later['timeouts_recorded'] == 10


def test_current_index_never_decreases(quiz, answer_key, t0):
    attempt_id = lifecycle.start_or_resume(ALICE, quiz.id, now=t0)['attempt_id']
    seen = [1]
    now = t0
    for index in (1, 2, 2, 1, 3):
        now += ms(800)
        question_id, right, _ = answer_key(quiz.id, index)
        try:
            result = lifecycle.submit_answer(ALICE, attempt_id, question_id, right, now=now)
            seen.append(result['current_index'])
        except StateConflict:
            pass
        seen.append(lifecycle.resume_attempt(ALICE, attempt_id, now=now)['current_index'])
    assert seen == sorted(seen)
    assert seen[-1] == 4


def test_finalize_requires_all_ten_answers(quiz, answer_key, t0):
    attempt_id, now = play(quiz, answer_key, ALICE, 9, t0)
    with pytest.raises(ValidationFailed) as exc:
        lifecycle.finalize(ALICE, attempt_id, now=now + ms(100))
    assert exc.value.code == ErrorCodes.VALIDATION_ERROR
    assert exc.value.details == {'answered': 9, 'missing_indices': [10]}
    assert db.session.get(Attempt, attempt_id).finalized_at is None


def test_full_game_finalizes_into_daily_score(quiz, answer_key, t0):
    attempt_id, now = play(quiz, answer_key, ALICE, 10, t0)
    assert lifecycle.start_or_resume(ALICE, quiz.id, now=now)['state'] == 'READY_TO_FINALIZE'

    result = lifecycle.finalize(ALICE, attempt_id, now=now + ms(100))
    assert result['state'] == 'FINALIZED'
    assert result['total_score'] == 100
    assert result['correct_count'] == 10
    assert result['already_finalized'] is False
    daily = db.session.get(DailyScore, (quiz.id, ALICE))
    assert (daily.score, daily.total_time_ms, daily.correct_count) == (100, 10000, 10)

    events = [e.event_type for e in OutboxEvent.query.filter_by(aggregate_id=attempt_id)]
    assert events.count('AnswerSubmitted') == 10
    assert events.count('AttemptCompleted') == 1


def test_finalize_is_idempotent_and_attempt_is_immutable(quiz, answer_key, t0):
    attempt_id, now = play(quiz, answer_key, ALICE, 10, t0, correct=False)
    first = lifecycle.finalize(ALICE, attempt_id, now=now)
    snapshot = db.session.get(Attempt, attempt_id).to_dict()
    answers_before = [a.to_dict() for a in AttemptAnswer.query.filter_by(attempt_id=attempt_id)]

    second = lifecycle.finalize(ALICE, attempt_id, now=now + timedelta(hours=1))
    assert second['already_finalized'] is True
    assert second['daily_score'] == first['daily_score']
    assert second['finalized_at'] == first['finalized_at']

    question_id, right, _ = answer_key(quiz.id, 10)
    with pytest.raises(StateConflict) as exc:
        lifecycle.submit_answer(ALICE, attempt_id, question_id, right, now=now + timedelta(hours=2))
    assert exc.value.code == ErrorCodes.ATTEMPT_ALREADY_COMPLETED

    resumed = lifecycle.start_or_resume(ALICE, quiz.id, now=now + timedelta(days=2))
    assert resumed['state'] == 'FINALIZED'
    assert db.session.get(Attempt, attempt_id).to_dict() == snapshot
    assert [a.to_dict() for a in AttemptAnswer.query.filter_by(attempt_id=attempt_id)] == answers_before
    assert OutboxEvent.query.filter_by(event_type='AttemptCompleted').count() == 1


def test_finalize_does_not_record_a_lapsed_last_question(quiz, answer_key, t0):
    attempt_id, now = play(quiz, answer_key, ALICE, 9, t0)
    past_deadline = now + ms(QUESTION_TIME_LIMIT_MS + 1)
    with pytest.raises(ValidationFailed) as exc:
        lifecycle.finalize(ALICE, attempt_id, now=past_deadline)
    assert exc.value.details == {'answered': 9, 'missing_indices': [10]}
    assert AttemptAnswer.query.filter_by(attempt_id=attempt_id).count() == 9
    assert db.session.get(Attempt, attempt_id).finalized_at is None

    resumed = lifecycle.resume_attempt(ALICE, attempt_id, now=past_deadline)
    assert resumed['timeouts_recorded'] == 1
    assert resumed['state'] == 'READY_TO_FINALIZE'

    result = lifecycle.finalize(ALICE, attempt_id, now=past_deadline)
    assert result['correct_count'] == 9
    assert result['total_score'] == 90
    assert result['total_time_ms'] == 9000 + QUESTION_TIME_LIMIT_MS


def test_results_only_after_finalize_and_without_answer_key(quiz, answer_key, t0):
    attempt_id, now = play(quiz, answer_key, ALICE, 10, t0)
    with pytest.raises(ValidationFailed):
        lifecycle.get_attempt_results(ALICE, attempt_id)
    lifecycle.finalize(ALICE, attempt_id, now=now)

    results = lifecycle.get_attempt_results(ALICE, attempt_id)
    assert [q['order_index'] for q in results['questions']] == list(range(1, 11))
    assert results['daily_score']['score'] == 100
    for question in results['questions']:
        assert all('is_correct' not in option for option in question['answers'])
    with pytest.raises(NotFound):
        lifecycle.get_attempt_results(BOB, attempt_id)


def test_reset_is_disabled_by_default(quiz, t0):
    lifecycle.start_or_resume(ALICE, quiz.id, now=t0)
    with pytest.raises(NotAuthorized):
        lifecycle.reset_attempt(ALICE, quiz.id)


def test_reset_allows_replay_and_finalize_upserts(flask_app, quiz, answer_key, t0):
    flask_app.config['ALLOW_ATTEMPT_RESET'] = True
    attempt_id, now = play(quiz, answer_key, ALICE, 10, t0, correct=False)
    lifecycle.finalize(ALICE, attempt_id, now=now)

    reset = lifecycle.reset_attempt(ALICE, quiz.id)
    assert reset == {'deleted': True, 'attempt_id': attempt_id, 'quiz_id': quiz.id}
    assert db.session.get(DailyScore, (quiz.id, ALICE)) is None
    assert lifecycle.reset_attempt(ALICE, quiz.id)['deleted'] is False

    replay_id, later = play(quiz, answer_key, ALICE, 10, now + timedelta(minutes=5))
    assert replay_id != attempt_id
    lifecycle.finalize(ALICE, replay_id, now=later)
    assert db.session.get(DailyScore, (quiz.id, ALICE)).score == 100
