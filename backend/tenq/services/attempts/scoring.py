from dataclasses import dataclass

from tenq.constants import (
    BONUS_TIERS,
    CORRECT_POINTS,
    INCORRECT_POINTS,
    MAX_SCORE_PER_QUESTION,
    MAX_TOTAL_SCORE,
    QUESTION_TIME_LIMIT_MS,
)


@dataclass(frozen=True)
class QuestionScore:
    base_points: int
    bonus_points: int
    total_points: int
    clamped_elapsed_ms: int
    is_correct: bool
    is_timeout: bool


def clamp_elapsed(elapsed_ms) -> int:
    return int(min(max(elapsed_ms, 0), QUESTION_TIME_LIMIT_MS))


def bonus_for(elapsed_ms) -> int:
    """Tiered speed bonus: 5 under 2s, one point less per 2s, 0 from 10s."""
    for upper_ms, points in BONUS_TIERS:
        if elapsed_ms < upper_ms:
            return points
    return 0


def score(is_correct: bool, elapsed_ms, is_timeout: bool = False) -> QuestionScore:
    """Score a single question.

    Pure: no clock, no storage. The caller decides ``is_timeout`` from the
    server clock; an answer at or past the limit is a timeout no matter what
    was selected.
    """
    clamped = clamp_elapsed(elapsed_ms)
    if is_timeout:
        return QuestionScore(
            base_points=INCORRECT_POINTS,
            bonus_points=0,
            total_points=0,
            clamped_elapsed_ms=QUESTION_TIME_LIMIT_MS,
            is_correct=False,
            is_timeout=True,
        )
    base = CORRECT_POINTS if is_correct else INCORRECT_POINTS
    bonus = bonus_for(clamped) if is_correct else 0
    return QuestionScore(
        base_points=base,
        bonus_points=bonus,
        total_points=base + bonus,
        clamped_elapsed_ms=clamped,
        is_correct=bool(is_correct),
        is_timeout=False,
    )


def scoring_rules() -> dict:
    """The schedule as shown to players, derived from the same tiers."""
    tiers = []
    lower = 0
    for upper_ms, points in BONUS_TIERS:
        tiers.append({'from_ms': lower, 'to_ms': upper_ms, 'bonus_points': points})
        lower = upper_ms
    return {
        'correct_points': CORRECT_POINTS,
        'question_time_limit_ms': QUESTION_TIME_LIMIT_MS,
        'bonus_tiers': tiers,
        'max_points_per_question': MAX_SCORE_PER_QUESTION,
        'max_points_per_quiz': MAX_TOTAL_SCORE,
    }
