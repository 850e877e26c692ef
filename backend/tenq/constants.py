"""Scoring and timing constants for the daily quiz.

These are part of the client contract and are deliberately not read from
configuration.
"""

QUESTION_TIME_LIMIT_MS = 16000
BONUS_WINDOW_MS = 10000
MAX_QUESTIONS_PER_QUIZ = 10
CHOICES_PER_QUESTION = 4
CORRECT_POINTS = 5
INCORRECT_POINTS = 0
MAX_BONUS_POINTS = 5

MAX_SCORE_PER_QUESTION = CORRECT_POINTS + MAX_BONUS_POINTS
MAX_TOTAL_SCORE = MAX_QUESTIONS_PER_QUIZ * MAX_SCORE_PER_QUESTION

# (upper bound in ms, exclusive) -> bonus points; anything slower earns nothing
BONUS_TIERS = (
    (2000, 5),
    (4000, 4),
    (6000, 3),
    (8000, 2),
    (BONUS_WINDOW_MS, 1),
)

# current_index once all questions are answered
READY_TO_FINALIZE_INDEX = MAX_QUESTIONS_PER_QUIZ + 1

ANSWER_KIND_SELECTED = 'selected'
ANSWER_KIND_TIMEOUT = 'timeout'

STATE_IN_PROGRESS = 'IN_PROGRESS'
STATE_READY_TO_FINALIZE = 'READY_TO_FINALIZE'
STATE_FINALIZED = 'FINALIZED'

LEADERBOARD_WINDOWS = {
    'today': None,
    '7d': 7,
    '30d': 30,
    '365d': 365,
}
SCORE_TYPES = ('cumulative', 'average')
LEADERBOARD_MODES = ('top', 'around')
AROUND_WINDOW_SIZE = 12
AROUND_ENTRIES_BEFORE = 5
