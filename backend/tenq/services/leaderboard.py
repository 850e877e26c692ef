"""Leaderboard ranking over finalized Daily Scores.

Read-only reporting query: it never touches attempts or answers, so a score
finalized a moment ago may simply not be visible yet.
"""
from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from tenq import db
from tenq.constants import (
    AROUND_ENTRIES_BEFORE,
    AROUND_WINDOW_SIZE,
    LEADERBOARD_MODES,
    LEADERBOARD_WINDOWS,
    SCORE_TYPES,
)
from tenq.errors import ErrorCodes, NotFound, validation_error
from tenq.models import DailyScore, Player
from tenq.services.quizzes import quiz_provider
from tenq.utils import isoformat, to_naive_utc, utcnow

UNKNOWN_HANDLE = 'Unknown'


def _validate(window, score_type, mode, limit):
    if window not in LEADERBOARD_WINDOWS:
        raise validation_error('Invalid window. Must be: today, 7d, 30d, or 365d')
    if score_type not in SCORE_TYPES:
        raise validation_error('Invalid score_type. Must be: cumulative or average')
    if mode not in LEADERBOARD_MODES:
        raise validation_error('Invalid mode. Must be: top or around')
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
        raise validation_error('limit must be a positive integer')


def _scoped_rows(window, now, player_ids, provider):
    query = db.session.query(
        DailyScore.player_id,
        func.sum(DailyScore.score).label('score_sum'),
        func.count(DailyScore.quiz_id).label('attempt_count'),
        func.sum(DailyScore.total_time_ms).label('total_time_ms'),
        func.min(DailyScore.completed_at).label('earliest_completed_at'),
    )
    days = LEADERBOARD_WINDOWS[window]
    if days is None:
        current = provider.get_current_quiz(now)
        if current is None:
            raise NotFound(ErrorCodes.QUIZ_NOT_AVAILABLE, 'No quiz available for today')
        query = query.filter(DailyScore.quiz_id == current.id)
    else:
        query = query.filter(DailyScore.completed_at >= now - timedelta(days=days))
    if player_ids is not None:
        query = query.filter(DailyScore.player_id.in_(list(player_ids)))
    return query.group_by(DailyScore.player_id).all()


def _handles(player_ids):
    if not player_ids:
        return {}
    players = Player.query.filter(Player.id.in_(player_ids)).all()
    return {p.id: p.handle_display or UNKNOWN_HANDLE for p in players}


def rank_players(rows, score_type):
    """Aggregate, order and number grouped rows.

    Order: score desc, total time asc, earliest completion asc, player id
    asc. The last key makes the order total, so ranks are simply positions.
    """
    entries = []
    for row in rows:
        count = int(row.attempt_count)
        total = row.score_sum or 0
        aggregated = total if score_type == 'cumulative' else total / count
        entries.append({
            'player_id': row.player_id,
            'aggregated_score': aggregated,
            'attempt_count': count,
            'total_time_ms': int(row.total_time_ms or 0),
            'earliest_completed_at': row.earliest_completed_at,
        })
    entries.sort(key=lambda e: (
        -e['aggregated_score'],
        e['total_time_ms'],
        e['earliest_completed_at'],
        e['player_id'],
    ))
    for position, entry in enumerate(entries, start=1):
        entry['rank'] = position
    return entries


def _public(entry, handles):
    score = entry['aggregated_score']
    return {
        'rank': entry['rank'],
        'player_id': entry['player_id'],
        'handle_display': handles.get(entry['player_id'], UNKNOWN_HANDLE),
        'aggregated_score': score if isinstance(score, int) else round(score, 2),
        'attempt_count': entry['attempt_count'],
        'total_time_ms': entry['total_time_ms'],
        'earliest_completed_at': isoformat(entry['earliest_completed_at']),
    }


def around_slice(ranked, viewer_rank):
    if viewer_rank <= AROUND_ENTRIES_BEFORE + 1:
        return ranked[:AROUND_WINDOW_SIZE]
    start = viewer_rank - 1 - AROUND_ENTRIES_BEFORE
    return ranked[start:start + AROUND_WINDOW_SIZE]


def rank(window='7d', score_type='cumulative', mode='top', viewer_id=None, limit=None,
         player_ids=None, now=None, provider=None):
    """Rank players for a window.

    ``mode='top'`` returns the first ``limit`` entries; ``mode='around'``
    returns twelve entries around ``viewer_id`` and fails with
    NO_VIEWER_SCORE when the viewer has nothing in the window.
    ``player_ids`` restricts the ranking to a fixed set of players.
    """
    _validate(window, score_type, mode, limit)
    provider = provider or quiz_provider
    now = to_naive_utc(now) or utcnow()
    if limit is None:
        limit = int(current_app.config.get('LEADERBOARD_DEFAULT_LIMIT', 100))
    limit = min(limit, int(current_app.config.get('LEADERBOARD_MAX_LIMIT', 500)))

    ranked = rank_players(_scoped_rows(window, now, player_ids, provider), score_type)

    viewer_entry = None
    if viewer_id is not None:
        viewer_entry = next((e for e in ranked if e['player_id'] == viewer_id), None)

    if mode == 'top':
        entries = ranked[:limit]
    else:
        if viewer_entry is None:
            raise NotFound(ErrorCodes.NO_VIEWER_SCORE, 'Player has no score in this time window')
        entries = around_slice(ranked, viewer_entry['rank'])

    visible_ids = {e['player_id'] for e in entries}
    if viewer_entry is not None:
        visible_ids.add(viewer_entry['player_id'])
    handles = _handles(visible_ids)

    current_app.logger.info(
        f"[leaderboard] window={window} score_type={score_type} mode={mode} "
        f"players={len(ranked)} returned={len(entries)} viewer_rank={viewer_entry['rank'] if viewer_entry else None}"
    )
    return {
        'window': window,
        'score_type': score_type,
        'mode': mode,
        'entries': [_public(e, handles) for e in entries],
        'viewer_rank': viewer_entry['rank'] if viewer_entry else None,
        'viewer_entry': _public(viewer_entry, handles) if viewer_entry else None,
        'total_players': len(ranked),
    }
