from flask import Blueprint, request
from flask_login import current_user

from tenq.api import success
from tenq.auth import unauthorized
from tenq.errors import validation_error
from tenq.services import leaderboard as leaderboard_service


leaderboard = Blueprint('leaderboard', __name__)


def _limit_param():
    raw = request.args.get('limit')
    if raw is None or raw == '':
        return None
    try:
        return int(raw)
    except ValueError:
        raise validation_error('limit must be a positive integer')


@leaderboard.route('', methods=['GET'])
@leaderboard.route('/', methods=['GET'])
def get_leaderboard():
    window = request.args.get('window', '7d')
    mode = request.args.get('mode', 'top')
    score_type = request.args.get('score_type', 'cumulative')
    limit = _limit_param()

    # Anonymous viewers may read the top list; around-me needs an identity
    viewer_id = current_user.player_id if current_user.is_authenticated else None
    if mode == 'around' and viewer_id is None:
        unauthorized()

    result = leaderboard_service.rank(
        window=window,
        score_type=score_type,
        mode=mode,
        viewer_id=viewer_id,
        limit=limit,
    )
    return success(result)
