from flask import Blueprint, request
from flask_login import login_required, current_user

from tenq.api import success
from tenq.errors import validation_error
from tenq.services.attempts import lifecycle


attempts = Blueprint('attempts', __name__)


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise validation_error('Request body must be a JSON object')
    return data


@attempts.route('/start', methods=['POST'])
@login_required
def start_attempt():
    data = _json_body()
    result = lifecycle.start_or_resume(current_user.player_id, quiz_id=data.get('quiz_id'))
    return success(result)


@attempts.route('/<string:attempt_id>/resume', methods=['GET'])
@login_required
def resume_attempt(attempt_id):
    return success(lifecycle.resume_attempt(current_user.player_id, attempt_id))


@attempts.route('/<string:attempt_id>/answers', methods=['POST'])
@login_required
def submit_answer(attempt_id):
    data = _json_body()
    question_id = data.get('question_id')
    selected_answer_id = data.get('selected_answer_id')
    if not all([question_id, selected_answer_id]):
        raise validation_error('question_id and selected_answer_id are required')
    result = lifecycle.submit_answer(
        current_user.player_id, attempt_id, str(question_id), str(selected_answer_id)
    )
    return success(result)


@attempts.route('/<string:attempt_id>/finalize', methods=['POST'])
@login_required
def finalize_attempt(attempt_id):
    return success(lifecycle.finalize(current_user.player_id, attempt_id))


@attempts.route('/<string:attempt_id>/results', methods=['GET'])
@login_required
def attempt_results(attempt_id):
    return success(lifecycle.get_attempt_results(current_user.player_id, attempt_id))


@attempts.route('/reset', methods=['POST'])
@login_required
def reset_attempt():
    data = _json_body()
    return success(lifecycle.reset_attempt(current_user.player_id, data.get('quiz_id')))
