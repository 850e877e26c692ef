from flask import Blueprint, jsonify

from tenq.api import success
from tenq.errors import ErrorCodes, NotFound
from tenq.services.attempts.scoring import scoring_rules
from tenq.services.quizzes import quiz_provider

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the 10Q daily quiz server!'})


@main.route('/api/quiz/current', methods=['GET'])
def get_current_quiz():
    quiz = quiz_provider.get_current_quiz()
    if quiz is None:
        raise NotFound(ErrorCodes.QUIZ_NOT_AVAILABLE, 'No quiz is currently available')
    return success(quiz.to_dict())


@main.route('/api/scoring', methods=['GET'])
def get_scoring_rules():
    return success(scoring_rules())
