import os
import sys
import pytest
from flask import g, request_started

# Ensure the backend root (containing the `tenq` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from tenq import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:3000']
    PLAYER_TOKEN_MAX_AGE_SEC = 3600
    LEADERBOARD_DEFAULT_LIMIT = 100
    LEADERBOARD_MAX_LIMIT = 500
    ALLOW_ATTEMPT_RESET = False


def _reset_request_globals(sender, **extra):
    # Test-client requests reuse the fixture's app context, so g outlives a request
    for name in ('_login_user', 'request_id'):
        g.pop(name, None)


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    request_started.connect(_reset_request_globals, application)
    with application.app_context():
        # Ensure models are imported so tables are created
        import tenq.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()
    request_started.disconnect(_reset_request_globals, application)


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def quiz(flask_app):
    from tenq.seed import seed_demo_quiz
    return seed_demo_quiz()


@pytest.fixture()
def answer_key(flask_app):
    """Returns (question_id, correct_id, wrong_id) for a question position."""
    from tenq.services.quizzes import quiz_provider

    def _key(quiz_id, index):
        question = quiz_provider.get_question_at(quiz_id, index)
        correct = quiz_provider.get_correct_answer(quiz_id, question['question_id'])
        wrong = next(a['answer_id'] for a in question['answers'] if a['answer_id'] != correct)
        return question['question_id'], correct, wrong

    return _key


@pytest.fixture()
def auth_headers(flask_app):
    from tenq.auth import issue_player_token

    def _headers(player_id):
        return {'Authorization': f'Bearer {issue_player_token(player_id)}'}

    return _headers
