from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from tenq.api import register_error_handlers
    register_error_handlers(flask_app)

    from tenq.main import main
    flask_app.register_blueprint(main)

    from tenq.api.attempts import attempts
    flask_app.register_blueprint(attempts, url_prefix='/api/attempts')

    from tenq.api.leaderboard import leaderboard
    flask_app.register_blueprint(leaderboard, url_prefix='/api/leaderboard')

    from tenq.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # Identity comes from a bearer token on every request, never a session
    from tenq.auth import load_identity_from_request, unauthorized
    login_manager.request_loader(load_identity_from_request)
    login_manager.unauthorized_handler(unauthorized)

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database with a demo quiz."""
        from tenq.seed import seed_demo_quiz
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            quiz = seed_demo_quiz()
            click.echo(f'Database has been reset and seeded! quiz={quiz.id}')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
