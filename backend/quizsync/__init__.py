from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # One registry of live session machines per application
    from quizsync.services.sessions.registry import SessionRegistry
    flask_app.extensions['quizsync.registry'] = SessionRegistry(flask_app)

    from quizsync.main import main
    flask_app.register_blueprint(main)

    from quizsync.api.sessions import sessions
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')

    # Register Socket.IO event handlers
    from quizsync.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # Flask-Login user loader
    from quizsync.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from quizsync.models import Option, Question, Quiz
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            host = User(username='host')
            host.set_password('password')
            db.session.add(host)

            quiz = Quiz(title='Demo quiz', description='Seeded by db-reset')
            seed = [
                ('What is 2 + 2?', ['3', '4', '5'], 1),
                ('Which planet is known as the red planet?', ['Venus', 'Mars'], 1),
                ('Which language is this server written in?', ['Python', 'Go', 'Rust', 'C'], 0),
            ]
            for position, (text, options, correct) in enumerate(seed):
                question = Question(text=text, position=position, time_limit_seconds=20)
                for opt_position, opt_text in enumerate(options):
                    question.options.append(
                        Option(text=opt_text, position=opt_position, is_correct=(opt_position == correct))
                    )
                quiz.questions.append(question)
            db.session.add(quiz)

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app


def get_registry(flask_app=None):
    """Return the session registry bound to the given (or current) app."""
    if flask_app is None:
        from flask import current_app
        flask_app = current_app._get_current_object()
    return flask_app.extensions['quizsync.registry']
