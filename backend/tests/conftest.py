import os
import sys
import pytest

# Ensure the backend root (containing the `quizsync` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from quizsync import create_app, db, socketio, get_registry


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    PIN_LENGTH = 6
    RECONCILE_INTERVAL_SEC = 0.05
    TIMER_TICK_SEC = 0.05
    STORE_RETRY_ATTEMPTS = 2
    STORE_RETRY_BACKOFF_SEC = 0.0


class FakeClock:
    """Wall clock the tests move by hand."""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def flask_app(clock):
    application = create_app(TestConfig)
    application.config['SESSION_CLOCK'] = clock
    with application.app_context():
        # Ensure models are imported so tables are created
        import quizsync.models  # noqa: F401
        db.create_all()
        yield application
        get_registry(application).shutdown()
        db.session.remove()
        db.drop_all()


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
def registry(flask_app):
    return get_registry(flask_app)


@pytest.fixture()
def host(flask_app):
    from quizsync.models import User
    user = User(username='host')
    user.set_password('password')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def logged_in(client, host):
    res = client.post('/login', json={'username': 'host', 'password': 'password'})
    assert res.status_code == 200
    return host


@pytest.fixture()
def make_quiz(flask_app):
    """Build a quiz from ``[(text, [option texts], correct_position, time_limit)]``."""
    from quizsync.models import Option, Question, Quiz

    def _make(spec=None, title='Test quiz'):
        if spec is None:
            spec = [
                ('Q1', ['X', 'Y'], 0, 30),
                ('Q2', ['A', 'B', 'C'], 2, 20),
            ]
        quiz = Quiz(title=title, description='fixture')
        for position, (text, options, correct, limit) in enumerate(spec):
            question = Question(text=text, position=position, time_limit_seconds=limit)
            for opt_position, opt_text in enumerate(options):
                question.options.append(
                    Option(text=opt_text, position=opt_position, is_correct=(opt_position == correct))
                )
            quiz.questions.append(question)
        db.session.add(quiz)
        db.session.commit()
        return quiz

    return _make


@pytest.fixture()
def make_session(registry, host, make_quiz):
    """Create a lobby session with ``players`` joined; returns (machine, quiz, players)."""

    def _make(spec=None, players=('Alice', 'Bob', 'Cara')):
        quiz = make_quiz(spec)
        game_session = registry.create_session(quiz.id, host.id)
        joined = [registry.join(game_session.pin, name) for name in players]
        return registry.get(game_session.id), quiz, joined

    return _make


@pytest.fixture()
def events(registry):
    """Every broadcast event published during the test, as (session_id, event)."""
    received = []
    original = registry.channel.publish

    def recording_publish(session_id, event):
        received.append((session_id, event))
        original(session_id, event)

    registry.channel.publish = recording_publish
    return received
