from quizsync import db, bcrypt
from flask_login import UserMixin
import string
import random
import time

# GameSession.status values
LOBBY = 'lobby'
ACTIVE = 'active'
COMPLETED = 'completed'


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class Quiz(db.Model):
    __tablename__ = 'quiz'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    questions = db.relationship('Question', back_populates='quiz', order_by='Question.position')

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'total_questions': len(self.questions),
        }


class Question(db.Model):
    __tablename__ = 'question'
    __table_args__ = (
        db.CheckConstraint('time_limit_seconds BETWEEN 5 AND 120', name='ck_question_time_limit'),
    )
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    text = db.Column(db.Text, nullable=False)
    time_limit_seconds = db.Column(db.Integer, nullable=False, default=20)
    quiz = db.relationship('Quiz', back_populates='questions')
    options = db.relationship('Option', back_populates='question', order_by='Option.position')


class Option(db.Model):
    __tablename__ = 'option'
    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    text = db.Column(db.Text, nullable=False)
    is_correct = db.Column(db.Boolean, default=False, nullable=False)
    question = db.relationship('Question', back_populates='options')


def generate_pin(length=6):
    """Generate a unique, numeric session PIN."""
    while True:
        pin = ''.join(random.choices(string.digits, k=length))
        if not GameSession.query.filter_by(pin=pin).first():
            return pin


class GameSession(db.Model):
    __tablename__ = 'game_session'
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False)
    host_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    pin = db.Column(db.String(12), unique=True, index=True)
    status = db.Column(db.String(16), default=LOBBY, nullable=False)  # lobby, active, completed
    current_question_index = db.Column(db.Integer, nullable=True)
    # Epoch seconds; the deadline is always recomputed from this
    question_started_at = db.Column(db.Float, nullable=True)
    question_open = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.Float, default=time.time, nullable=False)
    quiz = db.relationship('Quiz')
    players = db.relationship('Player', back_populates='session', order_by='Player.id')

    def __init__(self, pin_length=6, **kwargs):
        super(GameSession, self).__init__(**kwargs)
        if self.status is None:
            self.status = LOBBY
        if self.question_open is None:
            self.question_open = False
        if not self.pin:
            self.pin = generate_pin(pin_length)

    def to_dict(self):
        return {
            'id': self.id,
            'quiz_id': self.quiz_id,
            'host_id': self.host_id,
            'pin': self.pin,
            'status': self.status,
            'current_question_index': self.current_question_index,
            'question_started_at': self.question_started_at,
            'question_open': self.question_open,
            'players': [p.to_dict() for p in self.players],
        }


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    display_name = db.Column(db.String(64), nullable=False)
    joined_at = db.Column(db.Float, default=time.time, nullable=False)
    session = db.relationship('GameSession', back_populates='players')

    def to_dict(self):
        return {
            'id': self.id,
            'session_id': self.session_id,
            'display_name': self.display_name,
        }


class AnswerEvent(db.Model):
    __tablename__ = 'answer_event'
    # First valid submission wins
    __table_args__ = (
        db.UniqueConstraint('session_id', 'player_id', 'question_index', name='uq_answer_event_once'),
    )
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False)
    question_index = db.Column(db.Integer, nullable=False)
    option_id = db.Column(db.Integer, db.ForeignKey('option.id'), nullable=False)
    time_taken_seconds = db.Column(db.Float, nullable=False)
    is_correct = db.Column(db.Boolean, nullable=False)
    submitted_at = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'session_id': self.session_id,
            'player_id': self.player_id,
            'question_index': self.question_index,
            'option_id': self.option_id,
            'time_taken_seconds': self.time_taken_seconds,
            'is_correct': self.is_correct,
            'submitted_at': self.submitted_at,
        }
