from flask import Blueprint, jsonify, request, current_app
from flask_login import current_user, login_required
from quizsync import get_registry
from quizsync.services.sessions.errors import SessionError, ValidationError


sessions = Blueprint('sessions', __name__)


@sessions.errorhandler(SessionError)
def handle_session_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


def _int_field(data, name):
    value = data.get(name)
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{name} is required')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer')


def _host_machine(session_id):
    machine = get_registry().get(session_id)
    machine.ensure_host(current_user.id)
    return machine


@sessions.route('/create', methods=['POST'])
@login_required
def create_session():
    data = request.get_json(silent=True) or {}
    quiz_id = _int_field(data, 'quiz_id')
    game_session = get_registry().create_session(quiz_id, current_user.id)
    return jsonify({
        'message': 'New session created!',
        'session_id': game_session.id,
        'pin': game_session.pin,
    }), 201


@sessions.route('/join', methods=['POST'])
def join_session():
    data = request.get_json(silent=True) or {}
    pin = data.get('pin')
    display_name = (data.get('display_name') or '').strip()
    if not all([pin, display_name]):
        return jsonify({'error': 'PIN and display name are required'}), 400
    player = get_registry().join(str(pin), display_name[:64])
    return jsonify(player.to_dict()), 201


@sessions.route('/<int:session_id>/state', methods=['GET'])
def get_session_state(session_id):
    return jsonify(get_registry().get(session_id).state())


@sessions.route('/<int:session_id>/start', methods=['POST'])
@login_required
def start_game(session_id):
    machine = _host_machine(session_id)
    machine.start_game()
    return jsonify(machine.state())


@sessions.route('/<int:session_id>/close', methods=['POST'])
@login_required
def close_question(session_id):
    machine = _host_machine(session_id)
    machine.close_question()
    return jsonify(machine.state())


@sessions.route('/<int:session_id>/advance', methods=['POST'])
@login_required
def advance(session_id):
    machine = _host_machine(session_id)
    machine.advance()
    return jsonify(machine.state())


@sessions.route('/<int:session_id>/end', methods=['POST'])
@login_required
def end_game(session_id):
    machine = _host_machine(session_id)
    machine.end_game()
    return jsonify(machine.state())


@sessions.route('/<int:session_id>/answers', methods=['POST'])
def submit_answer(session_id):
    data = request.get_json(silent=True) or {}
    player_id = _int_field(data, 'player_id')
    question_index = _int_field(data, 'question_index')
    option_id = _int_field(data, 'option_id')
    event = get_registry().get(session_id).submit_answer(player_id, question_index, option_id)
    current_app.logger.debug(
        f"[answer] session={session_id} player={player_id} question={question_index} option={option_id}"
    )
    return jsonify(event.to_dict()), 201


@sessions.route('/<int:session_id>/tally/<int:question_index>', methods=['GET'])
def get_tally(session_id, question_index):
    return jsonify(get_registry().get(session_id).get_tally(question_index).to_dict())


@sessions.route('/<int:session_id>/leaderboard', methods=['GET'])
def get_leaderboard(session_id):
    entries = get_registry().get(session_id).leaderboard()
    return jsonify([e.to_dict() for e in entries])


@sessions.route('/<int:session_id>/summary', methods=['GET'])
def get_summary(session_id):
    return jsonify(get_registry().get(session_id).summary().to_dict())
