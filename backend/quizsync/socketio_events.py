from flask import current_app
from flask_socketio import join_room, leave_room, emit
from quizsync import socketio, get_registry
from quizsync.services.sessions.broadcast import session_room
from quizsync.services.sessions.errors import SessionError


def handle_connect(auth=None):
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    # Rooms are cleaned up by Socket.IO; host presence does not end a session
    current_app.logger.debug('[ws-disconnect]')


def _session_id(data):
    try:
        return int((data or {}).get('session_id'))
    except (TypeError, ValueError):
        return None


def handle_join_session(data):
    session_id = _session_id(data)
    if session_id is None:
        emit('error', {'message': 'session_id is required'})
        return
    room = session_room(session_id)
    join_room(room)
    emit('joined', {'room': room})


def handle_leave_session(data):
    session_id = _session_id(data)
    if session_id is None:
        emit('error', {'message': 'session_id is required'})
        return
    room = session_room(session_id)
    leave_room(room)
    emit('left', {'room': room})


def handle_answer_submitted(data):
    """Participant push hint; only ever triggers an earlier tally pull."""
    session_id = _session_id(data)
    try:
        question_index = int((data or {}).get('question_index'))
    except (TypeError, ValueError):
        return
    if session_id is None:
        return
    try:
        get_registry().get(session_id).notify_answer(question_index)
    except SessionError as exc:
        current_app.logger.info(f"[ws-hint-ignored] session={session_id} reason={exc.message}")


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'join_session': handle_join_session,
        'leave_session': handle_leave_session,
        'answer_submitted': handle_answer_submitted,
        'ping': handle_ping,
    }
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        for name, handler in handlers.items():
            socketio.on_event(name, handler, namespace=namespace)
