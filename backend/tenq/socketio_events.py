from flask_socketio import join_room, leave_room, emit
from tenq import socketio

LEADERBOARD_ROOM = 'leaderboard'


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_leaderboard(data=None):
    join_room(LEADERBOARD_ROOM)
    emit('joined', {'room': LEADERBOARD_ROOM})


def handle_leave_leaderboard(data=None):
    leave_room(LEADERBOARD_ROOM)
    emit('left', {'room': LEADERBOARD_ROOM})


def handle_ping(data):
    emit('pong', data or {})


def broadcast_leaderboard_update(quiz_id) -> None:
    """Tell subscribed clients a new Daily Score exists; they re-query."""
    socketio.emit('leaderboard_update', {'quiz_id': quiz_id}, to=LEADERBOARD_ROOM, namespace='/ws')


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('join_leaderboard', handle_join_leaderboard, namespace=namespace)
        socketio.on_event('leave_leaderboard', handle_leave_leaderboard, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
