from .connection import Connection, ConnectionStatus
from .message import Message
from .notification import Notification
from .scheduling import Session, SessionStatus
from .user_profile import UserProfile

__all__ = [
    'Connection',
    'ConnectionStatus',
    'Message',
    'Notification',
    'Session',
    'SessionStatus',
    'UserProfile',
]
