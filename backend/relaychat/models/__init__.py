"""SQLAlchemy models."""

from relaychat.models.chat import Message, MessageRole, Thread
from relaychat.models.setting import Setting

__all__ = [
    "Thread",
    "Message",
    "MessageRole",
    "Setting",
]
