"""
Squad Chat Core Module

This module contains the building blocks shared by every client:
- Participant, room and message records
- Error taxonomy
- Local key/value persistence
- Invite codes and deep links
"""

from .errors import (
    ChatError,
    CodeCollision,
    InvalidTransition,
    NotFound,
    RemoteUnavailable,
    SendFailure,
    ValidationFailure,
)
from .models import Message, MessageDraft, Participant, Room
from .storage import JsonFileStore, KeyringStore, KeyValueStore, MemoryStore

__all__ = [
    'ChatError',
    'CodeCollision',
    'InvalidTransition',
    'NotFound',
    'RemoteUnavailable',
    'SendFailure',
    'ValidationFailure',
    'Message',
    'MessageDraft',
    'Participant',
    'Room',
    'JsonFileStore',
    'KeyringStore',
    'KeyValueStore',
    'MemoryStore'
]
