"""
Squad Chat - Multi-room chat client

A small multi-room chat: participants pick a display name, create or join
rooms through short invite codes, and see messages appear in near real time.
Persistence and push delivery belong to a remote backend; this package holds
the client-side state that keeps the local view consistent with it.

Key Features:
- Anonymous, device-bound participant identity
- Rooms shared through six character invite codes and invite links
- Duplicate-free merge of room history with a live message feed
- Pluggable backends (in-process, shared directory)
- Rich terminal-based user interface

Usage:
    from squad_chat import BucketRemote, JsonFileStore, SessionController

    session = SessionController(BucketRemote("./chat-data"), JsonFileStore("profile.json"))
    await session.start()
    await session.submit_name("Alice")
    await session.create_room("Weekend Trip")
    await session.send("Hello, World!")
"""

__version__ = "0.1.0"
__author__ = "Squad Chat Contributors"
__license__ = "AGPLv3"

from .core import (
    ChatError,
    JsonFileStore,
    KeyringStore,
    MemoryStore,
    Message,
    Participant,
    Room,
)
from .client import (
    BucketRemote,
    InMemoryRemote,
    MessageReconciler,
    RoomDirectory,
    Screen,
    SessionController,
)

__all__ = [
    'ChatError',
    'JsonFileStore',
    'KeyringStore',
    'MemoryStore',
    'Message',
    'Participant',
    'Room',
    'BucketRemote',
    'InMemoryRemote',
    'MessageReconciler',
    'RoomDirectory',
    'Screen',
    'SessionController'
]
