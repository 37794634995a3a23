"""
Remote chat backend contract

The client never owns persistence: rooms, memberships and messages live in a
remote service reached through `RemoteService`. This module also provides
the subscription handle used for live inserts and an in-process backend.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import UUID, uuid4
import asyncio
import logging

from ..core.errors import ChatError, CodeCollision, NotFound, RemoteUnavailable
from ..core.models import Message, MessageDraft, Room

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100

_CLOSED = object()


class Subscription:
    """
    Cancellable handle over live message inserts for one room

    Iterating yields messages as the backend pushes them. Delivery is
    at-least-once, so consumers must tolerate repeats. Iteration ends after
    `close()`; a producer can also `fail()` the subscription, which raises
    the error in the consumer.
    """

    def __init__(self, room_id: str, on_close: Optional[Callable[[], Awaitable[None]]] = None):
        self.room_id = room_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self._error: Optional[ChatError] = None
        self.closed = False

    def push(self, message: Message) -> None:
        """Deliver a message; ignored once closed"""
        if self.closed:
            return
        self._queue.put_nowait(message)

    def fail(self, error: ChatError) -> None:
        """Stop delivery and surface an error to the consumer"""
        if self.closed:
            return
        self._error = error
        self.closed = True
        self._queue.put_nowait(_CLOSED)

    async def close(self) -> None:
        """Release the subscription"""
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)
        if self._on_close is not None:
            await self._on_close()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Message:
        item = await self._queue.get()
        if item is _CLOSED:
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        return item


class RemoteService(ABC):
    """Operations the chat client consumes from its backend"""

    @abstractmethod
    async def fetch_room_by_invite_code(self, code: str) -> Optional[Room]:
        """Look up a room by its invite code; None if no room matches"""

    @abstractmethod
    async def create_room(self, name: str, invite_code: str) -> Room:
        """Create a room; raises CodeCollision or RemoteUnavailable"""

    @abstractmethod
    async def upsert_room_membership(self, room_id: str, participant_id: UUID,
                                     display_name: str) -> None:
        """Record membership; repeating it must not create a second record"""

    @abstractmethod
    async def fetch_messages(self, room_id: str, limit: int = HISTORY_LIMIT) -> List[Message]:
        """Most recent messages of a room, oldest first"""

    @abstractmethod
    async def insert_message(self, draft: MessageDraft) -> Message:
        """Store a message and return it with its remote-assigned id"""

    @abstractmethod
    async def subscribe_inserts(self, room_id: str) -> Subscription:
        """Open a live feed of messages inserted into a room"""


def most_recent(messages: List[Message], limit: int) -> List[Message]:
    """Keep the newest `limit` messages, ascending by creation time"""
    ordered = sorted(messages, key=lambda m: m.created_at)
    if limit <= 0:
        return []
    return ordered[-limit:]


class InMemoryRemote(RemoteService):
    """
    Backend living entirely in this process

    Several sessions sharing one instance see each other's rooms and
    messages, with inserts fanned out to every open subscription for the
    room. With `schema_ready=False` every call fails the way a backend
    without its tables does.
    """

    def __init__(self, schema_ready: bool = True):
        self.schema_ready = schema_ready
        self.rooms: Dict[str, Room] = {}
        self.invites: Dict[str, str] = {}
        self.memberships: Dict[Tuple[str, UUID], str] = {}
        self.messages: List[Message] = []
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def _check_schema(self) -> None:
        if not self.schema_ready:
            raise RemoteUnavailable("Chat tables are missing on the backend")

    async def fetch_room_by_invite_code(self, code: str) -> Optional[Room]:
        self._check_schema()
        room_id = self.invites.get(code)
        return self.rooms.get(room_id) if room_id else None

    async def create_room(self, name: str, invite_code: str) -> Room:
        self._check_schema()
        if invite_code in self.invites:
            raise CodeCollision()
        room = Room(id=uuid4().hex, name=name, invite_code=invite_code)
        self.rooms[room.id] = room
        self.invites[room.invite_code] = room.id
        return room

    async def upsert_room_membership(self, room_id: str, participant_id: UUID,
                                     display_name: str) -> None:
        self._check_schema()
        if room_id not in self.rooms:
            raise NotFound("That room no longer exists")
        self.memberships[(room_id, participant_id)] = display_name

    async def fetch_messages(self, room_id: str, limit: int = HISTORY_LIMIT) -> List[Message]:
        self._check_schema()
        return most_recent([m for m in self.messages if m.room_id == room_id], limit)

    async def insert_message(self, draft: MessageDraft) -> Message:
        self._check_schema()
        message = Message.from_draft(draft, uuid4().hex)
        self.messages.append(message)
        for subscription in list(self._subscriptions.get(message.room_id, [])):
            subscription.push(message)
        return message

    async def subscribe_inserts(self, room_id: str) -> Subscription:
        self._check_schema()
        subscribers = self._subscriptions.setdefault(room_id, [])

        async def detach():
            if subscription in subscribers:
                subscribers.remove(subscription)

        subscription = Subscription(room_id, on_close=detach)
        subscribers.append(subscription)
        return subscription

    def subscriber_count(self, room_id: str) -> int:
        """Number of open live feeds for a room"""
        return len(self._subscriptions.get(room_id, []))

    def delete_room(self, room_id: str) -> None:
        """Drop a room and its invite, as a remote cleanup would"""
        room = self.rooms.pop(room_id, None)
        if room is not None:
            self.invites.pop(room.invite_code, None)
        self.messages = [m for m in self.messages if m.room_id != room_id]
