"""
Message reconciliation

A room's visible log is built from two sources that race each other: a bulk
fetch of recent history and a live feed of inserts. The live feed is opened
first so nothing written in between is missed, which means it can deliver a
message before history lands and can deliver a message that history also
contains.

Merge policy:
- live messages that arrive before history are buffered;
- history seeds the log, sorted by creation time (ties keep fetch order),
  followed by the buffered live messages it did not already contain;
- after that, each live message with an unseen id is appended at the end,
  in delivery order.

Every change publishes a new immutable tuple, so readers never observe a
half-applied update. Once a stream is closed nothing is applied to it.
"""

from typing import Callable, Iterable, List, Optional, Set, Tuple
import asyncio
import logging

from ..core.errors import ChatError, SendFailure, ValidationFailure
from ..core.models import Message, MessageDraft, Participant, utc_now
from .remote import HISTORY_LIMIT, RemoteService, Subscription

logger = logging.getLogger(__name__)

Listener = Callable[['MessageStream'], None]


class MessageStream:
    """Ordered, duplicate-free view of one room's messages"""

    def __init__(self, room_id: str):
        self.room_id = room_id
        self.error: Optional[ChatError] = None
        self.closed = False
        self._messages: Tuple[Message, ...] = ()
        self._seen: Set[str] = set()
        self._pending: List[Message] = []
        self._ready = asyncio.Event()
        self._listeners: List[Listener] = []

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self._messages

    @property
    def ready(self) -> bool:
        """True once history has been applied (or has failed)"""
        return self._ready.is_set()

    async def wait_ready(self) -> Tuple[Message, ...]:
        await self._ready.wait()
        return self._messages

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call `listener(stream)` after every change; returns a remover"""
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _publish(self, messages: Tuple[Message, ...]) -> None:
        self._messages = messages
        for listener in list(self._listeners):
            listener(self)

    def _merged(self, messages: Iterable[Message]) -> Tuple[Message, ...]:
        merged = list(self._messages)
        for message in messages:
            if message.id in self._seen:
                continue
            self._seen.add(message.id)
            merged.append(message)
        return tuple(merged)

    def seed(self, history: Iterable[Message]) -> None:
        """Apply the bulk fetch, then any live messages buffered meanwhile"""
        if self.closed or self.ready:
            return
        ordered = sorted((m for m in history if m.room_id == self.room_id),
                         key=lambda m: m.created_at)
        pending, self._pending = self._pending, []
        messages = self._merged(ordered + pending)
        self._ready.set()
        self._publish(messages)

    def deliver(self, message: Message) -> bool:
        """Apply one live message; returns whether the log changed"""
        if self.closed or message.room_id != self.room_id:
            return False
        if not self.ready:
            if all(m.id != message.id for m in self._pending):
                self._pending.append(message)
            return False
        if message.id in self._seen:
            return False
        self._publish(self._merged([message]))
        return True

    def fail(self, error: ChatError) -> None:
        """Record an error; buffered live messages are still shown"""
        if self.closed:
            return
        self.error = error
        if not self.ready:
            pending, self._pending = self._pending, []
            messages = self._merged(pending)
            self._ready.set()
            self._publish(messages)
        else:
            self._publish(self._messages)


class MessageReconciler:
    """Keeps exactly one room's message stream in sync with the remote"""

    def __init__(self, remote: RemoteService, history_limit: int = HISTORY_LIMIT):
        self.remote = remote
        self.history_limit = history_limit
        self._stream: Optional[MessageStream] = None
        self._subscription: Optional[Subscription] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def stream(self) -> Optional[MessageStream]:
        return self._stream

    async def open(self, room_id: str) -> MessageStream:
        """
        Start following a room, replacing any room already open

        Returns as soon as the live feed is attached; history is fetched in
        the background so a slow backend does not hold up the caller. Use
        `MessageStream.wait_ready()` to wait for it.
        """
        await self.close()
        stream = MessageStream(room_id)
        self._stream = stream
        try:
            subscription = await self.remote.subscribe_inserts(room_id)
        except ChatError as e:
            logger.warning("Cannot follow room %s: %s", room_id, e)
            stream.fail(e)
            return stream
        if stream is not self._stream:
            # another room was opened while we were subscribing
            await subscription.close()
            return stream
        self._subscription = subscription
        self._tasks = [
            asyncio.create_task(self._pump(stream, subscription)),
            asyncio.create_task(self._load_history(stream)),
        ]
        return stream

    async def _load_history(self, stream: MessageStream) -> None:
        try:
            history = await self.remote.fetch_messages(stream.room_id, limit=self.history_limit)
        except ChatError as e:
            if stream is self._stream:
                logger.warning("Cannot load history for room %s: %s", stream.room_id, e)
                stream.fail(e)
            return
        if stream is not self._stream:
            logger.debug("Discarding late history for room %s", stream.room_id)
            return
        stream.seed(history)

    async def _pump(self, stream: MessageStream, subscription: Subscription) -> None:
        try:
            async for message in subscription:
                if stream is not self._stream:
                    logger.debug("Discarding late live message for room %s", stream.room_id)
                    return
                stream.deliver(message)
        except ChatError as e:
            if stream is self._stream:
                logger.warning("Live updates for room %s stopped: %s", stream.room_id, e)
                stream.fail(e)

    async def append(self, content: str, participant: Participant, room_id: str) -> Message:
        """
        Send a message to a room

        Raises ValidationFailure for blank content (nothing is sent) and
        SendFailure if the remote rejects the insert. The stored message is
        applied to the open stream right away; its echo on the live feed is
        dropped as a duplicate.
        """
        if not content or not content.strip():
            raise ValidationFailure("Cannot send an empty message")
        draft = MessageDraft(
            room_id=room_id,
            content=content,
            sender_name=participant.display_name,
            sender_id=participant.participant_id,
            created_at=utc_now(),
        )
        try:
            message = await self.remote.insert_message(draft)
        except ChatError as e:
            raise SendFailure(f"Message not sent: {e.user_message}") from e
        stream = self._stream
        if stream is not None and stream.room_id == message.room_id:
            stream.deliver(message)
        else:
            logger.debug("Sent message for room %s is no longer in view", room_id)
        return message

    async def close(self) -> None:
        """Stop following the current room, if any"""
        stream, subscription, tasks = self._stream, self._subscription, self._tasks
        self._stream, self._subscription, self._tasks = None, None, []
        if stream is not None:
            stream.closed = True
        for task in tasks:
            task.cancel()
        if subscription is not None:
            await subscription.close()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
