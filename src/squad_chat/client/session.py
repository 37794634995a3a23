"""
Session controller

Drives one app run through its three screens:

    NAME_ENTRY -> LOBBY -> IN_ROOM
    IN_ROOM -> LOBBY        (back)
    LOBBY -> NAME_ENTRY     (logout)

Failures never end the session. Remote problems and unknown codes become a
persistent banner until dismissed; a failed send becomes a one-off notice
and the unsent text is put back in the draft.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Tuple
import logging

from ..core.errors import (
    ChatError,
    InvalidTransition,
    NotFound,
    SendFailure,
    ValidationFailure,
)
from ..core.invites import build_invite_link, extract_invite_code, strip_invite
from ..core.models import Message, Participant, Room
from ..core.storage import KeyValueStore
from .identity import IdentityStore
from .reconciler import MessageReconciler, MessageStream
from .remote import RemoteService
from .rooms import RoomDirectory

logger = logging.getLogger(__name__)

DEFAULT_LOCATION = "https://squad.chat/"


class Screen(str, Enum):
    NAME_ENTRY = "name_entry"
    LOBBY = "lobby"
    IN_ROOM = "in_room"


def time_until_cleanup(now: Optional[datetime] = None) -> timedelta:
    """Time left until the next 00:00 UTC data cleanup (never negative)"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    next_midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
    return next_midnight - now


def format_countdown(remaining: timedelta) -> str:
    """Render a countdown as HH:MM:SS"""
    seconds = max(0, int(remaining.total_seconds()))
    hours, rest = divmod(seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


class SessionController:
    """State machine tying identity, rooms and messages together"""

    def __init__(self, remote: RemoteService, store: KeyValueStore,
                 location: str = DEFAULT_LOCATION,
                 identity: Optional[IdentityStore] = None,
                 directory: Optional[RoomDirectory] = None,
                 reconciler: Optional[MessageReconciler] = None):
        self.identity = identity or IdentityStore(store)
        self.directory = directory or RoomDirectory(remote, store)
        self.reconciler = reconciler or MessageReconciler(remote)
        self.location = location
        self.screen = Screen.NAME_ENTRY
        self.participant: Optional[Participant] = None
        self.current_room: Optional[Room] = None
        self.rooms: List[Room] = []
        self.banner: Optional[str] = None
        self.notice: Optional[str] = None
        self.draft = ""
        self._pending_invite: Optional[str] = None

    # Derived state

    @property
    def stream(self) -> Optional[MessageStream]:
        return self.reconciler.stream

    @property
    def messages(self) -> Tuple[Message, ...]:
        stream = self.stream
        return stream.messages if stream is not None else ()

    def share_link(self, room: Optional[Room] = None) -> str:
        """Invite link for a room (default: the current one)"""
        room = room or self.current_room
        if room is None:
            raise InvalidTransition("Not in a room")
        return build_invite_link(strip_invite(self.location), room.invite_code)

    # Startup and identity

    async def start(self) -> Screen:
        """Restore identity and cached rooms, then follow any invite link"""
        self.participant = self.identity.get_or_create_participant()
        self.rooms = self.directory.list_my_rooms()
        self._pending_invite = extract_invite_code(self.location)
        if self.participant.named:
            self.screen = Screen.LOBBY
            await self._consume_invite()
        else:
            self.screen = Screen.NAME_ENTRY
        return self.screen

    async def submit_name(self, name: str) -> bool:
        """Set the display name and move to the lobby"""
        self._require(Screen.NAME_ENTRY)
        try:
            self.participant = self.identity.set_display_name(name)
        except ValidationFailure:
            return False
        self.screen = Screen.LOBBY
        self.rooms = self.directory.list_my_rooms()
        await self._consume_invite()
        return True

    async def logout(self) -> None:
        """Forget the display name and return to name entry"""
        if self.screen is Screen.IN_ROOM:
            await self.leave_room()
        self.participant = self.identity.clear_display_name()
        self.screen = Screen.NAME_ENTRY

    # Deep links

    async def follow_link(self, location: str) -> bool:
        """React to a new location, joining the room it invites to"""
        self.location = location
        self._pending_invite = extract_invite_code(location)
        if self._pending_invite is None:
            return False
        if self.screen is Screen.NAME_ENTRY:
            # joined once a name is submitted
            return False
        return await self._consume_invite()

    async def _consume_invite(self) -> bool:
        code, self._pending_invite = self._pending_invite, None
        if not code:
            return False
        try:
            return await self.join_room(code)
        finally:
            self.location = strip_invite(self.location)

    # Rooms

    async def create_room(self, name: str) -> bool:
        self._require(Screen.LOBBY)
        if not (name or "").strip():
            return False
        try:
            room = await self.directory.create_room(name, self.participant)
        except ChatError as e:
            self._show_banner(e)
            return False
        await self._enter(room)
        return True

    async def join_room(self, code: str) -> bool:
        self._require(Screen.LOBBY, Screen.IN_ROOM)
        if not (code or "").strip():
            return False
        try:
            room = await self.directory.resolve_by_code(code, self.participant)
        except ChatError as e:
            self._show_banner(e)
            return False
        await self._enter(room)
        return True

    async def enter_room(self, room: Room) -> bool:
        """Enter a room from the cached list, checking it still exists"""
        self._require(Screen.LOBBY)
        try:
            resolved = await self.directory.resolve_by_code(room.invite_code, self.participant)
        except NotFound:
            self.directory.forget_room(room.id)
            self.rooms = self.directory.list_my_rooms()
            self._show_banner(NotFound(f"Room '{room.name}' no longer exists"))
            return False
        except ChatError as e:
            self._show_banner(e)
            return False
        await self._enter(resolved)
        return True

    async def _enter(self, room: Room) -> None:
        self.current_room = room
        self.draft = ""
        stream = await self.reconciler.open(room.id)
        stream.add_listener(self._on_stream_change)
        if stream.error is not None:
            self._show_banner(stream.error)
        self.rooms = self.directory.list_my_rooms()
        self.screen = Screen.IN_ROOM
        logger.info("Entered room %s", room.name)

    async def leave_room(self) -> None:
        """Back to the lobby"""
        self._require(Screen.IN_ROOM)
        await self.reconciler.close()
        self.current_room = None
        self.draft = ""
        self.rooms = self.directory.list_my_rooms()
        self.screen = Screen.LOBBY

    def _on_stream_change(self, stream: MessageStream) -> None:
        if stream.error is not None and stream is self.stream:
            self._show_banner(stream.error)

    # Messages

    async def send(self, content: Optional[str] = None) -> Optional[Message]:
        """
        Send the draft (or `content`, which replaces the draft first)

        The draft is only cleared once the remote accepts the message.
        """
        self._require(Screen.IN_ROOM)
        if content is not None:
            self.draft = content
        text = self.draft
        if not text.strip():
            return None
        room = self.current_room
        try:
            message = await self.reconciler.append(text, self.participant, room.id)
        except SendFailure as e:
            self.draft = text
            self.notice = e.user_message
            logger.warning("Send to room %s failed: %s", room.id, e)
            return None
        if self.draft == text:
            self.draft = ""
        return message

    # Notifications

    def _show_banner(self, error: ChatError) -> None:
        self.banner = error.user_message

    def dismiss_banner(self) -> None:
        self.banner = None

    def take_notice(self) -> Optional[str]:
        """Return the transient notice once, then clear it"""
        notice, self.notice = self.notice, None
        return notice

    def _require(self, *screens: Screen) -> None:
        if self.screen not in screens:
            raise InvalidTransition(f"Not available on the {self.screen.value} screen")
