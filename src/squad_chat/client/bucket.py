"""
Shared-directory backend for Squad Chat

Rooms, memberships and messages are kept as small JSON files under one
directory that every participating client can reach (a local folder, a
network share, a synced drive). Each message is written to its own JSONL
file, so concurrent writers never touch the same file, and live delivery is
done by polling for log files a subscriber has not seen yet.

Layout:
    bucket.json                                   schema marker
    invites/<code>.json                           {"room_id": ...}
    rooms/<room_id>/metadata.json                 room record
    rooms/<room_id>/members/<participant>.json    membership record
    rooms/<room_id>/logs/<date>/messages_<ms>_<ms>_<message_id>.jsonl
"""

from datetime import date
from pathlib import Path
from typing import Iterable, List, Optional, Set, Union
from uuid import UUID, uuid4
import asyncio
import json
import logging
import os
import shutil

import aiofiles
from pydantic import ValidationError

from ..core.errors import CodeCollision, NotFound, RemoteUnavailable
from ..core.models import Message, MessageDraft, Room, utc_now
from .remote import HISTORY_LIMIT, RemoteService, Subscription, most_recent

logger = logging.getLogger(__name__)

PROTOCOL = "squad-chat-v1"
SCHEMA_FILE = "bucket.json"
DEFAULT_POLL_INTERVAL = 1.0


class BucketRemote(RemoteService):
    """
    Remote service over a shared directory

    The directory must be initialized once with `initialize()`; until then
    every operation fails with RemoteUnavailable, like a backend whose
    tables were never created.
    """

    def __init__(self, base_path: Union[str, Path], poll_interval: float = DEFAULT_POLL_INTERVAL):
        if isinstance(base_path, str) and base_path.startswith('file://'):
            base_path = base_path[7:]
        self.base_path = Path(base_path).expanduser()
        self.poll_interval = poll_interval

    # Layout helpers

    @property
    def schema_path(self) -> Path:
        return self.base_path / SCHEMA_FILE

    def get_invite_path(self, code: str) -> Path:
        return self.base_path / "invites" / f"{code}.json"

    def get_room_path(self, room_id: str) -> Path:
        return self.base_path / "rooms" / room_id

    def get_room_metadata_path(self, room_id: str) -> Path:
        return self.get_room_path(room_id) / "metadata.json"

    def get_member_path(self, room_id: str, participant_id: UUID) -> Path:
        return self.get_room_path(room_id) / "members" / f"{participant_id}.json"

    def get_message_log_path(self, message: Message) -> Path:
        """Path for one message file following the log naming convention"""
        ts = int(message.created_at.timestamp() * 1000)
        filename = f"messages_{ts}_{ts}_{message.id}.jsonl"
        return self.get_room_path(message.room_id) / "logs" / message.created_at.date().isoformat() / filename

    # Schema

    def is_initialized(self) -> bool:
        return self.schema_path.exists()

    async def initialize(self) -> bool:
        """Create the schema marker; returns False if it already existed"""
        if self.is_initialized():
            return False
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            await self.write_json(self.schema_path, {
                "protocol": PROTOCOL,
                "created_at": utc_now().isoformat(),
            })
        except OSError as e:
            raise RemoteUnavailable(f"Cannot initialize chat data at {self.base_path}: {e}") from e
        logger.info("Initialized chat data at %s", self.base_path)
        return True

    def _check_schema(self) -> None:
        if not self.is_initialized():
            raise RemoteUnavailable(
                f"Chat data at {self.base_path} is not initialized (run 'squad-chat init')"
            )

    # File primitives

    async def write_json(self, file_path: Path, data: dict, exclusive: bool = False) -> None:
        """Write JSON data to file; exclusive mode fails if the file exists"""
        file_path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(data, indent=2, ensure_ascii=False)
        async with aiofiles.open(file_path, 'x' if exclusive else 'w', encoding='utf-8') as f:
            await f.write(content)

    async def read_json(self, file_path: Path) -> Optional[dict]:
        """Read JSON data from file, None if it does not exist"""
        if not file_path.exists():
            return None
        async with aiofiles.open(file_path, 'r', encoding='utf-8') as f:
            content = await f.read()
        return json.loads(content)

    async def read_jsonl_file(self, file_path: Path) -> List[str]:
        """Read non-empty lines from a JSONL file"""
        async with aiofiles.open(file_path, 'r', encoding='utf-8') as f:
            content = await f.read()
        return [line for line in content.split('\n') if line.strip()]

    def list_log_files(self, room_id: str) -> List[Path]:
        """All message files of a room, oldest first"""
        logs_path = self.get_room_path(room_id) / "logs"
        if not logs_path.exists():
            return []
        files = []
        for date_dir in logs_path.iterdir():
            if date_dir.is_dir():
                files.extend(date_dir.glob("messages_*.jsonl"))
        return sorted(files, key=lambda p: (p.parent.name, p.name))

    async def read_log_file(self, file_path: Path) -> Optional[List[Message]]:
        """
        Messages stored in one log file

        Returns None when the file is gone or cannot be decoded at all.
        Malformed lines are logged and skipped.
        """
        try:
            lines = await self.read_jsonl_file(file_path)
        except FileNotFoundError:
            # purged between listing and reading
            return None
        except UnicodeDecodeError as e:
            logger.warning("Skipping undecodable log %s: %s", file_path, e)
            return None
        messages = []
        for line in lines:
            try:
                messages.append(Message.from_jsonl_line(line))
            except ValidationError as e:
                logger.warning("Skipping malformed message in %s: %s", file_path, e)
        return messages

    async def _read_messages(self, files: Iterable[Path]) -> List[Message]:
        messages = []
        for file_path in files:
            messages.extend(await self.read_log_file(file_path) or [])
        return messages

    # RemoteService

    async def fetch_room_by_invite_code(self, code: str) -> Optional[Room]:
        self._check_schema()
        try:
            invite = await self.read_json(self.get_invite_path(code))
            if invite is None:
                return None
            metadata = await self.read_json(self.get_room_metadata_path(invite['room_id']))
        except (OSError, ValueError, KeyError) as e:
            raise RemoteUnavailable(f"Cannot read invite {code}: {e}") from e
        if metadata is None:
            return None
        return Room.model_validate(metadata)

    async def create_room(self, name: str, invite_code: str) -> Room:
        self._check_schema()
        room = Room(id=uuid4().hex, name=name, invite_code=invite_code)
        try:
            await self.write_json(self.get_invite_path(room.invite_code), {"room_id": room.id}, exclusive=True)
        except FileExistsError as e:
            raise CodeCollision() from e
        except OSError as e:
            raise RemoteUnavailable(f"Cannot create room: {e}") from e
        try:
            metadata = room.model_dump()
            metadata["created_at"] = utc_now().isoformat()
            await self.write_json(self.get_room_metadata_path(room.id), metadata)
        except OSError as e:
            raise RemoteUnavailable(f"Cannot create room: {e}") from e
        logger.debug("Created room %s (%s)", room.id, room.invite_code)
        return room

    async def upsert_room_membership(self, room_id: str, participant_id: UUID,
                                     display_name: str) -> None:
        self._check_schema()
        if not self.get_room_metadata_path(room_id).exists():
            raise NotFound("That room no longer exists")
        try:
            await self.write_json(self.get_member_path(room_id, participant_id), {
                "room_id": room_id,
                "participant_id": str(participant_id),
                "display_name": display_name,
                "updated_at": utc_now().isoformat(),
            })
        except OSError as e:
            raise RemoteUnavailable(f"Cannot record membership: {e}") from e

    async def fetch_messages(self, room_id: str, limit: int = HISTORY_LIMIT) -> List[Message]:
        self._check_schema()
        try:
            messages = await self._read_messages(self.list_log_files(room_id))
        except OSError as e:
            raise RemoteUnavailable(f"Cannot read messages: {e}") from e
        return most_recent(messages, limit)

    async def insert_message(self, draft: MessageDraft) -> Message:
        self._check_schema()
        if not self.get_room_metadata_path(draft.room_id).exists():
            raise NotFound("That room no longer exists")
        message = Message.from_draft(draft, uuid4().hex)
        file_path = self.get_message_log_path(message)
        # pollers only list complete files
        tmp_path = file_path.with_name(f".{file_path.name}.tmp")
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, 'x', encoding='utf-8') as f:
                await f.write(message.to_jsonl_line())
            os.replace(tmp_path, file_path)
        except OSError as e:
            raise RemoteUnavailable(f"Cannot store message: {e}") from e
        return message

    async def subscribe_inserts(self, room_id: str) -> Subscription:
        self._check_schema()
        seen: Set[Path] = set(self.list_log_files(room_id))
        task: Optional[asyncio.Task] = None

        async def stop():
            if task is not None and task is not asyncio.current_task():
                task.cancel()

        subscription = Subscription(room_id, on_close=stop)
        task = asyncio.create_task(self._poll(subscription, seen))
        return subscription

    async def _poll(self, subscription: Subscription, seen: Set[Path]) -> None:
        """Push messages from log files that appeared since the last pass"""
        while not subscription.closed:
            await asyncio.sleep(self.poll_interval)
            try:
                fresh = [p for p in self.list_log_files(subscription.room_id) if p not in seen]
                for file_path in fresh:
                    messages = await self.read_log_file(file_path)
                    if messages == []:
                        # empty or half written, retried on the next pass
                        continue
                    seen.add(file_path)
                    for message in messages or []:
                        subscription.push(message)
            except OSError as e:
                logger.warning("Live updates for room %s stopped: %s", subscription.room_id, e)
                subscription.fail(RemoteUnavailable(f"Live updates stopped: {e}"))
                return

    # Maintenance

    def purge_messages(self, before: Optional[date] = None) -> int:
        """
        Delete message logs dated before `before` (default: today, UTC)

        This is the scheduled 00:00 UTC cleanup. Returns the number of day
        directories removed.
        """
        self._check_schema()
        cutoff = (before or utc_now().date()).isoformat()
        rooms_path = self.base_path / "rooms"
        if not rooms_path.exists():
            return 0
        removed = 0
        for room_dir in rooms_path.iterdir():
            logs_path = room_dir / "logs"
            if not logs_path.is_dir():
                continue
            for date_dir in logs_path.iterdir():
                if date_dir.is_dir() and date_dir.name < cutoff:
                    shutil.rmtree(date_dir)
                    removed += 1
        logger.info("Purged %d day(s) of messages before %s", removed, cutoff)
        return removed

    def get_storage_info(self) -> dict:
        """Get information about the storage backend"""
        return {
            'base_path': str(self.base_path),
            'initialized': self.is_initialized(),
            'protocol': PROTOCOL,
            'poll_interval': self.poll_interval,
        }
