"""
Room directory

Creates rooms, resolves invite codes and keeps the local list of rooms this
participant has joined. The list is only a cache: the remote membership
record is authoritative, and a cached room may have disappeared remotely.
"""

from typing import List
import json
import logging

from pydantic import ValidationError

from ..core.errors import NotFound, ValidationFailure
from ..core.invites import generate_invite_code, normalize_invite_code
from ..core.models import Participant, Room, room_from_cache_entry
from ..core.storage import ROOMS_KEY, KeyValueStore
from .remote import RemoteService

logger = logging.getLogger(__name__)


class RoomDirectory:
    """Room lookup and the local joined-rooms cache"""

    def __init__(self, remote: RemoteService, store: KeyValueStore):
        self.remote = remote
        self.store = store

    async def create_room(self, name: str, participant: Participant) -> Room:
        """
        Create a room with a fresh invite code and join it

        CodeCollision and RemoteUnavailable are raised unchanged; a
        collision is rare enough that retrying with a new code is left to
        the participant.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationFailure("Please enter a room name")
        room = await self.remote.create_room(name, generate_invite_code())
        await self._join(room, participant)
        logger.info("Created room %s with invite code %s", room.name, room.invite_code)
        return room

    async def resolve_by_code(self, code: str, participant: Participant) -> Room:
        """Find the room behind an invite code and join it"""
        code = normalize_invite_code(code)
        if not code:
            raise ValidationFailure("Please enter an invite code")
        room = await self.remote.fetch_room_by_invite_code(code)
        if room is None:
            raise NotFound(f"No room found for invite code '{code}'")
        await self._join(room, participant)
        return room

    async def _join(self, room: Room, participant: Participant) -> None:
        await self.remote.upsert_room_membership(
            room.id, participant.participant_id, participant.display_name
        )
        self._remember(room)

    def list_my_rooms(self) -> List[Room]:
        """Rooms created or joined on this device, in the order first seen"""
        raw = self.store.get(ROOMS_KEY)
        if not raw:
            return []
        try:
            entries = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring unreadable room cache")
            return []
        if not isinstance(entries, list):
            return []
        rooms = []
        for entry in entries:
            try:
                rooms.append(room_from_cache_entry(entry))
            except ValidationError as e:
                logger.warning("Skipping malformed cached room %r: %s", entry, e)
        return rooms

    def _save(self, rooms: List[Room]) -> None:
        self.store.set(ROOMS_KEY, json.dumps([room.to_cache_entry() for room in rooms]))

    def _remember(self, room: Room) -> None:
        rooms = self.list_my_rooms()
        if any(r.id == room.id for r in rooms):
            return
        rooms.append(room)
        self._save(rooms)

    def forget_room(self, room_id: str) -> bool:
        """Drop a room from the cache; returns whether it was there"""
        rooms = self.list_my_rooms()
        kept = [r for r in rooms if r.id != room_id]
        if len(kept) == len(rooms):
            return False
        self._save(kept)
        return True
