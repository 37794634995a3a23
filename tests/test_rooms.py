import json
import unittest
from unittest import mock

from squad_chat.client.identity import IdentityStore
from squad_chat.client.rooms import RoomDirectory
from squad_chat.core.errors import (
    CodeCollision,
    NotFound,
    RemoteUnavailable,
    ValidationFailure,
)
from squad_chat.core.storage import ROOMS_KEY, MemoryStore

from tests.fakes import ScriptedRemote


class RoomDirectoryTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.remote = ScriptedRemote()
        self.store = MemoryStore()
        self.participant = IdentityStore(self.store).set_display_name("Alice")
        self.directory = RoomDirectory(self.remote, self.store)

    async def test_create_room_registers_membership_and_caches(self):
        room = await self.directory.create_room("Weekend Trip", self.participant)

        self.assertEqual(room.name, "Weekend Trip")
        self.assertEqual(len(room.invite_code), 6)
        self.assertEqual(room.invite_code, room.invite_code.lower())
        self.assertIn((room.id, self.participant.participant_id), self.remote.memberships)
        self.assertEqual(self.directory.list_my_rooms(), [room])
        cached = json.loads(self.store.get(ROOMS_KEY))
        self.assertEqual(cached, [{"id": room.id, "name": "Weekend Trip", "invite_code": room.invite_code}])

    async def test_blank_room_name_makes_no_remote_call(self):
        with self.assertRaises(ValidationFailure):
            await self.directory.create_room("   ", self.participant)
        self.assertEqual(self.remote.remote_calls, 0)

    async def test_resolve_is_idempotent(self):
        room = await self.remote.create_room("Book Club", "k7m2qp")
        first = await self.directory.resolve_by_code("k7m2qp", self.participant)
        second = await self.directory.resolve_by_code("k7m2qp", self.participant)

        self.assertEqual(first, room)
        self.assertEqual(second, room)
        self.assertEqual(len(self.remote.memberships), 1)
        self.assertEqual([r.id for r in self.directory.list_my_rooms()], [room.id])

    async def test_resolve_accepts_codes_case_insensitively(self):
        room = await self.remote.create_room("Book Club", "k7m2qp")
        resolved = await self.directory.resolve_by_code("  K7M2QP ", self.participant)
        self.assertEqual(resolved.id, room.id)
        self.assertEqual(resolved.invite_code, "k7m2qp")

    async def test_unknown_code_is_not_found(self):
        with self.assertRaises(NotFound):
            await self.directory.resolve_by_code("zzzzzz", self.participant)
        self.assertEqual(self.directory.list_my_rooms(), [])

    async def test_blank_code_makes_no_remote_call(self):
        with self.assertRaises(ValidationFailure):
            await self.directory.resolve_by_code("  ", self.participant)
        self.assertEqual(self.remote.remote_calls, 0)

    async def test_code_collision_is_distinct_from_unavailable(self):
        await self.remote.create_room("Taken", "abcdef")
        with mock.patch("squad_chat.client.rooms.generate_invite_code", return_value="abcdef"):
            with self.assertRaises(CodeCollision) as ctx:
                await self.directory.create_room("Second", self.participant)
        self.assertNotIsInstance(ctx.exception, RemoteUnavailable)

        self.remote.schema_ready = False
        with self.assertRaises(RemoteUnavailable) as ctx:
            await self.directory.create_room("Third", self.participant)
        self.assertNotIsInstance(ctx.exception, CodeCollision)

    async def test_rooms_keep_insertion_order(self):
        first = await self.directory.create_room("One", self.participant)
        second = await self.directory.create_room("Two", self.participant)
        await self.directory.resolve_by_code(first.invite_code, self.participant)
        self.assertEqual([r.id for r in self.directory.list_my_rooms()], [first.id, second.id])

    async def test_forget_room(self):
        room = await self.directory.create_room("Gone", self.participant)
        self.assertTrue(self.directory.forget_room(room.id))
        self.assertFalse(self.directory.forget_room(room.id))
        self.assertEqual(self.directory.list_my_rooms(), [])

    def test_malformed_cache_entries_are_skipped(self):
        self.store.set(ROOMS_KEY, json.dumps([
            {"id": "r1", "name": "Good", "invite_code": "ABCDEF"},
            {"name": "missing id"},
            "garbage",
        ]))
        rooms = self.directory.list_my_rooms()
        self.assertEqual([r.id for r in rooms], ["r1"])
        self.assertEqual(rooms[0].invite_code, "abcdef")

    def test_unreadable_cache_is_empty(self):
        self.store.set(ROOMS_KEY, "{not json")
        self.assertEqual(self.directory.list_my_rooms(), [])


if __name__ == "__main__":
    unittest.main()
