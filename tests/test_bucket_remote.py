import asyncio
import tempfile
import unittest
from datetime import timedelta
from pathlib import Path
from uuid import uuid4

from squad_chat.client.bucket import BucketRemote
from squad_chat.client.identity import IdentityStore
from squad_chat.client.reconciler import MessageReconciler
from squad_chat.core.errors import CodeCollision, NotFound, RemoteUnavailable
from squad_chat.core.models import Message, MessageDraft, utc_now
from squad_chat.core.storage import MemoryStore


class BucketRemoteTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name) / "data"
        self.remote = BucketRemote(self.base, poll_interval=0.01)
        await self.remote.initialize()

    async def asyncTearDown(self):
        self._tmp.cleanup()

    def draft(self, room_id, content, created_at=None):
        return MessageDraft(
            room_id=room_id,
            content=content,
            sender_name="Alice",
            sender_id=uuid4(),
            created_at=created_at or utc_now(),
        )

    async def test_uninitialized_directory_is_unavailable(self):
        remote = BucketRemote(Path(self._tmp.name) / "empty")
        with self.assertRaises(RemoteUnavailable):
            await remote.create_room("Room", "abcdef")
        with self.assertRaises(RemoteUnavailable):
            await remote.fetch_room_by_invite_code("abcdef")

    async def test_initialize_is_idempotent(self):
        self.assertTrue(self.remote.schema_path.exists())
        self.assertFalse(await self.remote.initialize())

    async def test_create_and_resolve_room(self):
        room = await self.remote.create_room("Weekend Trip", "a2b3c4")
        self.assertTrue(self.remote.get_room_metadata_path(room.id).exists())
        self.assertTrue(self.remote.get_invite_path("a2b3c4").exists())

        resolved = await self.remote.fetch_room_by_invite_code("a2b3c4")
        self.assertEqual(resolved, room)
        self.assertIsNone(await self.remote.fetch_room_by_invite_code("zzzzzz"))

    async def test_duplicate_invite_code_collides(self):
        await self.remote.create_room("First", "a2b3c4")
        with self.assertRaises(CodeCollision):
            await self.remote.create_room("Second", "a2b3c4")

    async def test_membership_upsert_is_idempotent(self):
        room = await self.remote.create_room("Room", "a2b3c4")
        participant_id = uuid4()
        await self.remote.upsert_room_membership(room.id, participant_id, "Alice")
        await self.remote.upsert_room_membership(room.id, participant_id, "Alice B")
        members = list((self.remote.get_room_path(room.id) / "members").iterdir())
        self.assertEqual(len(members), 1)

        with self.assertRaises(NotFound):
            await self.remote.upsert_room_membership("missing", participant_id, "Alice")

    async def test_messages_are_stored_one_file_each(self):
        room = await self.remote.create_room("Room", "a2b3c4")
        now = utc_now()
        second = await self.remote.insert_message(self.draft(room.id, "second", now))
        first = await self.remote.insert_message(self.draft(room.id, "first", now - timedelta(seconds=5)))

        self.assertNotEqual(first.id, second.id)
        self.assertEqual(len(self.remote.list_log_files(room.id)), 2)
        messages = await self.remote.fetch_messages(room.id)
        self.assertEqual([m.content for m in messages], ["first", "second"])
        limited = await self.remote.fetch_messages(room.id, limit=1)
        self.assertEqual([m.content for m in limited], ["second"])

    async def test_insert_into_missing_room_fails(self):
        with self.assertRaises(NotFound):
            await self.remote.insert_message(self.draft("missing", "hello"))

    async def test_subscription_delivers_new_messages_only(self):
        room = await self.remote.create_room("Room", "a2b3c4")
        await self.remote.insert_message(self.draft(room.id, "before"))
        subscription = await self.remote.subscribe_inserts(room.id)
        try:
            sent = await self.remote.insert_message(self.draft(room.id, "after"))
            received = await asyncio.wait_for(subscription.__anext__(), timeout=2)
            self.assertEqual(received.id, sent.id)
        finally:
            await subscription.close()
        with self.assertRaises(StopAsyncIteration):
            await subscription.__anext__()

    async def test_half_written_log_is_delivered_once_complete(self):
        room = await self.remote.create_room("Room", "a2b3c4")
        subscription = await self.remote.subscribe_inserts(room.id)
        message = Message.from_draft(self.draft(room.id, "slow writer"), uuid4().hex)
        file_path = self.remote.get_message_log_path(message)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        line = message.to_jsonl_line()
        try:
            file_path.touch()
            await asyncio.sleep(0.05)
            file_path.write_text(line[:10], encoding="utf-8")
            await asyncio.sleep(0.05)
            file_path.write_text(line, encoding="utf-8")
            received = await asyncio.wait_for(subscription.__anext__(), timeout=2)
            self.assertEqual(received.id, message.id)
        finally:
            await subscription.close()

    async def test_insert_leaves_only_complete_log_files(self):
        room = await self.remote.create_room("Room", "a2b3c4")
        sent = await self.remote.insert_message(self.draft(room.id, "hello"))
        day_dir = self.remote.get_message_log_path(sent).parent
        self.assertEqual([p.name for p in day_dir.iterdir()], [self.remote.get_message_log_path(sent).name])

    async def test_undecodable_log_is_skipped(self):
        room = await self.remote.create_room("Room", "a2b3c4")
        good = await self.remote.insert_message(self.draft(room.id, "readable"))
        day_dir = self.remote.get_message_log_path(good).parent
        (day_dir / "messages_1_1_garbage.jsonl").write_bytes(b"\xff\xfe garbage\n")

        view = MessageReconciler(self.remote)
        try:
            stream = await view.open(room.id)
            await asyncio.wait_for(stream.wait_ready(), timeout=2)
            self.assertIsNone(stream.error)
            self.assertEqual([m.id for m in stream.messages], [good.id])

            (day_dir / "messages_2_2_garbage.jsonl").write_bytes(b"\xff\xfe more\n")
            await asyncio.sleep(0.05)
            later = await self.remote.insert_message(self.draft(room.id, "still live"))
            for _ in range(200):
                if len(stream.messages) == 2:
                    break
                await asyncio.sleep(0.01)
            self.assertEqual([m.id for m in stream.messages], [good.id, later.id])
            self.assertIsNone(stream.error)
        finally:
            await view.close()

    async def test_purge_removes_previous_days(self):
        room = await self.remote.create_room("Room", "a2b3c4")
        await self.remote.insert_message(self.draft(room.id, "old", utc_now() - timedelta(days=2)))
        await self.remote.insert_message(self.draft(room.id, "today"))

        self.assertEqual(self.remote.purge_messages(), 1)
        messages = await self.remote.fetch_messages(room.id)
        self.assertEqual([m.content for m in messages], ["today"])

    async def test_two_clients_share_a_directory(self):
        other = BucketRemote(self.base, poll_interval=0.01)
        room = await self.remote.create_room("Shared", "a2b3c4")
        alice = IdentityStore(MemoryStore()).set_display_name("Alice")
        bob = IdentityStore(MemoryStore()).set_display_name("Bob")
        alice_view = MessageReconciler(self.remote)
        bob_view = MessageReconciler(other)
        try:
            await (await alice_view.open(room.id)).wait_ready()
            bob_stream = await bob_view.open(room.id)
            await bob_stream.wait_ready()

            sent = await alice_view.append("hi Bob", alice, room.id)
            for _ in range(200):
                if bob_stream.messages:
                    break
                await asyncio.sleep(0.01)
            self.assertEqual([m.id for m in bob_stream.messages], [sent.id])
            self.assertFalse(sent.is_from(bob))
        finally:
            await alice_view.close()
            await bob_view.close()


if __name__ == "__main__":
    unittest.main()
