from pathlib import Path
from uuid import UUID

import pytest

from squad_chat.client.identity import IdentityStore
from squad_chat.core.errors import ValidationFailure
from squad_chat.core.storage import NAME_KEY, PARTICIPANT_ID_KEY, JsonFileStore, MemoryStore


def test_first_participant_has_id_but_no_name():
    store = MemoryStore()
    participant = IdentityStore(store).get_or_create_participant()

    assert not participant.named
    assert participant.display_name == ""
    assert store.get(PARTICIPANT_ID_KEY) == str(participant.participant_id)
    assert store.get(NAME_KEY) is None


def test_participant_id_is_stable_across_restarts(tmp_path: Path):
    path = tmp_path / "profile.json"
    first = IdentityStore(JsonFileStore(path)).get_or_create_participant()
    second = IdentityStore(JsonFileStore(path)).get_or_create_participant()
    assert first.participant_id == second.participant_id


def test_set_display_name_persists_and_strips():
    store = MemoryStore()
    identity = IdentityStore(store)
    original = identity.get_or_create_participant()

    named = identity.set_display_name("  Bob ")
    assert named.named
    assert named.display_name == "Bob"
    assert named.participant_id == original.participant_id
    assert identity.get_or_create_participant().display_name == "Bob"


def test_blank_display_name_is_rejected():
    identity = IdentityStore(MemoryStore())
    with pytest.raises(ValidationFailure):
        identity.set_display_name("   ")
    assert not identity.get_or_create_participant().named


def test_clear_display_name_keeps_id():
    identity = IdentityStore(MemoryStore())
    named = identity.set_display_name("Alice")
    cleared = identity.clear_display_name()
    assert not cleared.named
    assert cleared.participant_id == named.participant_id


def test_malformed_stored_id_is_replaced():
    store = MemoryStore({PARTICIPANT_ID_KEY: "not-a-uuid"})
    participant = IdentityStore(store).get_or_create_participant()
    assert isinstance(participant.participant_id, UUID)
    assert store.get(PARTICIPANT_ID_KEY) == str(participant.participant_id)
