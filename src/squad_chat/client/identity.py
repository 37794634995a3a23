"""
Anonymous participant identity

There is no account system: a device gets a random participant id the first
time it runs, and the participant chooses a display name on top of it.
"""

from uuid import UUID, uuid4
import logging

from ..core.errors import ValidationFailure
from ..core.models import Participant
from ..core.storage import NAME_KEY, PARTICIPANT_ID_KEY, KeyValueStore

logger = logging.getLogger(__name__)


class IdentityStore:
    """Loads and persists the participant for this device"""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _load_or_create_id(self) -> UUID:
        raw = self.store.get(PARTICIPANT_ID_KEY)
        if raw:
            try:
                return UUID(raw)
            except ValueError:
                logger.warning("Replacing malformed participant id %r", raw)
        participant_id = uuid4()
        # Persisted right away so the id survives a restart before naming
        self.store.set(PARTICIPANT_ID_KEY, str(participant_id))
        return participant_id

    def get_or_create_participant(self) -> Participant:
        """Get the existing participant or create one with no name yet"""
        return Participant(
            participant_id=self._load_or_create_id(),
            display_name=self.store.get(NAME_KEY) or "",
        )

    def set_display_name(self, name: str) -> Participant:
        """Persist a display name, marking the participant as named"""
        name = (name or "").strip()
        if not name:
            raise ValidationFailure("Please enter a name")
        self.store.set(NAME_KEY, name)
        return self.get_or_create_participant()

    def clear_display_name(self) -> Participant:
        """Forget the display name; the participant id is kept"""
        self.store.remove(NAME_KEY)
        return self.get_or_create_participant()
