"""
Local persistence port for Squad Chat

Identity and the joined-room cache live in a small key/value store, the way
a browser app keeps them in local storage. The store is passed in
explicitly so tests can swap in an in-memory one.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union
import json
import logging
import os

import keyring
from keyring.errors import PasswordDeleteError

logger = logging.getLogger(__name__)

NAME_KEY = "squad-chat.name"
PARTICIPANT_ID_KEY = "squad-chat.participant-id"
ROOMS_KEY = "squad-chat.rooms"


class KeyValueStore(ABC):
    """Named string values that survive restarts"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None"""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one"""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Forget a value; missing keys are ignored"""


class MemoryStore(KeyValueStore):
    """Process-local store for tests and throwaway sessions"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class JsonFileStore(KeyValueStore):
    """
    Store backed by a single JSON object file

    Every write replaces the file atomically so a crash never leaves a
    half-written profile behind.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding='utf-8'))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable profile %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed profile %s", self.path)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, values: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(values, indent=2, sort_keys=True), encoding='utf-8')
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        values = self._load()
        values[key] = value
        self._save(values)

    def remove(self, key: str) -> None:
        values = self._load()
        if values.pop(key, None) is not None:
            self._save(values)


class KeyringStore(KeyValueStore):
    """Store values in the operating system keyring"""

    def __init__(self, service_name: str = "squad-chat"):
        self.service_name = service_name

    def get(self, key: str) -> Optional[str]:
        return keyring.get_password(self.service_name, key)

    def set(self, key: str, value: str) -> None:
        keyring.set_password(self.service_name, key, value)

    def remove(self, key: str) -> None:
        try:
            keyring.delete_password(self.service_name, key)
        except PasswordDeleteError:
            pass
