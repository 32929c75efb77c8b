"""Character profile store contract consumed by instance provisioning."""

from __future__ import annotations

import threading
from typing import Protocol

from dungeonqueue.backend.models import CharacterSnapshot


class ProfileStore(Protocol):
    def get_character(self, character_id: str) -> CharacterSnapshot | None:
        """Return the character's snapshot, or None when it does not exist."""

    def set_active_instance(self, character_id: str, instance_id: str) -> bool:
        """Point the character at an instance. False when the character does not exist."""


class InMemoryProfileStore:
    def __init__(self, characters: list[CharacterSnapshot] | None = None) -> None:
        self._characters: dict[str, CharacterSnapshot] = {}
        self._active_instances: dict[str, str] = {}
        self._lock = threading.Lock()
        for character in characters or []:
            self.save_character(character)

    def save_character(self, character: CharacterSnapshot) -> None:
        with self._lock:
            self._characters[character.character_id] = character

    def delete_character(self, character_id: str) -> None:
        with self._lock:
            self._characters.pop(character_id, None)
            self._active_instances.pop(character_id, None)

    def get_character(self, character_id: str) -> CharacterSnapshot | None:
        with self._lock:
            return self._characters.get(character_id)

    def set_active_instance(self, character_id: str, instance_id: str) -> bool:
        with self._lock:
            if character_id not in self._characters:
                return False
            self._active_instances[character_id] = instance_id
        return True

    def active_instance(self, character_id: str) -> str | None:
        with self._lock:
            return self._active_instances.get(character_id)
