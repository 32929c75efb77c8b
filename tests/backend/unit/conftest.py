from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

from dungeonqueue.backend.models import QueueEntry
from dungeonqueue.backend.roles import normalize_role

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return BASE_TIME + timedelta(minutes=5)


@pytest.fixture
def make_entry() -> Callable[..., QueueEntry]:
    """Build queue entries queued one second apart, in call order."""
    counter = itertools.count()

    def factory(
        participant_id: str,
        raw_role: str,
        party_id: str | None = None,
        content_type: str = "dungeon",
        difficulty: str | None = None,
        ttl_seconds: int = 1800,
    ) -> QueueEntry:
        index = next(counter)
        queued_at = BASE_TIME + timedelta(seconds=index)
        return QueueEntry(
            entry_id=f"entry-{participant_id}",
            participant_id=participant_id,
            character_id=f"char-{participant_id}",
            raw_role=raw_role,
            normalized_role=normalize_role(raw_role),
            power_score=100,
            content_type=content_type,
            queued_at=queued_at,
            expires_at=queued_at + timedelta(seconds=ttl_seconds),
            party_id=party_id,
            difficulty=difficulty,
        )

    return factory
