"""Domain models for queueing, matchmaking and instance provisioning."""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from dungeonqueue.backend.roles import Role, normalize_role


class QueueStoreError(RuntimeError):
    """Raised when the queue backend cannot be read or written."""


class DuplicateEntryError(ValueError):
    """Raised when a participant already holds a queue entry."""


class PartyStateError(ValueError):
    """Raised for party operations not allowed in the party's current state."""


class ProvisioningError(RuntimeError):
    """Raised when a matched group cannot be turned into an instance."""


class PartyStatus(str, Enum):
    FORMING = "forming"
    QUEUED = "queued"
    IN_INSTANCE = "in_instance"


@dataclass(frozen=True)
class QueueEntry:
    entry_id: str
    participant_id: str
    character_id: str
    raw_role: str
    normalized_role: Role
    power_score: int
    content_type: str
    queued_at: datetime
    expires_at: datetime
    party_id: str | None = None
    difficulty: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


def create_queue_entry(
    participant_id: str,
    character_id: str,
    raw_role: str,
    power_score: int,
    content_type: str,
    ttl_seconds: int,
    party_id: str | None = None,
    difficulty: str | None = None,
    now: datetime | None = None,
) -> QueueEntry:
    queued_at = now if now is not None else datetime.now(timezone.utc)
    return QueueEntry(
        entry_id=str(uuid.uuid4()),
        participant_id=participant_id,
        character_id=character_id,
        raw_role=raw_role,
        normalized_role=normalize_role(raw_role),
        power_score=power_score,
        content_type=content_type,
        queued_at=queued_at,
        expires_at=queued_at + timedelta(seconds=ttl_seconds),
        party_id=party_id,
        difficulty=difficulty,
    )


@dataclass(frozen=True)
class PartyMember:
    participant_id: str
    character_id: str
    raw_role: str
    power_score: int = 0


@dataclass(frozen=True)
class Party:
    party_id: str
    leader_id: str
    members: tuple[PartyMember, ...] = ()
    status: PartyStatus = PartyStatus.FORMING
    content_type: str | None = None
    difficulty: str | None = None

    @property
    def member_ids(self) -> list[str]:
        return [member.participant_id for member in self.members]


@dataclass(frozen=True)
class Group:
    tank: QueueEntry
    healer: QueueEntry
    dps: tuple[QueueEntry, QueueEntry, QueueEntry]
    party_id: str | None = None

    @property
    def entries(self) -> list[QueueEntry]:
        return [self.tank, self.healer, *self.dps]

    @property
    def entry_ids(self) -> list[str]:
        return [entry.entry_id for entry in self.entries]

    @property
    def content_type(self) -> str:
        return self.tank.content_type


@dataclass(frozen=True)
class MatchPlan:
    groups: list[Group] = field(default_factory=list)

    @property
    def removals(self) -> list[str]:
        return [entry_id for group in self.groups for entry_id in group.entry_ids]


@dataclass(frozen=True)
class ContentDefinition:
    content_id: str
    name: str
    content_type: str
    kind: str
    difficulty: str
    min_players: int
    max_players: int
    min_level: int = 1
    stages: tuple[dict[str, Any], ...] = ()

    def fits_group_size(self, group_size: int) -> bool:
        return self.min_players <= group_size <= self.max_players


@dataclass(frozen=True)
class CharacterSnapshot:
    character_id: str
    participant_id: str
    name: str
    raw_role: str
    level: int = 1
    current_hp: int = 100
    max_hp: int = 100
    is_placeholder: bool = False


@dataclass(frozen=True)
class JoinResult:
    entry: QueueEntry
    already_queued: bool
    groups_formed: int = 0


def bucket_by_role(entries: list[QueueEntry]) -> dict[Role, deque[QueueEntry]]:
    """Split entries into FIFO buckets keyed by normalized role, keeping input order."""
    buckets: dict[Role, deque[QueueEntry]] = {role: deque() for role in Role}
    for entry in entries:
        buckets[entry.normalized_role].append(entry)
    return buckets
