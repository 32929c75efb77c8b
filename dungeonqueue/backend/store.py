"""Persistence interfaces and implementations for queue entries and instances."""

from __future__ import annotations

import itertools
import json
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Iterator, Protocol

from dungeonqueue.backend.models import DuplicateEntryError, QueueEntry, QueueStoreError
from dungeonqueue.backend.roles import Role


class QueueStore(Protocol):
    def append(self, entry: QueueEntry) -> str:
        """Persist an entry and return its id. Raises DuplicateEntryError if the participant is queued."""

    def list_all(self, content_type: str | None = None) -> list[QueueEntry]:
        """Return a snapshot of pending entries, earliest-queued first."""

    def get_by_participant(self, participant_id: str) -> QueueEntry | None:
        """Return the participant's pending entry, if any."""

    def list_by_party(self, party_id: str) -> list[QueueEntry]:
        """Return pending entries sharing a party id."""

    def remove_by_id(self, entry_id: str) -> bool:
        """Remove one entry. False means it was already absent."""

    def remove_many(self, entry_ids: Iterable[str]) -> dict[str, bool]:
        """Remove entries one by one and report which ids this call removed."""

    def purge_expired(self, now: datetime) -> list[QueueEntry]:
        """Delete entries whose expiry has passed and return the deleted entries."""


class InstanceStore(Protocol):
    def create_instance(self, document: dict[str, Any]) -> str:
        """Persist a new instance document and return its id."""

    def get_instance(self, instance_id: str) -> dict[str, Any] | None:
        """Return an instance document by id."""


class InMemoryQueueStore:
    def __init__(self) -> None:
        self._entries: dict[str, tuple[int, QueueEntry]] = {}
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def append(self, entry: QueueEntry) -> str:
        with self._lock:
            for _, queued in self._entries.values():
                if queued.participant_id == entry.participant_id:
                    raise DuplicateEntryError(f"participant {entry.participant_id} is already queued")
            self._entries[entry.entry_id] = (next(self._sequence), entry)
        return entry.entry_id

    def list_all(self, content_type: str | None = None) -> list[QueueEntry]:
        with self._lock:
            rows = list(self._entries.values())
        rows.sort(key=lambda row: (row[1].queued_at, row[0]))
        return [entry for _, entry in rows if content_type is None or entry.content_type == content_type]

    def get_by_participant(self, participant_id: str) -> QueueEntry | None:
        for entry in self.list_all():
            if entry.participant_id == participant_id:
                return entry
        return None

    def list_by_party(self, party_id: str) -> list[QueueEntry]:
        return [entry for entry in self.list_all() if entry.party_id == party_id]

    def remove_by_id(self, entry_id: str) -> bool:
        with self._lock:
            return self._entries.pop(entry_id, None) is not None

    def remove_many(self, entry_ids: Iterable[str]) -> dict[str, bool]:
        return {entry_id: self.remove_by_id(entry_id) for entry_id in entry_ids}

    def purge_expired(self, now: datetime) -> list[QueueEntry]:
        with self._lock:
            expired = [entry for _, entry in self._entries.values() if entry.is_expired(now)]
            for entry in expired:
                del self._entries[entry.entry_id]
        return expired


class InMemoryInstanceStore:
    def __init__(self) -> None:
        self._instances: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def create_instance(self, document: dict[str, Any]) -> str:
        with self._lock:
            self._instances[document["id"]] = document
        return document["id"]

    def get_instance(self, instance_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._instances.get(instance_id)

    def list_instances(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._instances.values())


_ENTRY_COLUMNS = """
    id, participant_id, character_id, raw_role, normalized_role, power_score,
    content_type, queued_at, expires_at, party_id, difficulty
"""


def _row_to_entry(row: tuple) -> QueueEntry:
    (
        entry_id,
        participant_id,
        character_id,
        raw_role,
        normalized_role,
        power_score,
        content_type,
        queued_at,
        expires_at,
        party_id,
        difficulty,
    ) = row
    return QueueEntry(
        entry_id=str(entry_id),
        participant_id=participant_id,
        character_id=character_id,
        raw_role=raw_role,
        normalized_role=Role(normalized_role),
        power_score=int(power_score),
        content_type=content_type,
        queued_at=queued_at,
        expires_at=expires_at,
        party_id=party_id,
        difficulty=difficulty,
    )


@dataclass
class _PostgresStoreBase:
    database_url: str
    io_timeout_seconds: float = 5.0

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(
            self.database_url,
            connect_timeout=max(1, int(self.io_timeout_seconds)),
            options=f"-c statement_timeout={int(self.io_timeout_seconds * 1000)}",
        )

    @contextmanager
    def _transaction(self) -> Iterator[Any]:
        import psycopg

        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
        except psycopg.Error as exc:
            raise QueueStoreError(str(exc)) from exc


@dataclass
class PostgresQueueStore(_PostgresStoreBase):
    def append(self, entry: QueueEntry) -> str:
        with self._transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO queue_entries ({_ENTRY_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (participant_id) DO NOTHING
                RETURNING id
                """,
                (
                    entry.entry_id,
                    entry.participant_id,
                    entry.character_id,
                    entry.raw_role,
                    entry.normalized_role.value,
                    entry.power_score,
                    entry.content_type,
                    entry.queued_at,
                    entry.expires_at,
                    entry.party_id,
                    entry.difficulty,
                ),
            )
            row = cur.fetchone()
        if row is None:
            raise DuplicateEntryError(f"participant {entry.participant_id} is already queued")
        return str(row[0])

    def list_all(self, content_type: str | None = None) -> list[QueueEntry]:
        with self._transaction() as cur:
            if content_type is None:
                cur.execute(f"SELECT {_ENTRY_COLUMNS} FROM queue_entries ORDER BY queued_at, id", ())
            else:
                cur.execute(
                    f"SELECT {_ENTRY_COLUMNS} FROM queue_entries WHERE content_type = %s ORDER BY queued_at, id",
                    (content_type,),
                )
            rows = cur.fetchall()
        return [_row_to_entry(row) for row in rows]

    def get_by_participant(self, participant_id: str) -> QueueEntry | None:
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM queue_entries WHERE participant_id = %s",
                (participant_id,),
            )
            row = cur.fetchone()
        return _row_to_entry(row) if row is not None else None

    def list_by_party(self, party_id: str) -> list[QueueEntry]:
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM queue_entries WHERE party_id = %s ORDER BY queued_at, id",
                (party_id,),
            )
            rows = cur.fetchall()
        return [_row_to_entry(row) for row in rows]

    def remove_by_id(self, entry_id: str) -> bool:
        return self.remove_many([entry_id])[entry_id]

    def remove_many(self, entry_ids: Iterable[str]) -> dict[str, bool]:
        ids = list(entry_ids)
        if not ids:
            return {}
        # RETURNING only yields rows this statement deleted, so a row is claimed once.
        with self._transaction() as cur:
            cur.execute("DELETE FROM queue_entries WHERE id = ANY(%s) RETURNING id", (ids,))
            removed = {str(row[0]) for row in cur.fetchall()}
        return {entry_id: entry_id in removed for entry_id in ids}

    def purge_expired(self, now: datetime) -> list[QueueEntry]:
        with self._transaction() as cur:
            cur.execute(f"DELETE FROM queue_entries WHERE expires_at <= %s RETURNING {_ENTRY_COLUMNS}", (now,))
            rows = cur.fetchall()
        return [_row_to_entry(row) for row in rows]


@dataclass
class PostgresInstanceStore(_PostgresStoreBase):
    def create_instance(self, document: dict[str, Any]) -> str:
        with self._transaction() as cur:
            cur.execute(
                """
                INSERT INTO instances (id, content_id, status, party_id, created_at, updated_at, document)
                VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb)
                """,
                (
                    document["id"],
                    document["contentId"],
                    document["status"],
                    document.get("partyId"),
                    document["createdAt"],
                    document["updatedAt"],
                    json.dumps(document),
                ),
            )
        return document["id"]

    def get_instance(self, instance_id: str) -> dict[str, Any] | None:
        with self._transaction() as cur:
            cur.execute("SELECT document FROM instances WHERE id = %s", (instance_id,))
            row = cur.fetchone()
        if row is None:
            return None
        document = row[0]
        return document if isinstance(document, dict) else json.loads(document)


def create_queue_store(database_url: str | None, io_timeout_seconds: float = 5.0) -> QueueStore:
    if database_url:
        return PostgresQueueStore(database_url=database_url, io_timeout_seconds=io_timeout_seconds)
    return InMemoryQueueStore()


def create_instance_store(database_url: str | None, io_timeout_seconds: float = 5.0) -> InstanceStore:
    if database_url:
        return PostgresInstanceStore(database_url=database_url, io_timeout_seconds=io_timeout_seconds)
    return InMemoryInstanceStore()
