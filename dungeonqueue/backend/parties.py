"""Party roster and status management."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, Protocol

from dungeonqueue.backend.models import Party, PartyMember, PartyStateError, PartyStatus
from dungeonqueue.backend.roles import GROUP_SIZE
from dungeonqueue.backend.store import _PostgresStoreBase

logger = logging.getLogger(__name__)

# Cancel is the only way back to forming; in_instance is terminal here.
ALLOWED_TRANSITIONS: dict[PartyStatus, frozenset[PartyStatus]] = {
    PartyStatus.FORMING: frozenset({PartyStatus.QUEUED}),
    PartyStatus.QUEUED: frozenset({PartyStatus.IN_INSTANCE, PartyStatus.FORMING}),
    PartyStatus.IN_INSTANCE: frozenset(),
}


class PartyStore(Protocol):
    def create_party(self, leader: PartyMember) -> Party:
        """Create a forming party led by the given member."""

    def get_party(self, party_id: str) -> Party | None:
        """Return a party by id."""

    def add_member(self, party_id: str, member: PartyMember) -> Party:
        """Add a member to a forming party."""

    def remove_member(self, party_id: str, participant_id: str) -> Party:
        """Remove a non-leader member from a forming party."""

    def mark_queued(self, party_id: str, content_type: str, difficulty: str | None) -> Party:
        """Move a forming party to queued."""

    def mark_in_instance(self, party_id: str) -> Party:
        """Move a queued party to in_instance."""

    def cancel_queue(self, party_id: str) -> Party:
        """Move a queued party back to forming."""


def with_member(party: Party, member: PartyMember) -> Party:
    if party.status is not PartyStatus.FORMING:
        raise PartyStateError(f"party {party.party_id} is {party.status.value}, members are locked")
    if member.participant_id in party.member_ids:
        raise PartyStateError(f"{member.participant_id} is already in party {party.party_id}")
    if len(party.members) >= GROUP_SIZE:
        raise PartyStateError(f"party {party.party_id} is full")
    return replace(party, members=party.members + (member,))


def without_member(party: Party, participant_id: str) -> Party:
    if party.status is not PartyStatus.FORMING:
        raise PartyStateError(f"party {party.party_id} is {party.status.value}, members are locked")
    if participant_id not in party.member_ids:
        raise PartyStateError(f"{participant_id} is not in party {party.party_id}")
    if participant_id == party.leader_id:
        raise PartyStateError("the leader cannot leave a party with members")
    return replace(
        party,
        members=tuple(member for member in party.members if member.participant_id != participant_id),
    )


def transitioned(party: Party, target: PartyStatus, **changes: Any) -> Party:
    if target not in ALLOWED_TRANSITIONS[party.status]:
        raise PartyStateError(f"party {party.party_id} cannot go from {party.status.value} to {target.value}")
    return replace(party, status=target, **changes)


def _new_party(leader: PartyMember) -> Party:
    return Party(party_id=str(uuid.uuid4()), leader_id=leader.participant_id, members=(leader,))


class InMemoryPartyStore:
    def __init__(self) -> None:
        self._parties: dict[str, Party] = {}
        self._lock = threading.Lock()

    def create_party(self, leader: PartyMember) -> Party:
        party = _new_party(leader)
        with self._lock:
            self._parties[party.party_id] = party
        return party

    def get_party(self, party_id: str) -> Party | None:
        with self._lock:
            return self._parties.get(party_id)

    def add_member(self, party_id: str, member: PartyMember) -> Party:
        return self._update(party_id, lambda party: with_member(party, member))

    def remove_member(self, party_id: str, participant_id: str) -> Party:
        return self._update(party_id, lambda party: without_member(party, participant_id))

    def mark_queued(self, party_id: str, content_type: str, difficulty: str | None) -> Party:
        return self._transition(party_id, PartyStatus.QUEUED, content_type=content_type, difficulty=difficulty)

    def mark_in_instance(self, party_id: str) -> Party:
        return self._transition(party_id, PartyStatus.IN_INSTANCE)

    def cancel_queue(self, party_id: str) -> Party:
        return self._transition(party_id, PartyStatus.FORMING, content_type=None, difficulty=None)

    def _transition(self, party_id: str, target: PartyStatus, **changes: Any) -> Party:
        party = self._update(party_id, lambda current: transitioned(current, target, **changes))
        logger.info("Party %s is now %s", party_id, target.value)
        return party

    def _update(self, party_id: str, change: Callable[[Party], Party]) -> Party:
        with self._lock:
            party = self._parties.get(party_id)
            if party is None:
                raise KeyError(party_id)
            party = change(party)
            self._parties[party_id] = party
        return party


_PARTY_COLUMNS = "id, leader_id, status, content_type, difficulty, members"


def _row_to_party(row: tuple) -> Party:
    party_id, leader_id, status, content_type, difficulty, members = row
    if not isinstance(members, list):
        members = json.loads(members)
    return Party(
        party_id=str(party_id),
        leader_id=leader_id,
        members=tuple(PartyMember(**member) for member in members),
        status=PartyStatus(status),
        content_type=content_type,
        difficulty=difficulty,
    )


def _members_json(party: Party) -> str:
    return json.dumps([asdict(member) for member in party.members])


@dataclass
class PostgresPartyStore(_PostgresStoreBase):
    """Party rows shared by every process using the same database.

    Updates lock the row with SELECT ... FOR UPDATE, so concurrent status
    changes are applied one after another.
    """

    def create_party(self, leader: PartyMember) -> Party:
        party = _new_party(leader)
        with self._transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO parties ({_PARTY_COLUMNS}, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s::jsonb, now())
                """,
                (
                    party.party_id,
                    party.leader_id,
                    party.status.value,
                    party.content_type,
                    party.difficulty,
                    _members_json(party),
                ),
            )
        return party

    def get_party(self, party_id: str) -> Party | None:
        with self._transaction() as cur:
            cur.execute(f"SELECT {_PARTY_COLUMNS} FROM parties WHERE id = %s", (party_id,))
            row = cur.fetchone()
        return _row_to_party(row) if row is not None else None

    def add_member(self, party_id: str, member: PartyMember) -> Party:
        return self._update(party_id, lambda party: with_member(party, member))

    def remove_member(self, party_id: str, participant_id: str) -> Party:
        return self._update(party_id, lambda party: without_member(party, participant_id))

    def mark_queued(self, party_id: str, content_type: str, difficulty: str | None) -> Party:
        return self._transition(party_id, PartyStatus.QUEUED, content_type=content_type, difficulty=difficulty)

    def mark_in_instance(self, party_id: str) -> Party:
        return self._transition(party_id, PartyStatus.IN_INSTANCE)

    def cancel_queue(self, party_id: str) -> Party:
        return self._transition(party_id, PartyStatus.FORMING, content_type=None, difficulty=None)

    def _transition(self, party_id: str, target: PartyStatus, **changes: Any) -> Party:
        party = self._update(party_id, lambda current: transitioned(current, target, **changes))
        logger.info("Party %s is now %s", party_id, target.value)
        return party

    def _update(self, party_id: str, change: Callable[[Party], Party]) -> Party:
        with self._transaction() as cur:
            cur.execute(f"SELECT {_PARTY_COLUMNS} FROM parties WHERE id = %s FOR UPDATE", (party_id,))
            row = cur.fetchone()
            if row is None:
                raise KeyError(party_id)
            party = change(_row_to_party(row))
            cur.execute(
                """
                UPDATE parties
                SET status = %s, content_type = %s, difficulty = %s, members = %s::jsonb, updated_at = now()
                WHERE id = %s
                """,
                (party.status.value, party.content_type, party.difficulty, _members_json(party), party_id),
            )
        return party


def create_party_store(database_url: str | None, io_timeout_seconds: float = 5.0) -> PartyStore:
    if database_url:
        return PostgresPartyStore(database_url=database_url, io_timeout_seconds=io_timeout_seconds)
    return InMemoryPartyStore()
