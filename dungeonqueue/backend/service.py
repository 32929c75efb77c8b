"""Queue operations and the execution phase of matchmaking passes."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from dungeonqueue.backend.matchmaker import plan_pass
from dungeonqueue.backend.models import (
    DuplicateEntryError,
    Group,
    JoinResult,
    Party,
    PartyStateError,
    PartyStatus,
    QueueEntry,
    QueueStoreError,
    create_queue_entry,
)
from dungeonqueue.backend.notifier import (
    GROUP_FORMED,
    PARTICIPANT_LEFT_QUEUE,
    PARTICIPANT_QUEUED,
    BroadcastNotifier,
    notify_safely,
    queue_channel,
)
from dungeonqueue.backend.parties import PartyStore
from dungeonqueue.backend.provisioner import InstanceProvisioner
from dungeonqueue.backend.roles import REQUIRED_ROLES, Role, normalize_role
from dungeonqueue.backend.store import QueueStore

logger = logging.getLogger(__name__)


class GroupDispatcher(Protocol):
    def submit(self, handler: Callable[[Group], Any], group: Group) -> None:
        """Run handler(group) without blocking the matchmaking pass on its outcome."""


class InlineDispatcher:
    """Runs provisioning on the caller's thread."""

    def submit(self, handler: Callable[[Group], Any], group: Group) -> None:
        handler(group)


class ThreadPoolDispatcher:
    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="provision")

    def submit(self, handler: Callable[[Group], Any], group: Group) -> None:
        self._executor.submit(handler, group)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


@dataclass(frozen=True)
class QueueStatus:
    in_queue: bool
    entry: QueueEntry | None = None
    role_counts: dict[str, int] = field(default_factory=dict)
    estimated_wait_seconds: int | None = None


def estimate_wait_seconds(role_counts: dict[str, int], role: Role) -> int:
    """Rough wait estimate shown to queued participants."""
    if role is Role.TANK:
        return 0
    if role is Role.HEALER:
        return 30 if role_counts.get(Role.TANK.value, 0) > 0 else 60
    if role_counts.get(Role.DPS.value, 0) >= REQUIRED_ROLES[Role.DPS]:
        return 120
    if role_counts.get(Role.TANK.value, 0) > 0 and role_counts.get(Role.HEALER.value, 0) > 0:
        return 30
    return 90


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QueueService:
    """Entry point for joins, leaves and matchmaking passes.

    Every pass for a content type, and every leave touching that content
    type, runs under the content type's lock. On top of that a group is only
    handed to provisioning when this pass removed all five of its entries,
    which keeps double matches out even when several processes share one
    durable store.
    """

    def __init__(
        self,
        queue_store: QueueStore,
        party_store: PartyStore,
        provisioner: InstanceProvisioner,
        notifier: BroadcastNotifier | None = None,
        dispatcher: GroupDispatcher | None = None,
        queue_ttl_seconds: int = 1800,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._queue = queue_store
        self._parties = party_store
        self._provisioner = provisioner
        self._notifier = notifier
        self._dispatcher = dispatcher if dispatcher is not None else InlineDispatcher()
        self._queue_ttl_seconds = queue_ttl_seconds
        self._clock = clock
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, content_type: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(content_type)
            if lock is None:
                lock = self._locks[content_type] = threading.RLock()
            return lock

    def join(
        self,
        participant_id: str,
        character_id: str,
        raw_role: str,
        power_score: int,
        content_type: str,
        party_id: str | None = None,
        difficulty: str | None = None,
    ) -> JoinResult:
        now = self._clock()
        existing = self._queue.get_by_participant(participant_id)
        if existing is not None and existing.is_expired(now):
            self._queue.remove_by_id(existing.entry_id)
            existing = None
        if existing is not None:
            return JoinResult(entry=existing, already_queued=True)

        if party_id is not None:
            party = self._require_party(party_id)
            if party.status is not PartyStatus.QUEUED or participant_id not in party.member_ids:
                raise PartyStateError(f"{participant_id} cannot join the queue for party {party_id}")

        entry = create_queue_entry(
            participant_id=participant_id,
            character_id=character_id,
            raw_role=raw_role,
            power_score=power_score,
            content_type=content_type,
            ttl_seconds=self._queue_ttl_seconds,
            party_id=party_id,
            difficulty=difficulty,
            now=now,
        )
        try:
            self._queue.append(entry)
        except DuplicateEntryError:
            existing = self._queue.get_by_participant(participant_id)
            return JoinResult(entry=existing or entry, already_queued=True)

        logger.info("Participant %s queued for %s as %s", participant_id, content_type, entry.normalized_role.value)
        self._notify_queued(entry)
        return JoinResult(entry=entry, already_queued=False, groups_formed=self._pass_after_join(content_type))

    def join_party(self, party_id: str, content_type: str, difficulty_hint: str | None = None) -> list[QueueEntry]:
        party = self._require_party(party_id)
        if party.status is not PartyStatus.FORMING:
            raise PartyStateError(f"party {party_id} is {party.status.value}, only forming parties can queue")
        if not party.members:
            raise PartyStateError(f"party {party_id} has no members")

        role_counts = Counter(normalize_role(member.raw_role) for member in party.members)
        for role, count in role_counts.items():
            if count > REQUIRED_ROLES[role]:
                raise PartyStateError(f"party {party_id} has {count} {role.value} members, at most {REQUIRED_ROLES[role]}")

        # Passes take the same lock, so none sees a partly appended block.
        with self._lock_for(content_type):
            for member in party.members:
                if self._queue.get_by_participant(member.participant_id) is not None:
                    raise PartyStateError(f"{member.participant_id} is already queued")

            now = self._clock()
            entries = [
                create_queue_entry(
                    participant_id=member.participant_id,
                    character_id=member.character_id,
                    raw_role=member.raw_role,
                    power_score=member.power_score,
                    content_type=content_type,
                    ttl_seconds=self._queue_ttl_seconds,
                    party_id=party_id,
                    difficulty=difficulty_hint,
                    now=now,
                )
                for member in party.members
            ]

            self._parties.mark_queued(party_id, content_type, difficulty_hint)
            appended: list[str] = []
            try:
                for entry in entries:
                    appended.append(self._queue.append(entry))
            except (DuplicateEntryError, QueueStoreError):
                logger.warning("Queueing party %s failed, withdrawing %d entries", party_id, len(appended))
                self._queue.remove_many(appended)
                self._parties.cancel_queue(party_id)
                raise

        logger.info("Party %s queued %d members for %s", party_id, len(entries), content_type)
        for entry in entries:
            self._notify_queued(entry)
        self._pass_after_join(content_type)
        return entries

    def leave(self, participant_id: str) -> bool:
        """Withdraw a participant. A party member's leave withdraws the whole party."""
        entry = self._queue.get_by_participant(participant_id)
        if entry is None:
            return False
        if entry.party_id is not None:
            return self._withdraw_party(entry.party_id, entry.content_type) > 0

        with self._lock_for(entry.content_type):
            if not self._queue.remove_by_id(entry.entry_id):
                logger.debug("Entry %s of %s already matched or expired", entry.entry_id, participant_id)
                return False
        self._notify_left(entry)
        return True

    def cancel_party_queue(self, party_id: str, requested_by: str) -> int:
        party = self._require_party(party_id)
        if party.leader_id != requested_by:
            raise PartyStateError("only the party leader can cancel the queue")
        if party.status is not PartyStatus.QUEUED or party.content_type is None:
            raise PartyStateError(f"party {party_id} is not queued")
        return self._withdraw_party(party_id, party.content_type)

    def _withdraw_party(self, party_id: str, content_type: str) -> int:
        with self._lock_for(content_type):
            entries = self._queue.list_by_party(party_id)
            results = self._queue.remove_many([entry.entry_id for entry in entries])
            removed = [entry for entry in entries if results.get(entry.entry_id)]
            if entries and not removed:
                # A pass claimed the block first.
                return 0
            self._release_party(party_id)
        for entry in removed:
            self._notify_left(entry)
        logger.info("Party %s left the %s queue", party_id, content_type)
        return len(removed)

    def expire_entries(self, now: datetime | None = None) -> int:
        """Purge expired entries and return queued parties left without entries to forming."""
        purged = self._queue.purge_expired(now if now is not None else self._clock())
        if not purged:
            return 0
        logger.info("Purged %d expired queue entries", len(purged))

        party_content = {entry.party_id: entry.content_type for entry in purged if entry.party_id is not None}
        for party_id, content_type in party_content.items():
            with self._lock_for(content_type):
                if not self._queue.list_by_party(party_id):
                    self._release_party(party_id)
        for entry in purged:
            self._notify_left(entry)
        return len(purged)

    def _release_party(self, party_id: str) -> None:
        party = self._parties.get_party(party_id)
        if party is None or party.status is not PartyStatus.QUEUED:
            return
        self._parties.cancel_queue(party_id)

    def run_pass(self, content_type: str) -> int:
        """Match one content type's queue and return the number of groups committed.

        Raises QueueStoreError when the store cannot be read or written.
        """
        with self._lock_for(content_type):
            snapshot = self._queue.list_all(content_type)
            plan = plan_pass(snapshot, self._clock())
            formed = sum(1 for group in plan.groups if self._commit_group(group))
        if formed:
            logger.info("Formed %d group(s) for %s", formed, content_type)
        return formed

    def run_all_passes(self) -> int:
        content_types = list(dict.fromkeys(entry.content_type for entry in self._queue.list_all()))
        return sum(self.run_pass(content_type) for content_type in content_types)

    def queue_status(self, participant_id: str) -> QueueStatus:
        entry = self._queue.get_by_participant(participant_id)
        if entry is None:
            return QueueStatus(in_queue=False)
        now = self._clock()
        counts = Counter(
            queued.normalized_role.value
            for queued in self._queue.list_all(entry.content_type)
            if not queued.is_expired(now)
        )
        role_counts = {role.value: counts.get(role.value, 0) for role in Role}
        return QueueStatus(
            in_queue=True,
            entry=entry,
            role_counts=role_counts,
            estimated_wait_seconds=estimate_wait_seconds(role_counts, entry.normalized_role),
        )

    def _commit_group(self, group: Group) -> bool:
        results = self._queue.remove_many(group.entry_ids)
        missing = [entry_id for entry_id, removed in results.items() if not removed]
        if missing:
            logger.debug("Entries %s already absent, dropping group", ", ".join(missing))
            self._restore([entry for entry in group.entries if results.get(entry.entry_id)])
            return False

        if group.party_id is not None:
            try:
                self._parties.mark_in_instance(group.party_id)
            except (KeyError, PartyStateError):
                logger.warning("Could not move party %s to in_instance", group.party_id, exc_info=True)

        logger.info(
            "Group formed for %s: tank %s, healer %s, dps %s",
            group.content_type,
            group.tank.participant_id,
            group.healer.participant_id,
            ", ".join(entry.participant_id for entry in group.dps),
        )
        notify_safely(
            self._notifier,
            queue_channel(group.content_type),
            {
                "type": GROUP_FORMED,
                "partyId": group.party_id,
                "participantIds": [entry.participant_id for entry in group.entries],
            },
        )
        try:
            self._dispatcher.submit(self._provisioner.provision, group)
        except RuntimeError:
            logger.exception("Could not dispatch provisioning for group %s", ", ".join(group.entry_ids))
        return True

    def _restore(self, entries: list[QueueEntry]) -> None:
        for entry in entries:
            try:
                self._queue.append(entry)
            except DuplicateEntryError:
                logger.debug("Participant %s re-queued meanwhile, keeping the newer entry", entry.participant_id)

    def _pass_after_join(self, content_type: str) -> int:
        try:
            return self.run_pass(content_type)
        except QueueStoreError:
            logger.exception("Matchmaking pass for %s aborted", content_type)
            return 0

    def _require_party(self, party_id: str) -> Party:
        party = self._parties.get_party(party_id)
        if party is None:
            raise KeyError(party_id)
        return party

    def _notify_queued(self, entry: QueueEntry) -> None:
        notify_safely(
            self._notifier,
            queue_channel(entry.content_type),
            {
                "type": PARTICIPANT_QUEUED,
                "participantId": entry.participant_id,
                "role": entry.normalized_role.value,
                "partyId": entry.party_id,
            },
        )

    def _notify_left(self, entry: QueueEntry) -> None:
        notify_safely(
            self._notifier,
            queue_channel(entry.content_type),
            {
                "type": PARTICIPANT_LEFT_QUEUE,
                "participantId": entry.participant_id,
                "partyId": entry.party_id,
            },
        )
