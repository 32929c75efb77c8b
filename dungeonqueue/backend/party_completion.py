"""Complete queued party blocks with unaffiliated individuals."""

from __future__ import annotations

import logging
from collections import deque

from dungeonqueue.backend.models import Group, QueueEntry, bucket_by_role
from dungeonqueue.backend.roles import REQUIRED_ROLES, Role

logger = logging.getLogger(__name__)


def needed_roles(party_entries: list[QueueEntry]) -> dict[Role, int]:
    """Return how many individuals of each role the block lacks."""
    buckets = bucket_by_role(party_entries)
    return {role: max(0, REQUIRED_ROLES[role] - len(buckets[role])) for role in Role}


def _block_is_matchable(party_id: str, block: list[QueueEntry]) -> bool:
    participants = {entry.participant_id for entry in block}
    if len(participants) != len(block):
        logger.warning("Party %s has duplicate participants in queue, leaving it queued", party_id)
        return False
    buckets = bucket_by_role(block)
    surplus = [role.value for role in Role if len(buckets[role]) > REQUIRED_ROLES[role]]
    if surplus:
        logger.warning("Party %s exceeds group composition for %s, leaving it queued", party_id, ", ".join(surplus))
        return False
    return True


def complete_parties(party_entries: list[QueueEntry], individuals: list[QueueEntry]) -> list[Group]:
    """Build one group per party block that the individual pool can complete.

    Blocks are tried in order of their earliest queued entry. Each block takes
    exactly the missing number of individuals per role from the head of that
    role's bucket, so a missing healer is never filled by a dps. Individuals
    consumed by one block are unavailable to the next. Blocks that cannot be
    completed are left out of the result and stay queued.
    """
    blocks: dict[str, list[QueueEntry]] = {}
    for entry in party_entries:
        if entry.party_id is None:
            continue
        blocks.setdefault(entry.party_id, []).append(entry)

    pool = bucket_by_role([entry for entry in individuals if entry.party_id is None])
    groups: list[Group] = []

    for party_id, block in blocks.items():
        if not _block_is_matchable(party_id, block):
            continue

        needed = needed_roles(block)
        if any(len(pool[role]) < count for role, count in needed.items()):
            logger.debug(
                "Party %s waiting for individuals: %s",
                party_id,
                ", ".join(f"{count} {role.value}" for role, count in needed.items() if count),
            )
            continue

        members = bucket_by_role(block)
        for role, count in needed.items():
            members[role].extend(pool[role].popleft() for _ in range(count))
        groups.append(_group_from_buckets(members, party_id))

    return groups


def _group_from_buckets(members: dict[Role, deque[QueueEntry]], party_id: str) -> Group:
    dps = members[Role.DPS]
    return Group(
        tank=members[Role.TANK][0],
        healer=members[Role.HEALER][0],
        dps=(dps[0], dps[1], dps[2]),
        party_id=party_id,
    )
