"""Pure matching decisions for one queue snapshot."""

from __future__ import annotations

import logging
from datetime import datetime

from dungeonqueue.backend.models import Group, MatchPlan, QueueEntry, bucket_by_role
from dungeonqueue.backend.party_completion import complete_parties
from dungeonqueue.backend.roles import REQUIRED_ROLES, Role

logger = logging.getLogger(__name__)


def form_full_groups(individuals: list[QueueEntry]) -> tuple[list[Group], list[QueueEntry]]:
    """Greedily pop 1 tank, 1 healer and 3 dps while every bucket can supply them.

    Returns the groups and the unmatched entries in their original order.
    """
    buckets = bucket_by_role(individuals)
    groups: list[Group] = []
    while all(len(buckets[role]) >= count for role, count in REQUIRED_ROLES.items()):
        dps = buckets[Role.DPS]
        groups.append(
            Group(
                tank=buckets[Role.TANK].popleft(),
                healer=buckets[Role.HEALER].popleft(),
                dps=(dps.popleft(), dps.popleft(), dps.popleft()),
            )
        )

    matched = {entry.entry_id for group in groups for entry in group.entries}
    leftovers = [entry for entry in individuals if entry.entry_id not in matched]
    return groups, leftovers


def plan_pass(snapshot: list[QueueEntry], now: datetime) -> MatchPlan:
    """Decide which groups a snapshot yields without touching any store.

    Expired entries are ignored. Individually-queued entries are matched first,
    then party blocks are completed from the individuals that are left. Each
    content type is matched separately.
    """
    eligible = [entry for entry in snapshot if not entry.is_expired(now)]
    skipped = len(snapshot) - len(eligible)
    if skipped:
        logger.debug("Ignoring %d expired queue entries", skipped)

    by_content: dict[str, list[QueueEntry]] = {}
    for entry in eligible:
        by_content.setdefault(entry.content_type, []).append(entry)

    groups: list[Group] = []
    for content_type, entries in by_content.items():
        individuals = [entry for entry in entries if entry.party_id is None]
        party_entries = [entry for entry in entries if entry.party_id is not None]

        formed, remaining = form_full_groups(individuals)
        if party_entries:
            formed.extend(complete_parties(party_entries, remaining))
        groups.extend(formed)

        if not formed:
            buckets = bucket_by_role(individuals)
            logger.debug(
                "No group for %s: %d tank(s), %d healer(s), %d dps queued",
                content_type,
                len(buckets[Role.TANK]),
                len(buckets[Role.HEALER]),
                len(buckets[Role.DPS]),
            )

    return MatchPlan(groups=groups)
