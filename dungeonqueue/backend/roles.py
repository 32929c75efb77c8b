"""Role normalization for queue entries."""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    TANK = "tank"
    HEALER = "healer"
    DPS = "dps"


# Lowercase label -> role. Labels missing from the table are DPS.
ROLE_ALIASES: dict[str, Role] = {
    "tank": Role.TANK,
    "guardian": Role.TANK,
    "paladin": Role.TANK,
    "warden": Role.TANK,
    "bloodknight": Role.TANK,
    "vanguard": Role.TANK,
    "brewmaster": Role.TANK,
    "healer": Role.HEALER,
    "cleric": Role.HEALER,
    "atoner": Role.HEALER,
    "druid": Role.HEALER,
    "lightbringer": Role.HEALER,
    "shaman": Role.HEALER,
    "mistweaver": Role.HEALER,
    "chronomancer": Role.HEALER,
    "bard": Role.HEALER,
}

# Slots per role in one group.
REQUIRED_ROLES: dict[Role, int] = {
    Role.TANK: 1,
    Role.HEALER: 1,
    Role.DPS: 3,
}

GROUP_SIZE = sum(REQUIRED_ROLES.values())


def normalize_role(raw_role: str | None) -> Role:
    """Map an arbitrary class or role label to tank, healer or dps."""
    if not raw_role:
        return Role.DPS
    return ROLE_ALIASES.get(raw_role.strip().lower(), Role.DPS)
