"""Content catalog contract and the built-in dungeon definitions."""

from __future__ import annotations

from typing import Protocol

from dungeonqueue.backend.models import ContentDefinition


# Kinds of content that host a matched group.
GROUP_KINDS = ("group", "challenge")


class ContentCatalog(Protocol):
    def find_content(self, content_type: str, difficulty: str, group_size: int = 5) -> ContentDefinition | None:
        """Return a definition matching content type, difficulty and group size."""

    def get_default_content(self, content_type: str) -> ContentDefinition | None:
        """Return the fallback definition for a content type."""


def _stage(stage_id: str, name: str, enemies: list[dict], is_boss: bool = False) -> dict:
    return {"id": stage_id, "name": name, "enemies": enemies, "isBoss": is_boss}


BUILTIN_CONTENT: tuple[ContentDefinition, ...] = (
    ContentDefinition(
        content_id="goblin_cave",
        name="Goblin Cave",
        content_type="dungeon",
        kind="solo",
        difficulty="normal",
        min_players=1,
        max_players=1,
        min_level=10,
        stages=(
            _stage("entrance", "Cave Entrance", [{"type": "Goblin", "count": 3, "level": 10}]),
            _stage("main_chamber", "Main Chamber", [{"type": "Goblin", "count": 5, "level": 12}]),
            _stage(
                "goblin_chief",
                "Goblin Chief's Lair",
                [{"type": "Goblin Chief", "count": 1, "level": 15, "isBoss": True}],
                is_boss=True,
            ),
        ),
    ),
    ContentDefinition(
        content_id="ancient_catacombs",
        name="Ancient Catacombs",
        content_type="dungeon",
        kind="group",
        difficulty="normal",
        min_players=3,
        max_players=5,
        min_level=15,
        stages=(
            _stage("entrance_hall", "Entrance Hall", [{"type": "Skeleton", "count": 4, "level": 15}]),
            _stage(
                "corridor",
                "Dark Corridor",
                [
                    {"type": "Skeleton", "count": 3, "level": 16},
                    {"type": "Skeleton Mage", "count": 2, "level": 16},
                ],
            ),
            _stage(
                "tomb_chamber",
                "Tomb Chamber",
                [{"type": "Skeleton Warrior", "count": 1, "level": 18, "isBoss": True, "isMiniBoss": True}],
            ),
            _stage(
                "final_chamber",
                "Final Chamber",
                [{"type": "Lich", "count": 1, "level": 20, "isBoss": True}],
                is_boss=True,
            ),
        ),
    ),
    ContentDefinition(
        content_id="demon_ruins",
        name="Demon Ruins",
        content_type="dungeon",
        kind="challenge",
        difficulty="heroic",
        min_players=4,
        max_players=6,
        min_level=20,
        stages=(
            _stage("outer_ruins", "Outer Ruins", [{"type": "Imp", "count": 6, "level": 20}]),
            _stage("inner_chamber", "Inner Chamber", [{"type": "Demon", "count": 4, "level": 22}]),
            _stage(
                "demon_lord_chamber",
                "Demon Lord's Chamber",
                [{"type": "Demon Lord", "count": 1, "level": 25, "isBoss": True}],
                is_boss=True,
            ),
        ),
    ),
)

DEFAULT_CONTENT_IDS = {"dungeon": "ancient_catacombs"}


class StaticContentCatalog:
    def __init__(
        self,
        definitions: tuple[ContentDefinition, ...] = BUILTIN_CONTENT,
        defaults: dict[str, str] | None = None,
    ) -> None:
        self._definitions = {definition.content_id: definition for definition in definitions}
        self._defaults = dict(DEFAULT_CONTENT_IDS if defaults is None else defaults)

    def get_content(self, content_id: str) -> ContentDefinition | None:
        return self._definitions.get(content_id)

    def list_content(self, content_type: str | None = None) -> list[ContentDefinition]:
        return [
            definition
            for definition in self._definitions.values()
            if content_type is None or definition.content_type == content_type
        ]

    def find_content(self, content_type: str, difficulty: str, group_size: int = 5) -> ContentDefinition | None:
        for definition in self.list_content(content_type):
            if (
                definition.kind in GROUP_KINDS
                and definition.difficulty == difficulty
                and definition.fits_group_size(group_size)
            ):
                return definition
        return None

    def get_default_content(self, content_type: str) -> ContentDefinition | None:
        content_id = self._defaults.get(content_type)
        if content_id is not None and content_id in self._definitions:
            return self._definitions[content_id]
        for definition in self.list_content(content_type):
            if definition.kind in GROUP_KINDS:
                return definition
        return None
