"""Builders for instance documents and participant snapshots."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from dungeonqueue.backend.models import CharacterSnapshot, ContentDefinition, Group, QueueEntry


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def placeholder_character(entry: QueueEntry) -> CharacterSnapshot:
    """Stand-in for a character record that no longer exists."""
    return CharacterSnapshot(
        character_id=entry.character_id,
        participant_id=entry.participant_id,
        name=entry.participant_id,
        raw_role=entry.raw_role,
        is_placeholder=True,
    )


def build_participant_snapshot(entry: QueueEntry, character: CharacterSnapshot) -> dict[str, Any]:
    return {
        "participantId": entry.participant_id,
        "characterId": entry.character_id,
        "name": character.name,
        "rawRole": entry.raw_role,
        "role": entry.normalized_role.value,
        "level": character.level,
        "powerScore": entry.power_score,
        "currentHp": character.current_hp,
        "maxHp": character.max_hp,
        "isAlive": True,
        "deaths": 0,
        "isPlaceholder": character.is_placeholder,
    }


def build_instance_document(
    instance_id: str,
    group: Group,
    content: ContentDefinition,
    participants: list[dict[str, Any]],
) -> dict[str, Any]:
    """Return the initial instance document for a matched group."""
    now = _utc_now_iso()
    return {
        "id": instance_id,
        "contentId": content.content_id,
        "contentName": content.name,
        "contentType": group.content_type,
        "difficulty": content.difficulty,
        "status": "active",
        "partyId": group.party_id,
        "organizerId": group.tank.participant_id,
        "participants": participants,
        "participantIds": [participant["participantId"] for participant in participants],
        "currentStage": 0,
        "maxStages": len(content.stages),
        "stages": [dict(stage) for stage in content.stages],
        "eventLog": [],
        "createdAt": now,
        "updatedAt": now,
    }
