"""Turn matched groups into persisted instances."""

from __future__ import annotations

import logging
import uuid

from dungeonqueue.backend.catalog import ContentCatalog
from dungeonqueue.backend.instances import (
    build_instance_document,
    build_participant_snapshot,
    placeholder_character,
)
from dungeonqueue.backend.models import ContentDefinition, Group, ProvisioningError
from dungeonqueue.backend.notifier import (
    INSTANCE_CREATED,
    BroadcastNotifier,
    notify_safely,
    participant_channel,
    queue_channel,
)
from dungeonqueue.backend.profiles import ProfileStore
from dungeonqueue.backend.roles import GROUP_SIZE
from dungeonqueue.backend.store import InstanceStore

logger = logging.getLogger(__name__)

DEFAULT_DIFFICULTY = "normal"


class InstanceProvisioner:
    def __init__(
        self,
        catalog: ContentCatalog,
        profiles: ProfileStore,
        instances: InstanceStore,
        notifier: BroadcastNotifier | None = None,
    ) -> None:
        self._catalog = catalog
        self._profiles = profiles
        self._instances = instances
        self._notifier = notifier

    def preferred_difficulty(self, group: Group) -> str:
        """First difficulty set by the tank, the healer, then the dps in slot order."""
        for entry in group.entries:
            if entry.difficulty:
                return entry.difficulty
        return DEFAULT_DIFFICULTY

    def resolve_content(self, group: Group) -> ContentDefinition:
        difficulty = self.preferred_difficulty(group)
        content = self._catalog.find_content(group.content_type, difficulty, GROUP_SIZE)
        if content is None:
            content = self._catalog.get_default_content(group.content_type)
        if content is None:
            raise ProvisioningError(f"no content available for {group.content_type} ({difficulty})")
        return content

    def provision(self, group: Group) -> str | None:
        """Create the group's instance and return its id, or None when provisioning failed.

        Failures are logged and confined to this group. The group's queue
        entries are not restored.
        """
        try:
            return self._provision(group)
        except Exception:
            logger.exception("Failed to provision instance for group %s", ", ".join(group.entry_ids))
            return None

    def _provision(self, group: Group) -> str:
        content = self.resolve_content(group)

        participants = []
        found_characters = []
        for entry in group.entries:
            character = self._profiles.get_character(entry.character_id)
            if character is None:
                logger.warning(
                    "Character %s of participant %s not found, using placeholder",
                    entry.character_id,
                    entry.participant_id,
                )
                character = placeholder_character(entry)
            else:
                found_characters.append(entry.character_id)
            participants.append(build_participant_snapshot(entry, character))

        instance_id = str(uuid.uuid4())
        document = build_instance_document(instance_id, group, content, participants)
        self._instances.create_instance(document)
        logger.info(
            "Created instance %s of %s for %d participants",
            instance_id,
            content.content_id,
            len(participants),
        )

        for character_id in found_characters:
            if not self._profiles.set_active_instance(character_id, instance_id):
                logger.warning("Character %s vanished before joining instance %s", character_id, instance_id)

        event = {
            "type": INSTANCE_CREATED,
            "instanceId": instance_id,
            "contentId": content.content_id,
            "partyId": group.party_id,
            "participantIds": document["participantIds"],
        }
        for participant_id in document["participantIds"]:
            notify_safely(self._notifier, participant_channel(participant_id), event)
        notify_safely(self._notifier, queue_channel(group.content_type), event)
        return instance_id
