"""Assemble stores, provisioner and queue service from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from uvicorn.importer import import_from_string

from dungeonqueue.backend.catalog import ContentCatalog, StaticContentCatalog
from dungeonqueue.backend.config import BackendSettings
from dungeonqueue.backend.notifier import BroadcastNotifier
from dungeonqueue.backend.parties import PartyStore, create_party_store
from dungeonqueue.backend.profiles import InMemoryProfileStore, ProfileStore
from dungeonqueue.backend.provisioner import InstanceProvisioner
from dungeonqueue.backend.service import GroupDispatcher, QueueService, ThreadPoolDispatcher
from dungeonqueue.backend.store import InstanceStore, QueueStore, create_instance_store, create_queue_store
from dungeonqueue.backend.sweeper import QueueSweeper

logger = logging.getLogger(__name__)


@dataclass
class Backend:
    queue_store: QueueStore
    instance_store: InstanceStore
    party_store: PartyStore
    profiles: ProfileStore
    catalog: ContentCatalog
    dispatcher: GroupDispatcher
    service: QueueService
    sweeper: QueueSweeper | None = None

    def shutdown(self) -> None:
        if self.sweeper is not None:
            self.sweeper.stop()
        shutdown = getattr(self.dispatcher, "shutdown", None)
        if shutdown is not None:
            shutdown()


def load_profile_store(settings: BackendSettings) -> ProfileStore:
    """Build the profile store named by settings ("module:callable").

    Without a configured factory every character is unknown and instances
    get placeholder participants.
    """
    if not settings.profile_store_factory:
        logger.warning("No profile store configured, instances will use placeholder characters")
        return InMemoryProfileStore()
    factory = import_from_string(settings.profile_store_factory)
    return factory(settings)


def build_backend(
    settings: BackendSettings,
    notifier: BroadcastNotifier | None = None,
    profiles: ProfileStore | None = None,
    catalog: ContentCatalog | None = None,
    dispatcher: GroupDispatcher | None = None,
) -> Backend:
    queue_store = create_queue_store(settings.database_url, settings.io_timeout_seconds)
    instance_store = create_instance_store(settings.database_url, settings.io_timeout_seconds)
    party_store = create_party_store(settings.database_url, settings.io_timeout_seconds)
    profile_store = profiles if profiles is not None else load_profile_store(settings)
    content_catalog = catalog if catalog is not None else StaticContentCatalog()
    group_dispatcher = dispatcher if dispatcher is not None else ThreadPoolDispatcher(settings.provision_workers)

    provisioner = InstanceProvisioner(
        catalog=content_catalog,
        profiles=profile_store,
        instances=instance_store,
        notifier=notifier,
    )
    service = QueueService(
        queue_store=queue_store,
        party_store=party_store,
        provisioner=provisioner,
        notifier=notifier,
        dispatcher=group_dispatcher,
        queue_ttl_seconds=settings.queue_ttl_seconds,
    )
    sweeper = None
    if settings.sweep_interval_seconds > 0:
        sweeper = QueueSweeper(service, settings.sweep_interval_seconds)

    return Backend(
        queue_store=queue_store,
        instance_store=instance_store,
        party_store=party_store,
        profiles=profile_store,
        catalog=content_catalog,
        dispatcher=group_dispatcher,
        service=service,
        sweeper=sweeper,
    )
