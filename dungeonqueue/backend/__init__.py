"""Backend package for dungeon queue matchmaking."""

from .config import BackendSettings, load_settings
from .matchmaker import plan_pass
from .models import Group, MatchPlan, Party, PartyStatus, QueueEntry
from .provisioner import InstanceProvisioner
from .roles import Role, normalize_role
from .service import QueueService
from .store import InMemoryQueueStore, PostgresQueueStore, QueueStore, create_queue_store

__all__ = [
    "BackendSettings",
    "create_queue_store",
    "Group",
    "InMemoryQueueStore",
    "InstanceProvisioner",
    "load_settings",
    "MatchPlan",
    "normalize_role",
    "Party",
    "PartyStatus",
    "plan_pass",
    "PostgresQueueStore",
    "QueueEntry",
    "QueueService",
    "QueueStore",
    "Role",
]
