"""GenCoach storage tiers.

Usage::

    from gencoach.storage import StorageSync

    storage = StorageSync.from_config(config)
    storage.bind_owner("user-123")
    outcome = await storage.save(project)
    project = await storage.load(project.id)
"""

from .local import Keyspace, LocalStore
from .remote import RemoteStore, RemoteStoreError, RestRemoteStore
from .results import Err, Ok, TierResult, Unavailable, resolve_listing, resolve_record
from .sync import SaveOutcome, StorageCapabilities, StorageSync

__all__ = [
    # Facade
    "StorageSync",
    "StorageCapabilities",
    "SaveOutcome",
    # Tiers
    "LocalStore",
    "Keyspace",
    "RemoteStore",
    "RestRemoteStore",
    "RemoteStoreError",
    # Results
    "Ok",
    "Unavailable",
    "Err",
    "TierResult",
    "resolve_record",
    "resolve_listing",
]
