"""
Replication module.

Provides live, retrying, bidirectional replication between the local event
store and a CouchDB-compatible remote named by the user's sync token.
"""

from .manager import ReplicationSessionManager
from .remote import RemoteDocumentStore, redact_locator
from .replicator import ChangeInfo, CycleResult, ReplicationDirection, ReplicationSession
from .retry import RetryConfig
from .signals import Observable, Subscription

__all__ = [
    "ChangeInfo",
    "CycleResult",
    "Observable",
    "RemoteDocumentStore",
    "ReplicationDirection",
    "ReplicationSession",
    "ReplicationSessionManager",
    "RetryConfig",
    "Subscription",
    "redact_locator",
]
