"""chronovec: version control for vector point stores.

Commits, rollback, crash recovery and garbage collection over an external
vector store, with a durable SQL log as the source of truth.
"""

__version__ = "0.1.0"

from chronovec._vault import Vault
from chronovec._vault_async import VaultAsync
from chronovec.config import EngineConfig, RetentionPolicy, RetryPolicy
from chronovec.events import EventBus, EventType, VaultEvent
from chronovec.exceptions import (
    CapabilityNotSupportedError,
    ChronovecError,
    ConflictError,
    ConsistencyError,
    DurableLogError,
    NotFoundError,
    PartialFailureError,
    StoreUnavailableError,
)
from chronovec.log import DurableLog
from chronovec.store import (
    ActivityUpdate,
    FilterExpression,
    LocalPointStore,
    PointRecord,
    PointStore,
    StoreResult,
    SupportsArchive,
    and_,
    eq,
    exists,
    gt,
    gte,
    in_,
    is_active,
    lt,
    lte,
    ne,
    not_in,
    or_,
)
from chronovec.types import (
    CommitInfo,
    GCReport,
    GroupStatus,
    NewPoint,
    PendingOpInfo,
    RepairOutcome,
    RepairReport,
    RollbackInfo,
)

__all__ = [
    "ActivityUpdate",
    "CapabilityNotSupportedError",
    "ChronovecError",
    "CommitInfo",
    "ConflictError",
    "ConsistencyError",
    "DurableLog",
    "DurableLogError",
    "EngineConfig",
    "EventBus",
    "EventType",
    "FilterExpression",
    "GCReport",
    "GroupStatus",
    "LocalPointStore",
    "NewPoint",
    "NotFoundError",
    "PartialFailureError",
    "PendingOpInfo",
    "PointRecord",
    "PointStore",
    "RepairOutcome",
    "RepairReport",
    "RetentionPolicy",
    "RetryPolicy",
    "RollbackInfo",
    "StoreResult",
    "StoreUnavailableError",
    "SupportsArchive",
    "Vault",
    "VaultAsync",
    "VaultEvent",
    "__version__",
    "and_",
    "eq",
    "exists",
    "gt",
    "gte",
    "in_",
    "is_active",
    "lt",
    "lte",
    "ne",
    "not_in",
    "or_",
]
