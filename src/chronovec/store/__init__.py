"""PointStore adapters: the external vector store as the engine sees it."""

from chronovec.store.filters import (
    FilterExpression,
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
from chronovec.store.local import LocalPointStore
from chronovec.store.protocols import PointStore, SupportsArchive
from chronovec.store.types import (
    PAYLOAD_FIELDS,
    ActivityUpdate,
    PointRecord,
    StoredPoint,
    StoreResult,
)

__all__ = [
    "PAYLOAD_FIELDS",
    "ActivityUpdate",
    "FilterExpression",
    "LocalPointStore",
    "PointRecord",
    "PointStore",
    "StoreResult",
    "StoredPoint",
    "SupportsArchive",
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
