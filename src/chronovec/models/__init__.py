"""SQLModel database models for the chronovec Durable Log."""

from chronovec.models.commits import CommitRecord, CommitRecordBase
from chronovec.models.groups import GroupPointer, GroupPointerBase
from chronovec.models.operations import (
    BatchKind,
    OpStatus,
    OpType,
    PendingBatch,
    PendingBatchBase,
    PendingOperation,
    PendingOperationBase,
)
from chronovec.models.points import PointVersion, PointVersionBase

__all__ = [
    "BatchKind",
    "CommitRecord",
    "CommitRecordBase",
    "GroupPointer",
    "GroupPointerBase",
    "OpStatus",
    "OpType",
    "PendingBatch",
    "PendingBatchBase",
    "PendingOperation",
    "PendingOperationBase",
    "PointVersion",
    "PointVersionBase",
]
