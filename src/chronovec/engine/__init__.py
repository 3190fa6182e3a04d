"""Engine services: commit, rollback, recovery and garbage collection."""

from chronovec.engine.batches import BatchRunner
from chronovec.engine.commits import CommitManager
from chronovec.engine.gc import GarbageCollector
from chronovec.engine.locking import CasMismatch, OptimisticLock
from chronovec.engine.operations import DriveResult, OperationDriver
from chronovec.engine.recovery import RecoveryScanner
from chronovec.engine.rollback import RollbackEngine

__all__ = [
    "BatchRunner",
    "CasMismatch",
    "CommitManager",
    "DriveResult",
    "GarbageCollector",
    "OperationDriver",
    "OptimisticLock",
    "RecoveryScanner",
    "RollbackEngine",
]
