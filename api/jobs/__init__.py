"""Job ledger, executors and the services that drive them."""
from .models import JobKind, JobProgress, JobRecord, JobStatus
from .registry import OperationRegistry
from .store import JobStore
from .runner import JobRunner
from .scheduler import DiscoveryQueueProcessor
from .resumption import ResumptionService
from .cleanup import RetentionService
from .progress import ProgressHub

__all__ = [
    "DiscoveryQueueProcessor",
    "JobKind",
    "JobProgress",
    "JobRecord",
    "JobRunner",
    "JobStatus",
    "JobStore",
    "OperationRegistry",
    "ProgressHub",
    "ResumptionService",
    "RetentionService",
]
