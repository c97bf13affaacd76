"""Long-running lifecycle workers."""
from app.workers.submitter import SubmissionWorker
from app.workers.watcher import ConfirmationWatcher
from app.workers.reorg import ReorgResolver
from app.workers.scheduler import TickScheduler, TickTask

__all__ = [
    "SubmissionWorker",
    "ConfirmationWatcher",
    "ReorgResolver",
    "TickScheduler",
    "TickTask",
]
