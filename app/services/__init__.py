"""Business logic services."""
from app.services.event_bus import EventBus
from app.services.gateway import ChainGateway, GatewayRegistry
from app.services.intake import TransactionService
from app.services.notifier import ConnectionManager, NotificationDispatcher
from app.services.queue import SubmissionQueue, QueueEntry
from app.services.record_store import CheckpointStore, RecordStore

__all__ = [
    "EventBus",
    "ChainGateway",
    "GatewayRegistry",
    "TransactionService",
    "ConnectionManager",
    "NotificationDispatcher",
    "SubmissionQueue",
    "QueueEntry",
    "CheckpointStore",
    "RecordStore",
]
