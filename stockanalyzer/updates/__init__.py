"""Update tracking, queueing and execution."""

from .queue import QueueItem, QueueItemState, UpdateQueue
from .service import UpdateResult, UpdateService
from .tracker import UpdateTracker

__all__ = ["QueueItem", "QueueItemState", "UpdateQueue", "UpdateResult", "UpdateService", "UpdateTracker"]
