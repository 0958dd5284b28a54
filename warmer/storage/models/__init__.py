from .queue_model import WarmupQueueEntry

__all__ = [
    "WarmupQueueEntry",
]
