"""
backend/slotlock/services/events.py

Job queue for post-booking side effects.

Booking paths push jobs after commit; the notification worker pops them.
Two backends share one interface:
- RedisJobQueue: Redis list `jobs:appointments` (shared across processes)
- MemoryJobQueue: in-process deque (single process, tests)
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque

logger = logging.getLogger(__name__)

JOBS_QUEUE = "jobs:appointments"


class JobQueue(ABC):
    @abstractmethod
    def push(self, job: dict) -> None:
        ...

    @abstractmethod
    def pop(self) -> dict | None:
        """Oldest job, or None when the queue is empty."""

    @abstractmethod
    def size(self) -> int:
        ...


class RedisJobQueue(JobQueue):
    def __init__(self, redis, name: str = JOBS_QUEUE):
        self.redis = redis
        self.name = name

    def push(self, job: dict) -> None:
        self.redis.rpush(self.name, json.dumps(job))

    def pop(self) -> dict | None:
        # Malformed entries are dropped so they never hide the jobs behind them
        while True:
            raw = self.redis.lpop(self.name)
            if raw is None:
                return None
            try:
                return json.loads(raw)
            except (TypeError, ValueError):
                logger.error(f"Dropping malformed job from {self.name}: {raw!r}")

    def size(self) -> int:
        return int(self.redis.llen(self.name))


class MemoryJobQueue(JobQueue):
    def __init__(self):
        self._items: deque[str] = deque()
        self._lock = threading.Lock()

    def push(self, job: dict) -> None:
        # Stored serialized so both backends see the same JSON round-trip
        with self._lock:
            self._items.append(json.dumps(job))

    def pop(self) -> dict | None:
        with self._lock:
            if not self._items:
                return None
            raw = self._items.popleft()
        return json.loads(raw)

    def size(self) -> int:
        with self._lock:
            return len(self._items)


def enqueue_job(queue: JobQueue, job_type: str, payload: dict, attempt: int = 1) -> bool:
    """
    Push a job onto the queue.

    Never raises: the booking it follows is already committed.
    Returns True if the job was queued.
    """
    job = {
        "type": job_type,
        **payload,
        "attempt": attempt,
        "ts": int(time.time()),
    }
    try:
        queue.push(job)
        logger.info(f"Job queued: {job_type} (attempt {attempt})")
        return True
    except Exception as e:
        logger.error(f"Failed to queue job {job_type}: {e}")
        return False
