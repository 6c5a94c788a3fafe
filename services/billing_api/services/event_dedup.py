"""
In-process record of webhook keys that have already been handled.

Stripe delivers events at least once and may retry, so the webhook route
checks keys here before acting. The cache lives in process memory only:
a restart, or a second worker process, starts with an empty set.
"""

import logging
import threading
from collections import OrderedDict

from shared.config import env_int

logger = logging.getLogger("creditsync.dedup")

PROCESSED_EVENT_CAPACITY = env_int("PROCESSED_EVENT_CAPACITY", 1000)
PROCESSED_EVENT_EVICT_COUNT = env_int("PROCESSED_EVENT_EVICT_COUNT", 100)


class ProcessedEventCache:
    """Insertion-ordered set of processed keys with oldest-first eviction."""

    def __init__(self, capacity: int = 1000, evict_count: int = 100):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.evict_count = max(1, evict_count)
        self._keys: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: str) -> bool:
        return self.seen(key)

    def seen(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def add(self, key: str) -> None:
        with self._lock:
            self._add_locked(key)

    def check_and_add(self, key: str) -> bool:
        """Record key; return True if it had already been recorded."""
        with self._lock:
            if key in self._keys:
                return True
            self._add_locked(key)
            return False

    def _add_locked(self, key: str) -> None:
        self._keys[key] = None
        if len(self._keys) > self.capacity:
            for _ in range(min(self.evict_count, len(self._keys))):
                self._keys.popitem(last=False)
            logger.debug("Evicted processed webhook keys", extra={"remaining": len(self._keys)})

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()


processed_events = ProcessedEventCache(
    capacity=PROCESSED_EVENT_CAPACITY,
    evict_count=PROCESSED_EVENT_EVICT_COUNT,
)


def event_key(event_id: str, event_type: str) -> str:
    return f"{event_id}_{event_type}"


def invoice_key(invoice_id: str, customer_id: str) -> str:
    return f"invoice_{invoice_id}_{customer_id}"


def subscription_created_key(subscription_id: str, customer_id: str) -> str:
    return f"subscription_created_{subscription_id}_{customer_id}"


def subscription_updated_key(subscription_id: str, customer_id: str, status: str) -> str:
    return f"subscription_updated_{subscription_id}_{customer_id}_{status}"
