"""
CommitFanout -- cache invalidation and event publication after commit.

Responsibility:
    Turns a committed ChangeEvent into cache invalidations and one published
    event, de-duplicated by event_id.

Architecture position:
    Kernel > Services.  Invoked only from after-commit callbacks registered
    with the TransactionOrchestrator; never inside a transaction.  Talks to
    the outside world only through the CacheAdapter and EventSink protocols.

Invariants enforced:
    - A given event_id is published at most once per process (bounded LRU
      memory of delivered ids).
    - Failures never propagate: the business operation has already
      committed.  They are logged at ERROR and listed in the FanoutReport.
    - An event whose publish failed is not remembered, so a redelivery
      tries again.

Failure modes:
    (none raised; see FanoutReport.failures)
"""

import fnmatch
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Protocol

from ledger_kernel.domain.change_events import ChangeEvent
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.fanout")

DEFAULT_DEDUPE_WINDOW = 1024


class CacheAdapter(Protocol):
    def invalidate(self, pattern: str) -> int:
        """Drop every key matching the glob ``pattern``; return the count."""
        ...


class EventSink(Protocol):
    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


class InMemoryCache:
    """Thread-safe dict cache with glob-pattern invalidation."""

    def __init__(self):
        self._lock = threading.Lock()
        self._data: dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)

    def invalidate(self, pattern: str) -> int:
        with self._lock:
            matched = [key for key in self._data if fnmatch.fnmatchcase(key, pattern)]
            for key in matched:
                del self._data[key]
            return len(matched)


class InMemoryEventSink:
    """Collects published events; used by tests and single-process setups."""

    def __init__(self):
        self._lock = threading.Lock()
        self.published: list[tuple[str, dict[str, Any]]] = []

    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.published.append((event_type, dict(payload)))


class LoggingEventSink:
    """Publishes events as structured INFO log lines."""

    def __init__(self, logger_name: str = "events"):
        self._logger = get_logger(logger_name)

    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        self._logger.info(
            "change_event_published",
            extra={"event_type": event_type, "payload": payload},
        )


@dataclass(frozen=True)
class FanoutReport:
    event_id: str
    published: bool
    duplicate: bool = False
    invalidated: tuple[str, ...] = ()
    failures: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures


class CommitFanout:
    """
    Delivers committed change events to the cache and the event sink.

    Contract:
        ``on_committed(event)`` must only be called after the transaction
        that produced ``event`` has committed.

    Guarantees:
        - Never raises.
        - Re-delivering an already published event is a no-op reported as
          ``duplicate``.

    Non-goals:
        - Does NOT persist an outbox; delivery is best-effort and
          at-most-once per process.
    """

    def __init__(
        self,
        cache: CacheAdapter | None = None,
        sink: EventSink | None = None,
        dedupe_window: int = DEFAULT_DEDUPE_WINDOW,
    ):
        if dedupe_window <= 0:
            raise ValueError(f"dedupe_window must be positive: {dedupe_window}")
        self.cache = cache
        self.sink = sink
        self._dedupe_window = dedupe_window
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def _already_published(self, event_id: str) -> bool:
        with self._lock:
            if event_id in self._seen:
                self._seen.move_to_end(event_id)
                return True
            return False

    def _remember(self, event_id: str) -> None:
        with self._lock:
            self._seen[event_id] = None
            self._seen.move_to_end(event_id)
            while len(self._seen) > self._dedupe_window:
                self._seen.popitem(last=False)

    def on_committed(self, event: ChangeEvent) -> FanoutReport:
        if self._already_published(event.event_id):
            logger.debug("fanout_duplicate_skipped", extra={"event_id": event.event_id})
            return FanoutReport(event_id=event.event_id, published=False, duplicate=True)

        failures: list[str] = []
        invalidated: list[str] = []

        if self.cache is not None:
            for pattern in event.cache_keys:
                try:
                    self.cache.invalidate(pattern)
                    invalidated.append(pattern)
                except Exception as exc:
                    logger.error(
                        "cache_invalidation_failed",
                        extra={
                            "event_id": event.event_id,
                            "pattern": pattern,
                            "error": repr(exc),
                        },
                    )
                    failures.append(f"cache:{pattern}: {exc!r}")

        published = False
        if self.sink is not None:
            try:
                self.sink.publish(event.event_type, event.to_payload())
                published = True
            except Exception as exc:
                logger.error(
                    "event_publish_failed",
                    extra={
                        "event_id": event.event_id,
                        "event_type": event.event_type,
                        "error": repr(exc),
                    },
                )
                failures.append(f"sink:{event.event_type}: {exc!r}")

        if published or self.sink is None:
            self._remember(event.event_id)

        return FanoutReport(
            event_id=event.event_id,
            published=published,
            invalidated=tuple(invalidated),
            failures=tuple(failures),
        )
