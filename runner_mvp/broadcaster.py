"""Per-run fan-out of progress events to independent subscribers."""
from __future__ import annotations

import logging
import queue
import threading
from typing import Dict, Iterable, Iterator, List, Optional

from .events import RunEvent

_CLOSED = object()


class Subscription:
    """A closable stream of events for one subscriber.

    Iterating blocks until the next event arrives and stops once the
    subscription is closed, either by the subscriber or by a terminal event.
    """

    def __init__(self, run_id: str, on_close=None) -> None:
        self.run_id = run_id
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._closed = threading.Event()
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def put(self, event: RunEvent) -> None:
        if not self._closed.is_set():
            self._queue.put(event)

    def get(self, timeout: Optional[float] = None) -> Optional[RunEvent]:
        """Next event, or None when the stream has ended or ``timeout`` elapsed."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            # Keep the sentinel so later readers also see the end of stream.
            self._queue.put(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._queue.put(_CLOSED)
        if self._on_close is not None:
            self._on_close(self)

    def __iter__(self) -> Iterator[RunEvent]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                return
            yield item  # type: ignore[misc]

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ProgressBroadcaster:
    """Registry of subscriptions keyed by run id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Subscription]] = {}
        self.logger = logging.getLogger("runner_mvp.broadcaster")

    def subscribe(self, run_id: str, initial_events: Iterable[RunEvent] = ()) -> Subscription:
        subscription = Subscription(run_id, on_close=self._detach)
        for event in initial_events:
            subscription.put(event)
        with self._lock:
            self._subscribers.setdefault(run_id, []).append(subscription)
        return subscription

    def publish(self, run_id: str, event: RunEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(run_id, ()))
            if event.terminal:
                self._subscribers.pop(run_id, None)
        for subscription in subscribers:
            subscription.put(event)
        if event.terminal:
            for subscription in subscribers:
                subscription.close()
            self.logger.debug("Closed %d subscriptions for run %s", len(subscribers), run_id)

    def subscriber_count(self, run_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(run_id, ()))

    def close_run(self, run_id: str) -> None:
        """Close every subscription of a run without publishing an event."""
        with self._lock:
            subscribers = self._subscribers.pop(run_id, [])
        for subscription in subscribers:
            subscription.close()

    def _detach(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.run_id)
            if not subscribers:
                return
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.run_id, None)
