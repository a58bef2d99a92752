"""
Event Dispatcher

DESIGN DECISION: Events go through an explicit in-process channel, not a
framework broadcast. Services call `publish` themselves, right after
their write returns, which makes "after commit" a visible line of code.

Delivery is fire-and-forget on a small thread pool:
- The publisher never waits for listeners
- A failing listener is logged (and audited) and never reaches the
  publisher, so it cannot undo the write that triggered it
- Listeners run independently; one failing doesn't stop the others

With max_workers=0 delivery happens inline on the publishing thread,
with the same error isolation. Handy for scripts and tests.
"""

import threading
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Optional

import structlog

from smart_input.audit.logger import AuditLogger
from smart_input.events.events import DomainEvent
from smart_input.models.audit import AuditEventBuilder


logger = structlog.get_logger(__name__)

Listener = Callable[[DomainEvent], None]


def _listener_name(listener: Listener) -> str:
    return getattr(listener, "__qualname__", None) or type(listener).__name__


class EventDispatcher:
    """
    Publishes domain events to subscribed listeners.

    Usage:
        dispatcher = EventDispatcher(max_workers=2)
        dispatcher.subscribe(TransactionCreated, on_transaction_created)
        dispatcher.publish(TransactionCreated(transaction=saved))
    """

    def __init__(
        self,
        max_workers: int = 2,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._listeners: dict[type, list[Listener]] = defaultdict(list)
        self._audit = audit_logger
        self._lock = threading.Lock()
        self._pending: set[Future] = set()
        self._closed = False
        self._executor: Optional[ThreadPoolExecutor] = None
        if max_workers > 0:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers,
                thread_name_prefix="smart-input-events",
            )

    @property
    def is_inline(self) -> bool:
        return self._executor is None

    def subscribe(self, event_type: type, listener: Listener) -> None:
        """Register a listener for an event type (and its subclasses)."""
        with self._lock:
            self._listeners[event_type].append(listener)

    def unsubscribe(self, event_type: type, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners.get(event_type, []):
                self._listeners[event_type].remove(listener)

    def listeners_for(self, event: DomainEvent) -> list[Listener]:
        with self._lock:
            found = []
            for event_type in type(event).__mro__:
                found.extend(self._listeners.get(event_type, []))
            return found

    def publish(self, event: DomainEvent) -> None:
        """
        Hand an event to every listener and return immediately.

        Call this only once the write the event describes has committed.
        """
        listeners = self.listeners_for(event)

        if self._executor is None:
            with self._lock:
                if self._closed:
                    raise RuntimeError("Dispatcher is closed")
            logger.debug("event_published", event_name=event.name, listeners=len(listeners))
            for listener in listeners:
                self._deliver(listener, event)
            return

        # closed check and submit must share the lock with close()
        with self._lock:
            if self._closed:
                raise RuntimeError("Dispatcher is closed")
            futures = [
                self._executor.submit(self._deliver, listener, event)
                for listener in listeners
            ]
            self._pending.update(futures)

        logger.debug("event_published", event_name=event.name, listeners=len(listeners))
        for future in futures:
            future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, listener: Listener, event: DomainEvent) -> None:
        try:
            listener(event)
        except Exception as e:
            # Listener failures are the listener's problem, never the publisher's
            logger.exception(
                "listener_failed",
                event_name=event.name,
                event_id=str(event.event_id),
                listener=_listener_name(listener),
            )
            if self._audit:
                self._audit.log(
                    AuditEventBuilder.listener_failed(
                        event_name=event.name,
                        listener=_listener_name(listener),
                        error_message=str(e),
                    )
                )

    def flush(self, timeout: Optional[float] = None) -> None:
        """
        Wait until every queued delivery has finished.

        Loops because listeners may publish follow-up events.
        """
        while True:
            with self._lock:
                pending = [future for future in self._pending if not future.done()]
            if not pending:
                return
            _, not_done = wait(pending, timeout=timeout)
            if not_done:
                raise TimeoutError(f"{len(not_done)} event deliveries still running")

    def close(self) -> None:
        """Drain pending deliveries and stop the worker threads."""
        with self._lock:
            if self._closed:
                return
        self.flush()
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._executor is not None:
            self._executor.shutdown(wait=True)
