"""
grants_services.event_publisher -- Fire-and-forget domain event delivery.

Responsibility:
    Hands committed proposal events to a sink (message bus client,
    notification queue, audit log) on a background worker so the caller
    never waits on delivery.

Architecture position:
    Services layer.  May import from grants_kernel/.

Invariants enforced:
    - ``publish`` returns immediately; it never raises because the sink
      failed or the publisher was shut down.  Both are logged as
      ``event_publish_failed``.
    - Events are only published after the aggregate that produced them
      was saved (the service calls ``publish``, never the aggregate).
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Protocol, runtime_checkable

from grants_kernel.domain.events import DomainEvent
from grants_kernel.logging_config import get_logger

logger = get_logger("services.event_publisher")

EventSink = Callable[[DomainEvent], None]


@runtime_checkable
class EventPublisher(Protocol):
    """Best-effort delivery port."""

    def publish(self, event: DomainEvent) -> None:
        ...


class LoggingEventSink:
    """Sink that writes each event as a structured log record."""

    def __init__(self, logger_name: str = "events") -> None:
        self._logger = get_logger(logger_name)

    def __call__(self, event: DomainEvent) -> None:
        payload = event.to_dict()
        self._logger.info(
            "domain_event",
            extra={
                "event_type": payload.pop("event_type"),
                "event_id": payload.pop("event_id"),
                "payload": payload,
            },
        )


class FireAndForgetPublisher:
    """Publishes events on a thread pool without waiting for the result."""

    def __init__(self, sink: EventSink, max_workers: int = 4) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._sink = sink
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="grants-events"
        )

    def publish(self, event: DomainEvent) -> None:
        try:
            future = self._executor.submit(self._sink, event)
        except RuntimeError as exc:
            # executor already shut down; the aggregate is saved regardless
            self._log_failure(event, exc)
            return
        future.add_done_callback(lambda f: self._on_done(f, event))

    @classmethod
    def _on_done(cls, future: Future, event: DomainEvent) -> None:
        exc = future.exception()
        if exc is not None:
            cls._log_failure(event, exc)

    @staticmethod
    def _log_failure(event: DomainEvent, exc: BaseException) -> None:
        logger.error(
            "event_publish_failed",
            extra={
                "event_type": event.event_type,
                "event_id": str(event.event_id),
                "proposal_id": str(event.aggregate_id),
                "error_type": type(exc).__name__,
            },
            exc_info=(type(exc), exc, exc.__traceback__),
        )

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting events; with ``wait`` drain the ones in flight."""
        self._executor.shutdown(wait=wait)


class NullEventPublisher:
    """Publisher that drops every event (events disabled in config)."""

    def publish(self, event: DomainEvent) -> None:
        return None
