"""In-process document events (supersession, promotion changes)."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from collections.abc import Callable

    from docweave.models import PromotionLevel

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class DocumentSupersededEvent:
    tenant_key: str
    superseded_path: str
    superseding_path: str
    superseded_id: str
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class DocumentPromotedEvent:
    tenant_key: str
    file_path: str
    document_id: str
    previous_level: PromotionLevel
    new_level: PromotionLevel
    reason: str = ""
    timestamp: datetime = field(default_factory=_now)


DocumentEvent = Union[DocumentSupersededEvent, DocumentPromotedEvent]


class DocumentEventPublisher:
    """Fire-and-forget publisher. Subscriber errors are logged, never raised."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[DocumentEvent], None]] = []

    def subscribe(self, callback: Callable[[DocumentEvent], None]) -> Callable[[], None]:
        """Register *callback*; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish_superseded(self, event: DocumentSupersededEvent) -> None:
        logger.info("Document %s superseded by %s", event.superseded_path, event.superseding_path)
        self._publish(event)

    def publish_promoted(self, event: DocumentPromotedEvent) -> None:
        logger.info(
            "Document %s promotion changed %s -> %s",
            event.file_path,
            event.previous_level.value,
            event.new_level.value,
        )
        self._publish(event)

    def _publish(self, event: DocumentEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed for %s", type(event).__name__)
