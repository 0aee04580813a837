"""Core data model: documents, chunks, promotion levels, collaborator protocols."""

from __future__ import annotations

import enum
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence


class PromotionLevel(enum.Enum):
    """Ordered visibility tier controlling retrieval prioritization."""

    STANDARD = "standard"
    IMPORTANT = "important"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, PromotionLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, PromotionLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, PromotionLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, PromotionLevel):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: object) -> PromotionLevel | None:
        """Return the level named by *value* (case-insensitive), or None."""
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


_LEVEL_RANK: dict[PromotionLevel, int] = {
    PromotionLevel.STANDARD: 0,
    PromotionLevel.IMPORTANT: 1,
    PromotionLevel.CRITICAL: 2,
}

BASELINE_LEVEL = PromotionLevel.STANDARD


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_id() -> str:
    """Generate an opaque identifier for a document or chunk."""
    return uuid.uuid4().hex


@dataclass
class Document:
    """A document record: one per (tenant_key, file_path)."""

    tenant_key: str
    file_path: str
    id: str = field(default_factory=new_id)
    title: str = ""
    doc_type: str = ""
    promotion_level: PromotionLevel = PromotionLevel.STANDARD
    content: str = ""
    vector: list[float] | None = None
    last_modified: datetime = field(default_factory=_utcnow)


@dataclass
class DocumentChunk:
    """A chunk of a document's body. Replaced wholesale on every re-index."""

    document_id: str
    tenant_key: str
    chunk_index: int
    content: str
    id: str = field(default_factory=new_id)
    header_path: str = ""
    start_line: int = 1
    end_line: int = 1
    promotion_level: PromotionLevel = PromotionLevel.STANDARD
    vector: list[float] | None = None


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------


class DocumentRepository(Protocol):
    """Persistence for document and chunk records."""

    def get_by_tenant_and_path(self, tenant_key: str, file_path: str) -> Document | None: ...

    def get_by_id(self, document_id: str) -> Document | None: ...

    def upsert(self, document: Document) -> Document: ...

    def delete(self, document_id: str) -> bool: ...

    def delete_chunks(self, document_id: str) -> int: ...

    def upsert_chunks(self, chunks: Sequence[DocumentChunk]) -> None: ...

    def get_chunks(self, document_id: str) -> list[DocumentChunk]: ...

    def get_all_for_tenant(self, tenant_key: str) -> list[Document]: ...

    def update_promotion_level(self, document_id: str, level: PromotionLevel) -> bool: ...


class EmbeddingService(Protocol):
    """Turns text into embedding vectors. May fail transiently."""

    def generate_embedding(self, text: str) -> list[float]: ...

    def generate_embeddings(self, texts: Sequence[str]) -> list[list[float]]: ...


class OperationCancelledError(Exception):
    """Raised when a ``cancel`` event is set between units of work."""


def check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Operation was cancelled")
