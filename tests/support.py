"""Test doubles and helpers shared across docweave tests."""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from docweave.models import Document, DocumentChunk, PromotionLevel

TENANT = "proj:main:0123456789abcdef"


class InMemoryRepository:
    """Dict-backed ``DocumentRepository`` for tests."""

    def __init__(self) -> None:
        self.documents: dict[str, Document] = {}
        self.chunks: dict[str, list[DocumentChunk]] = {}
        self.promotion_updates: list[tuple[str, PromotionLevel]] = []

    def get_by_tenant_and_path(self, tenant_key: str, file_path: str) -> Document | None:
        for doc in self.documents.values():
            if doc.tenant_key == tenant_key and doc.file_path == file_path:
                return doc
        return None

    def get_by_id(self, document_id: str) -> Document | None:
        return self.documents.get(document_id)

    def upsert(self, document: Document) -> Document:
        existing = self.get_by_tenant_and_path(document.tenant_key, document.file_path)
        if existing is not None and existing.id != document.id:
            document = replace(document, id=existing.id)
        self.documents[document.id] = document
        return document

    def delete(self, document_id: str) -> bool:
        return self.documents.pop(document_id, None) is not None

    def delete_chunks(self, document_id: str) -> int:
        return len(self.chunks.pop(document_id, []))

    def upsert_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        for chunk in chunks:
            self.chunks.setdefault(chunk.document_id, []).append(chunk)

    def get_chunks(self, document_id: str) -> list[DocumentChunk]:
        return sorted(self.chunks.get(document_id, []), key=lambda c: c.chunk_index)

    def get_all_for_tenant(self, tenant_key: str) -> list[Document]:
        return sorted(
            (d for d in self.documents.values() if d.tenant_key == tenant_key),
            key=lambda d: d.file_path,
        )

    def update_promotion_level(self, document_id: str, level: PromotionLevel) -> bool:
        doc = self.documents.get(document_id)
        if doc is None:
            return False
        self.documents[document_id] = replace(doc, promotion_level=level)
        self.promotion_updates.append((document_id, level))
        return True


class FakeEmbedder:
    """Deterministic embedder; set ``fail`` to make every call raise."""

    def __init__(self, dimensions: int = 4) -> None:
        self.dimensions = dimensions
        self.fail: Exception | None = None
        self.single_calls = 0
        self.batch_calls = 0

    def _vector(self, text: str) -> list[float]:
        return [float((len(text) + i) % 7) for i in range(self.dimensions)]

    def generate_embedding(self, text: str) -> list[float]:
        self.single_calls += 1
        if self.fail is not None:
            raise self.fail
        return self._vector(text)

    def generate_embeddings(self, texts: Sequence[str]) -> list[list[float]]:
        self.batch_calls += 1
        if self.fail is not None:
            raise self.fail
        return [self._vector(t) for t in texts]


def write_doc(root: Path, rel: str, content: str) -> Path:
    """Write *content* to ``root / rel``, creating parent directories."""
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path
