"""Indexing pipeline: parse, validate, chunk, embed and store documents."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from docweave.doc_sync.chunker import ChunkingOptions, chunk_text, line_number_at, should_chunk
from docweave.doc_sync.hooks import HookContext, HookExecutor
from docweave.doc_sync.parser import get_frontmatter_value, parse_document
from docweave.doc_sync.validator import DocumentValidator
from docweave.graph.link_graph import RelationshipType
from docweave.models import (
    Document,
    DocumentChunk,
    OperationCancelledError,
    PromotionLevel,
    check_cancelled,
    new_id,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from docweave.doc_sync.parser import ParsedDocument
    from docweave.graph.cross_refs import CrossReferenceResolver
    from docweave.graph.supersession import SupersessionResult, SupersessionTracker
    from docweave.models import DocumentRepository, EmbeddingService

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Operation was cancelled"


@dataclass
class IndexResult:
    file_path: str
    is_success: bool
    document_id: str | None = None
    chunk_count: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    processing_time_ms: float = 0.0
    embedding_time_ms: float = 0.0
    doc_type: str = ""
    title: str = ""
    unresolved_supersedes: list[str] = field(default_factory=list)


class IndexResultBuilder:
    """Accumulate warnings and timings while a document moves through the pipeline."""

    def __init__(self, file_path: str) -> None:
        self.file_path = file_path
        self.warnings: list[str] = []
        self.doc_type = ""
        self.title = ""
        self.embedding_time_ms = 0.0
        self.unresolved_supersedes: list[str] = []
        self._started = time.perf_counter()

    def warn(self, *messages: str) -> IndexResultBuilder:
        self.warnings.extend(m for m in messages if m)
        return self

    def _elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000

    def success(self, document_id: str, chunk_count: int) -> IndexResult:
        return IndexResult(
            file_path=self.file_path,
            is_success=True,
            document_id=document_id,
            chunk_count=chunk_count,
            warnings=list(self.warnings),
            processing_time_ms=self._elapsed_ms(),
            embedding_time_ms=self.embedding_time_ms,
            doc_type=self.doc_type,
            title=self.title,
            unresolved_supersedes=list(self.unresolved_supersedes),
        )

    def failure(self, *errors: str) -> IndexResult:
        return IndexResult(
            file_path=self.file_path,
            is_success=False,
            errors=list(errors),
            warnings=list(self.warnings),
            processing_time_ms=self._elapsed_ms(),
            embedding_time_ms=self.embedding_time_ms,
            doc_type=self.doc_type,
            title=self.title,
        )


class _EmbeddingFailedError(Exception):
    pass


def read_promotion_level(frontmatter: dict | None) -> PromotionLevel:
    """``promotion_level`` / ``promotionLevel`` from frontmatter, else standard."""
    for key in ("promotion_level", "promotionLevel"):
        level = PromotionLevel.parse(get_frontmatter_value(frontmatter, key))
        if level is not None:
            return level
    return PromotionLevel.STANDARD


class DocumentIndexer:
    """Index Markdown documents of one tenant into a :class:`DocumentRepository`."""

    def __init__(
        self,
        repository: DocumentRepository,
        embedder: EmbeddingService,
        tenant_key: str,
        base_path: Path | str,
        *,
        validator: DocumentValidator | None = None,
        chunking: ChunkingOptions | None = None,
        hooks: HookExecutor | None = None,
        cross_refs: CrossReferenceResolver | None = None,
        supersession: SupersessionTracker | None = None,
    ) -> None:
        self.repository = repository
        self.embedder = embedder
        self.tenant_key = tenant_key
        self.base_path = Path(base_path).resolve()
        self.validator = validator or DocumentValidator()
        self.chunking = chunking or ChunkingOptions()
        self.chunking.validate()
        self.hooks = hooks or HookExecutor()
        self.cross_refs = cross_refs
        self.supersession = supersession

    # -- paths -------------------------------------------------------------

    def _locate(self, path: Path | str) -> tuple[Path, str]:
        p = Path(path)
        absolute = p if p.is_absolute() else self.base_path / p
        try:
            rel = absolute.relative_to(self.base_path).as_posix()
        except ValueError:
            rel = absolute.resolve().relative_to(self.base_path).as_posix()
        return absolute, rel

    # -- indexing ----------------------------------------------------------

    def index_file(self, path: Path | str, cancel: threading.Event | None = None) -> IndexResult:
        """Read *path* (absolute or relative to ``base_path``) and index it."""
        try:
            absolute, rel = self._locate(path)
        except ValueError:
            return IndexResultBuilder(str(path)).failure(f"File is outside {self.base_path}: {path}")

        if not absolute.is_file():
            return IndexResultBuilder(rel).failure(f"File not found: {rel}")
        try:
            content = absolute.read_text(encoding="utf-8")
            mtime = datetime.fromtimestamp(absolute.stat().st_mtime, tz=timezone.utc)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read file: %s (%s)", rel, exc)
            return IndexResultBuilder(rel).failure(f"Failed to read file: {exc}")
        return self.index_content(content, rel, cancel=cancel, last_modified=mtime)

    def index_content(
        self,
        content: str,
        file_path: str,
        cancel: threading.Event | None = None,
        *,
        last_modified: datetime | None = None,
    ) -> IndexResult:
        """Run the full pipeline for *content* stored at *file_path*.

        Failures are reported on the result, never raised.
        """
        builder = IndexResultBuilder(file_path)
        try:
            return self._index(content, file_path, builder, cancel, last_modified)
        except OperationCancelledError:
            logger.info("Indexing of %s cancelled", file_path)
            return builder.failure(CANCELLED_MESSAGE)
        except _EmbeddingFailedError as exc:
            return builder.failure(str(exc))
        except Exception as exc:
            logger.exception("Unexpected error indexing %s", file_path)
            return builder.failure(f"Unexpected error: {exc}")

    def _index(
        self,
        content: str,
        file_path: str,
        builder: IndexResultBuilder,
        cancel: threading.Event | None,
        last_modified: datetime | None,
    ) -> IndexResult:
        check_cancelled(cancel)
        parsed = parse_document(content)
        if parsed.error:
            builder.warn(parsed.error)
        builder.title = parsed.title

        validation = self.validator.validate(parsed)
        builder.doc_type = validation.doc_type
        builder.warn(*validation.warnings)
        if not validation.is_valid:
            return builder.failure(*(str(e) for e in validation.errors))

        hook_result = self.hooks.before_index(HookContext(self.tenant_key, file_path, parsed=parsed))
        builder.warn(*hook_result.warnings)
        if not hook_result.should_continue:
            return builder.failure(hook_result.error_message or "Indexing vetoed by hook")

        check_cancelled(cancel)
        document_vector = self._embed([parsed.body.strip() or parsed.title or file_path], builder)[0]

        existing = self.repository.get_by_tenant_and_path(self.tenant_key, file_path)
        level = read_promotion_level(parsed.frontmatter)
        document = Document(
            id=existing.id if existing is not None else new_id(),
            tenant_key=self.tenant_key,
            file_path=file_path,
            title=parsed.title,
            doc_type=validation.doc_type,
            promotion_level=level,
            content=parsed.body,
            vector=document_vector,
            last_modified=last_modified or datetime.now(tz=timezone.utc),
        )

        chunks = self._build_chunks(document, parsed, builder, cancel)

        check_cancelled(cancel)
        stored = self.repository.upsert(document)
        self.repository.delete_chunks(stored.id)
        for chunk in chunks:
            chunk.document_id = stored.id
        self.repository.upsert_chunks(chunks)
        logger.debug("Indexed %s (%d chunks)", file_path, len(chunks))

        after = self.hooks.after_index(
            HookContext(self.tenant_key, file_path, parsed=parsed, document=stored, chunk_count=len(chunks))
        )
        builder.warn(*after.warnings)

        self._update_links(stored, parsed, builder, cancel)
        return builder.success(stored.id, len(chunks))

    def _embed(self, texts: list[str], builder: IndexResultBuilder) -> list[list[float]]:
        started = time.perf_counter()
        try:
            if len(texts) == 1:
                vectors = [self.embedder.generate_embedding(texts[0])]
            else:
                vectors = self.embedder.generate_embeddings(texts)
        except Exception as exc:
            logger.error("Embedding failed for %s: %s", builder.file_path, exc)
            msg = f"Failed to generate embedding: {exc}"
            raise _EmbeddingFailedError(msg) from exc
        finally:
            builder.embedding_time_ms += (time.perf_counter() - started) * 1000
        if len(vectors) != len(texts):
            msg = f"Failed to generate embedding: expected {len(texts)} vectors, got {len(vectors)}"
            raise _EmbeddingFailedError(msg)
        return vectors

    def _build_chunks(
        self,
        document: Document,
        parsed: ParsedDocument,
        builder: IndexResultBuilder,
        cancel: threading.Event | None,
    ) -> list[DocumentChunk]:
        body = parsed.body
        if not should_chunk(body, self.chunking):
            return []
        pieces = chunk_text(body, self.chunking)
        check_cancelled(cancel)
        vectors = self._embed([p.content for p in pieces], builder)
        return [
            DocumentChunk(
                document_id=document.id,
                tenant_key=self.tenant_key,
                chunk_index=piece.index,
                content=piece.content,
                header_path=f"Chunk {piece.index}",
                start_line=line_number_at(body, piece.start_offset),
                end_line=line_number_at(body, piece.end_offset),
                promotion_level=document.promotion_level,
                vector=vector,
            )
            for piece, vector in zip(pieces, vectors)
        ]

    def _update_links(
        self,
        document: Document,
        parsed: ParsedDocument,
        builder: IndexResultBuilder,
        cancel: threading.Event | None,
    ) -> None:
        if self.cross_refs is not None:
            resolved = self.cross_refs.resolve_all(parsed.body, document.file_path, self.tenant_key, cancel)
            self.cross_refs.update_link_graph(document.file_path, resolved)
            broken = self.cross_refs.get_broken_links(document.file_path)
            if broken:
                builder.warn(f"{len(broken)} broken link(s): " + ", ".join(r.target for r in broken))

        if self.supersession is not None:
            result = self._apply_supersession(document, parsed.frontmatter, cancel)
            builder.warn(*result.errors)
            builder.warn(*(f"Superseded document not found: {p}" for p in result.not_found_paths))
            builder.unresolved_supersedes.extend(result.not_found_paths)

    def _apply_supersession(
        self,
        document: Document,
        frontmatter: dict | None,
        cancel: threading.Event | None,
    ) -> SupersessionResult:
        assert self.supersession is not None
        result = self.supersession.process_supersession(document, frontmatter, self.tenant_key, cancel)
        if self.cross_refs is not None:
            for path in result.superseded_paths:
                self.cross_refs.link_graph.add_typed_link(document.file_path, path, RelationshipType.SUPERSEDES)
        return result

    def refresh_supersession(self, path: Path | str, cancel: threading.Event | None = None) -> list[str]:
        """Re-apply the ``supersedes`` frontmatter of an already stored document.

        Returns the targets that are still not stored.
        """
        if self.supersession is None:
            return []
        absolute, rel = self._locate(path)
        document = self.repository.get_by_tenant_and_path(self.tenant_key, rel)
        if document is None:
            return []
        parsed = parse_document(absolute.read_text(encoding="utf-8"))
        return self._apply_supersession(document, parsed.frontmatter, cancel).not_found_paths

    def resolve_pending_supersession(
        self,
        results: Iterable[IndexResult],
        cancel: threading.Event | None = None,
    ) -> int:
        """Second pass over a batch: retry supersedes targets that were indexed later in the batch.

        Returns the number of documents whose targets all resolved.
        """
        resolved = 0
        for result in results:
            if not (result.is_success and result.unresolved_supersedes):
                continue
            if cancel is not None and cancel.is_set():
                break
            try:
                remaining = self.refresh_supersession(result.file_path, cancel)
            except OperationCancelledError:
                break
            except (OSError, UnicodeDecodeError, ValueError) as exc:
                logger.warning("Cannot refresh supersession of %s: %s", result.file_path, exc)
                continue
            if remaining:
                logger.warning("Superseded document(s) still not found for %s: %s", result.file_path, remaining)
            else:
                resolved += 1
        return resolved

    # -- deletion ----------------------------------------------------------

    def delete(self, document_id: str, cancel: threading.Event | None = None) -> bool:
        """Delete a document and its chunks. Returns False if absent, vetoed or failed."""
        try:
            check_cancelled(cancel)
            document = self.repository.get_by_id(document_id)
            if document is None:
                return False
            context = HookContext(self.tenant_key, document.file_path, document=document)
            before = self.hooks.before_delete(context)
            if not before.should_continue:
                logger.info("Deletion of %s vetoed: %s", document.file_path, before.error_message)
                return False

            self.repository.delete_chunks(document.id)
            self.repository.delete(document.id)
            self.hooks.after_delete(context)
            self._forget(document.file_path)
            logger.debug("Deleted %s", document.file_path)
            return True
        except OperationCancelledError:
            return False
        except Exception:
            logger.exception("Failed to delete document %s", document_id)
            return False

    def delete_path(self, file_path: Path | str) -> bool:
        """Delete the document stored at *file_path*; a missing record counts as success."""
        try:
            _, rel = self._locate(file_path)
        except ValueError:
            rel = Path(file_path).as_posix()
        try:
            document = self.repository.get_by_tenant_and_path(self.tenant_key, rel)
        except Exception:
            logger.exception("Lookup failed for %s", rel)
            return False
        if document is None:
            self._forget(rel)
            return True
        return self.delete(document.id)

    def _forget(self, file_path: str) -> None:
        if self.cross_refs is not None:
            self.cross_refs.remove_document(file_path)
        if self.supersession is not None:
            self.supersession.remove_from_chain(file_path, self.tenant_key)

    def reindex_all(self, cancel: threading.Event | None = None) -> int:
        """Re-read every stored document of the tenant. Returns the success count."""
        indexed = 0
        results: list[IndexResult] = []
        for document in self.repository.get_all_for_tenant(self.tenant_key):
            if cancel is not None and cancel.is_set():
                logger.info("Reindex cancelled after %d document(s)", indexed)
                break
            if not (self.base_path / document.file_path).is_file():
                self.delete(document.id, cancel)
                continue
            result = self.index_file(document.file_path, cancel)
            results.append(result)
            if result.is_success:
                indexed += 1
        self.resolve_pending_supersession(results, cancel)
        return indexed
