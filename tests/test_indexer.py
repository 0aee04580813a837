"""Tests for docweave.doc_sync.indexer."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from support import TENANT, FakeEmbedder, InMemoryRepository, write_doc

from docweave.doc_sync.chunker import ChunkingOptions
from docweave.doc_sync.hooks import DocumentHook, HookContext, HookExecutor, HookResult
from docweave.doc_sync.indexer import DocumentIndexer, read_promotion_level
from docweave.doc_sync.validator import DocTypeRegistry, DocumentValidator
from docweave.graph.link_graph import RelationshipType
from docweave.models import PromotionLevel

if TYPE_CHECKING:
    from pathlib import Path


def _long_body(paragraphs: int = 6) -> str:
    para = "Lorem ipsum dolor sit amet, consectetur adipiscing elit sed do eiusmod. " * 2
    return "\n\n".join(f"Paragraph {i}. {para}" for i in range(paragraphs))


class _Veto(DocumentHook):
    name = "veto"

    def on_before_index(self, context: HookContext) -> HookResult:
        return HookResult.veto("drafts are not indexed")

    def on_before_delete(self, context: HookContext) -> HookResult:
        return HookResult.veto("keep it")


class TestIndexFile:
    def test_success_stores_document(
        self, tmp_project: Path, indexer: DocumentIndexer, repository: InMemoryRepository
    ) -> None:
        write_doc(tmp_project, "docs/a.md", "---\ntitle: Alpha\npromotion_level: important\n---\nBody text")
        result = indexer.index_file("docs/a.md")

        assert result.is_success, result.errors
        assert result.title == "Alpha"
        assert result.chunk_count == 0
        stored = repository.get_by_tenant_and_path(TENANT, "docs/a.md")
        assert stored is not None
        assert stored.id == result.document_id
        assert stored.promotion_level is PromotionLevel.IMPORTANT
        assert stored.vector is not None

    def test_absolute_path_accepted(self, tmp_project: Path, indexer: DocumentIndexer) -> None:
        path = write_doc(tmp_project, "docs/a.md", "# A\n\ntext")
        result = indexer.index_file(path)
        assert result.is_success
        assert result.file_path == "docs/a.md"

    def test_missing_file(self, indexer: DocumentIndexer) -> None:
        result = indexer.index_file("docs/ghost.md")
        assert result.is_success is False
        assert result.errors == ["File not found: docs/ghost.md"]

    def test_reindex_keeps_id(self, tmp_project: Path, indexer: DocumentIndexer) -> None:
        write_doc(tmp_project, "docs/a.md", "# A\n\nfirst")
        first = indexer.index_file("docs/a.md")
        write_doc(tmp_project, "docs/a.md", "# A\n\nsecond")
        second = indexer.index_file("docs/a.md")
        assert first.document_id == second.document_id

    def test_mtime_recorded(self, tmp_project: Path, indexer: DocumentIndexer, repository: InMemoryRepository) -> None:
        path = write_doc(tmp_project, "docs/a.md", "# A")
        indexer.index_file("docs/a.md")
        stored = repository.get_by_tenant_and_path(TENANT, "docs/a.md")
        assert stored is not None
        assert abs(stored.last_modified.timestamp() - path.stat().st_mtime) < 0.01


class TestChunking:
    def test_long_body_is_chunked(
        self,
        tmp_project: Path,
        repository: InMemoryRepository,
        embedder: FakeEmbedder,
    ) -> None:
        indexer = DocumentIndexer(
            repository,
            embedder,
            TENANT,
            tmp_project,
            chunking=ChunkingOptions(chunk_size=300, overlap=50, min_chunk_size=20),
        )
        write_doc(tmp_project, "docs/long.md", "---\npromotion_level: critical\n---\n" + _long_body())
        result = indexer.index_file("docs/long.md")

        assert result.is_success, result.errors
        chunks = repository.get_chunks(result.document_id or "")
        assert result.chunk_count == len(chunks) > 1
        assert chunks[0].header_path == "Chunk 0"
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert all(c.promotion_level is PromotionLevel.CRITICAL for c in chunks)
        assert all(c.start_line <= c.end_line for c in chunks)
        assert embedder.batch_calls == 1

    def test_reindex_replaces_chunks(
        self,
        tmp_project: Path,
        repository: InMemoryRepository,
        embedder: FakeEmbedder,
    ) -> None:
        indexer = DocumentIndexer(
            repository,
            embedder,
            TENANT,
            tmp_project,
            chunking=ChunkingOptions(chunk_size=300, overlap=50, min_chunk_size=20),
        )
        write_doc(tmp_project, "docs/long.md", _long_body(8))
        doc_id = indexer.index_file("docs/long.md").document_id or ""
        write_doc(tmp_project, "docs/long.md", "short now")
        indexer.index_file("docs/long.md")
        assert repository.get_chunks(doc_id) == []


class TestFailures:
    def test_validation_errors_fail(
        self,
        tmp_project: Path,
        repository: InMemoryRepository,
        embedder: FakeEmbedder,
    ) -> None:
        indexer = DocumentIndexer(
            repository,
            embedder,
            TENANT,
            tmp_project,
            validator=DocumentValidator(DocTypeRegistry()),
        )
        write_doc(tmp_project, "docs/p.md", "---\ndoc_type: problem\ntitle: Crash\n---\nbody")
        result = indexer.index_file("docs/p.md")
        assert result.is_success is False
        assert result.errors == ["tags: Required field 'tags' is missing or empty"]
        assert repository.documents == {}

    def test_embedding_failure(
        self, tmp_project: Path, indexer: DocumentIndexer, embedder: FakeEmbedder, repository: InMemoryRepository
    ) -> None:
        embedder.fail = RuntimeError("offline")
        write_doc(tmp_project, "docs/a.md", "# A")
        result = indexer.index_file("docs/a.md")
        assert result.is_success is False
        assert result.errors == ["Failed to generate embedding: offline"]
        assert repository.documents == {}

    def test_cancelled(self, tmp_project: Path, indexer: DocumentIndexer) -> None:
        cancel = threading.Event()
        cancel.set()
        write_doc(tmp_project, "docs/a.md", "# A")
        result = indexer.index_file("docs/a.md", cancel)
        assert result.errors == ["Operation was cancelled"]

    def test_hook_veto(self, tmp_project: Path, repository: InMemoryRepository, embedder: FakeEmbedder) -> None:
        indexer = DocumentIndexer(repository, embedder, TENANT, tmp_project, hooks=HookExecutor([_Veto()]))
        write_doc(tmp_project, "docs/a.md", "# A")
        result = indexer.index_file("docs/a.md")
        assert result.errors == ["drafts are not indexed"]
        assert embedder.single_calls == 0

    def test_unexpected_error(self, indexer: DocumentIndexer, repository: InMemoryRepository) -> None:
        def broken(document):
            raise RuntimeError("disk full")

        repository.upsert = broken  # type: ignore[method-assign]
        result = indexer.index_content("# A", "docs/a.md")
        assert result.errors == ["Unexpected error: disk full"]


class TestDeletion:
    def test_delete_by_id(self, tmp_project: Path, indexer: DocumentIndexer, repository: InMemoryRepository) -> None:
        write_doc(tmp_project, "docs/a.md", "# A")
        doc_id = indexer.index_file("docs/a.md").document_id or ""
        assert indexer.delete(doc_id) is True
        assert repository.documents == {}
        assert indexer.delete(doc_id) is False

    def test_delete_vetoed(self, tmp_project: Path, repository: InMemoryRepository, embedder: FakeEmbedder) -> None:
        indexer = DocumentIndexer(repository, embedder, TENANT, tmp_project)
        doc_id = indexer.index_content("# A", "docs/a.md").document_id or ""
        indexer.hooks.register(_Veto())
        assert indexer.delete(doc_id) is False
        assert doc_id in repository.documents

    def test_delete_path_missing_is_success(self, indexer: DocumentIndexer) -> None:
        assert indexer.delete_path("docs/never.md") is True

    def test_delete_path_drops_links(self, tmp_project: Path, indexer: DocumentIndexer) -> None:
        write_doc(tmp_project, "docs/b.md", "# B")
        write_doc(tmp_project, "docs/a.md", "# A\n\nSee [[b]].")
        indexer.index_file("docs/b.md")
        indexer.index_file("docs/a.md")
        assert indexer.delete_path("docs/b.md") is True
        assert indexer.cross_refs is not None
        assert indexer.cross_refs.get_forward_links("docs/a.md") == []


class TestReindexAll:
    def test_reindexes_and_drops_vanished(
        self, tmp_project: Path, indexer: DocumentIndexer, repository: InMemoryRepository
    ) -> None:
        write_doc(tmp_project, "docs/a.md", "# A")
        gone = write_doc(tmp_project, "docs/b.md", "# B")
        indexer.index_file("docs/a.md")
        indexer.index_file("docs/b.md")
        gone.unlink()

        assert indexer.reindex_all() == 1
        assert [d.file_path for d in repository.get_all_for_tenant(TENANT)] == ["docs/a.md"]


class TestRelations:
    def test_links_recorded_and_broken_links_warned(self, tmp_project: Path, indexer: DocumentIndexer) -> None:
        write_doc(tmp_project, "docs/b.md", "# B")
        write_doc(tmp_project, "docs/a.md", "# A\n\n[[b]] and [[nowhere]]")
        result = indexer.index_file("docs/a.md")
        assert result.is_success
        assert any("broken link" in w and "nowhere" in w for w in result.warnings)
        assert indexer.cross_refs is not None
        assert indexer.cross_refs.get_forward_links("docs/a.md") == ["docs/b.md"]

    def test_supersession_demotes_and_links(
        self, tmp_project: Path, indexer: DocumentIndexer, repository: InMemoryRepository
    ) -> None:
        write_doc(tmp_project, "docs/old.md", "---\npromotion_level: critical\n---\n# Old")
        write_doc(tmp_project, "docs/new.md", "---\nsupersedes: [docs/old.md, docs/missing.md]\n---\n# New")
        indexer.index_file("docs/old.md")
        result = indexer.index_file("docs/new.md")

        assert result.is_success
        assert "Superseded document not found: docs/missing.md" in result.warnings
        old = repository.get_by_tenant_and_path(TENANT, "docs/old.md")
        assert old is not None
        assert old.promotion_level is PromotionLevel.STANDARD
        assert indexer.cross_refs is not None
        graph = indexer.cross_refs.link_graph
        assert graph.get_documents_by_relationship_type("docs/new.md", RelationshipType.SUPERSEDES) == [
            "docs/old.md"
        ]
        assert result.unresolved_supersedes == ["docs/missing.md"]

    def test_pending_supersession_resolved_after_batch(
        self, tmp_project: Path, indexer: DocumentIndexer, repository: InMemoryRepository
    ) -> None:
        write_doc(tmp_project, "docs/new.md", "---\nsupersedes: [docs/old.md]\n---\n# New")
        write_doc(tmp_project, "docs/old.md", "---\npromotion_level: critical\n---\n# Old")
        results = [indexer.index_file("docs/new.md"), indexer.index_file("docs/old.md")]
        assert results[0].unresolved_supersedes == ["docs/old.md"]

        assert indexer.resolve_pending_supersession(results) == 1

        old = repository.get_by_tenant_and_path(TENANT, "docs/old.md")
        assert old is not None
        assert old.promotion_level is PromotionLevel.STANDARD
        assert indexer.cross_refs is not None
        graph = indexer.cross_refs.link_graph
        assert graph.get_documents_by_relationship_type("docs/new.md", RelationshipType.SUPERSEDES) == [
            "docs/old.md"
        ]

    def test_refresh_supersession_reports_still_missing(self, tmp_project: Path, indexer: DocumentIndexer) -> None:
        write_doc(tmp_project, "docs/new.md", "---\nsupersedes: [docs/gone.md]\n---\n# New")
        indexer.index_file("docs/new.md")
        assert indexer.refresh_supersession("docs/new.md") == ["docs/gone.md"]
        assert indexer.refresh_supersession("docs/unknown.md") == []


class TestReadPromotionLevel:
    def test_variants(self) -> None:
        assert read_promotion_level({"promotionLevel": "Critical"}) is PromotionLevel.CRITICAL
        assert read_promotion_level({"promotion_level": "bogus"}) is PromotionLevel.STANDARD
        assert read_promotion_level(None) is PromotionLevel.STANDARD
