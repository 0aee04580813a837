"""Shared test fixtures for docweave."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from support import TENANT, FakeEmbedder, InMemoryRepository

from docweave.doc_sync.events import DocumentEventPublisher
from docweave.doc_sync.indexer import DocumentIndexer
from docweave.graph.cross_refs import CrossReferenceResolver
from docweave.graph.link_graph import LinkGraph
from docweave.graph.supersession import SupersessionTracker

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def tmp_project(tmp_path: Path) -> Path:
    """Create a minimal documentation project."""
    (tmp_path / "docs").mkdir()
    return tmp_path


@pytest.fixture()
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def publisher() -> DocumentEventPublisher:
    return DocumentEventPublisher()


@pytest.fixture()
def indexer(
    tmp_project: Path,
    repository: InMemoryRepository,
    embedder: FakeEmbedder,
    publisher: DocumentEventPublisher,
) -> DocumentIndexer:
    """Indexer wired with link graph, cross references and supersession."""
    graph = LinkGraph()
    return DocumentIndexer(
        repository,
        embedder,
        TENANT,
        tmp_project,
        cross_refs=CrossReferenceResolver(graph, tmp_project),
        supersession=SupersessionTracker(repository, publisher),
    )
