"""Tests for docweave.graph.link_graph."""

from __future__ import annotations

import threading

from docweave.graph.link_graph import LinkGraph, RelationshipType


class TestEdges:
    def test_add_link_adds_both_vertices(self) -> None:
        graph = LinkGraph()
        assert graph.add_link("a.md", "b.md") is True
        assert graph.has_document("a.md")
        assert graph.has_document("b.md")
        assert graph.has_link("a.md", "b.md")
        assert not graph.has_link("b.md", "a.md")

    def test_duplicate_edge_is_idempotent(self) -> None:
        """Adding the same edge twice leaves the link count unchanged."""
        graph = LinkGraph()
        graph.add_link("a.md", "b.md")
        assert graph.add_link("a.md", "b.md") is False
        assert graph.link_count == 1

    def test_forward_and_incoming(self) -> None:
        graph = LinkGraph()
        graph.add_link("a.md", "c.md")
        graph.add_link("b.md", "c.md")
        assert graph.get_linked_documents("a.md") == ["c.md"]
        assert graph.get_incoming_links("c.md") == ["a.md", "b.md"]

    def test_clear_links_from_keeps_vertex(self) -> None:
        graph = LinkGraph()
        graph.add_link("a.md", "b.md")
        graph.add_link("a.md", "c.md")
        graph.clear_links_from("a.md")
        assert graph.has_document("a.md")
        assert graph.link_count == 0
        assert graph.get_incoming_links("b.md") == []


class TestRemoveDocument:
    def test_removes_incident_edges(self) -> None:
        """Removing a vertex drops exactly its in- and out-degree from the link count."""
        graph = LinkGraph()
        graph.add_link("a.md", "hub.md")
        graph.add_link("b.md", "hub.md")
        graph.add_link("hub.md", "c.md")
        graph.add_link("a.md", "c.md")
        before = graph.link_count
        degree = len(graph.get_incoming_links("hub.md")) + len(graph.get_linked_documents("hub.md"))

        assert graph.remove_document("hub.md") is True
        assert graph.link_count == before - degree
        assert not graph.has_document("hub.md")
        assert graph.get_linked_documents("a.md") == ["c.md"]

    def test_remove_missing(self) -> None:
        assert LinkGraph().remove_document("nope.md") is False

    def test_remove_with_self_loop(self) -> None:
        graph = LinkGraph()
        graph.add_link("a.md", "a.md")
        graph.add_link("a.md", "b.md")
        graph.remove_document("a.md")
        assert graph.link_count == 0
        assert graph.document_count == 1


class TestCycles:
    def test_ring_has_cycle(self) -> None:
        graph = LinkGraph()
        graph.add_link("a.md", "b.md")
        graph.add_link("b.md", "c.md")
        graph.add_link("c.md", "a.md")
        assert graph.is_acyclic() is False
        cycle = graph.find_cycle("a.md")
        assert cycle is not None
        assert sorted(cycle) == ["a.md", "b.md", "c.md"]

    def test_dag_is_acyclic(self) -> None:
        graph = LinkGraph()
        graph.add_link("a.md", "b.md")
        graph.add_link("a.md", "c.md")
        graph.add_link("b.md", "d.md")
        graph.add_link("c.md", "d.md")
        assert graph.is_acyclic() is True
        assert graph.find_cycle("a.md") is None

    def test_self_loop_is_single_vertex_cycle(self) -> None:
        graph = LinkGraph()
        graph.add_link("a.md", "a.md")
        assert graph.find_cycle("a.md") == ["a.md"]
        assert graph.is_acyclic() is False

    def test_cycle_not_reachable_from_start(self) -> None:
        graph = LinkGraph()
        graph.add_link("start.md", "x.md")
        graph.add_link("y.md", "z.md")
        graph.add_link("z.md", "y.md")
        assert graph.find_cycle("start.md") is None
        assert graph.is_acyclic() is False

    def test_long_chain_does_not_recurse(self) -> None:
        graph = LinkGraph()
        for i in range(5000):
            graph.add_link(f"d{i}.md", f"d{i + 1}.md")
        assert graph.is_acyclic() is True


class TestBoundedTraversal:
    def _chain(self) -> LinkGraph:
        graph = LinkGraph()
        graph.add_link("a.md", "b.md")
        graph.add_link("a.md", "c.md")
        graph.add_link("b.md", "d.md")
        graph.add_link("d.md", "e.md")
        return graph

    def test_depth_limit(self) -> None:
        result = self._chain().get_linked_documents_with_depth("a.md", max_depth=2, max_documents=10)
        assert result == [("b.md", 1), ("c.md", 1), ("d.md", 2)]

    def test_document_limit_and_start_excluded(self) -> None:
        result = self._chain().get_linked_documents_with_depth("a.md", max_depth=5, max_documents=2)
        assert len(result) == 2
        assert all(path != "a.md" for path, _ in result)

    def test_unknown_start(self) -> None:
        assert LinkGraph().get_linked_documents_with_depth("x.md", 2, 5) == []


class TestTypedRelationships:
    def test_typed_links_feed_plain_graph(self) -> None:
        graph = LinkGraph()
        graph.add_typed_link("new.md", "old.md", RelationshipType.SUPERSEDES)
        graph.add_typed_link("new.md", "api.md", RelationshipType.DEPENDS_ON)
        assert graph.has_link("new.md", "old.md")
        assert graph.get_documents_by_relationship_type("new.md", RelationshipType.SUPERSEDES) == ["old.md"]
        assert [r.source for r in graph.get_incoming_typed_relationships("old.md")] == ["new.md"]
        assert len(graph.get_typed_relationships("new.md")) == 2
        assert graph.relationship_type_counts() == {
            RelationshipType.SUPERSEDES: 1,
            RelationshipType.DEPENDS_ON: 1,
        }

    def test_removing_vertex_drops_typed_edges(self) -> None:
        graph = LinkGraph()
        graph.add_typed_link("a.md", "b.md", RelationshipType.PARENT)
        graph.remove_document("b.md")
        assert graph.get_typed_relationships("a.md") == []


class TestConcurrency:
    def test_parallel_writers(self) -> None:
        graph = LinkGraph()

        def writer(offset: int) -> None:
            for i in range(200):
                graph.add_link(f"s{offset}.md", f"t{i}.md")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert graph.link_count == 800
