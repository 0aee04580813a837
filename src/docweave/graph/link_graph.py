"""In-memory directed link graph between documents."""

from __future__ import annotations

import enum
import threading
from collections import deque
from dataclasses import dataclass


class RelationshipType(enum.Enum):
    REFERENCES = "references"
    PARENT = "parent"
    CHILD = "child"
    RELATED = "related"
    SUPERSEDES = "supersedes"
    DEPENDS_ON = "depends_on"


@dataclass(frozen=True)
class TypedRelationship:
    source: str
    target: str
    kind: RelationshipType


class LinkGraph:
    """Directed graph of document paths.

    Edges are deduplicated, adding an edge adds both endpoints and removing
    a vertex removes every incident edge. Self-loops are allowed. All
    operations are guarded by one re-entrant lock.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._forward: dict[str, set[str]] = {}
        self._reverse: dict[str, set[str]] = {}
        self._typed: dict[tuple[str, str], set[RelationshipType]] = {}

    # -- mutation ----------------------------------------------------------

    def add_document(self, path: str) -> None:
        with self._lock:
            self._forward.setdefault(path, set())
            self._reverse.setdefault(path, set())

    def add_link(self, source: str, target: str) -> bool:
        """Add ``source -> target``. Returns False if the edge already existed."""
        with self._lock:
            self.add_document(source)
            self.add_document(target)
            if target in self._forward[source]:
                return False
            self._forward[source].add(target)
            self._reverse[target].add(source)
            return True

    def add_typed_link(self, source: str, target: str, kind: RelationshipType) -> None:
        """Record a typed relationship; it also becomes a plain edge."""
        with self._lock:
            self.add_link(source, target)
            self._typed.setdefault((source, target), set()).add(kind)

    def remove_link(self, source: str, target: str) -> bool:
        with self._lock:
            targets = self._forward.get(source)
            if targets is None or target not in targets:
                return False
            targets.discard(target)
            self._reverse[target].discard(source)
            self._typed.pop((source, target), None)
            return True

    def remove_document(self, path: str) -> bool:
        """Remove *path* and all incident edges. Returns False if absent."""
        with self._lock:
            if path not in self._forward:
                return False
            for target in self._forward.pop(path):
                if target != path:
                    self._reverse[target].discard(path)
                self._typed.pop((path, target), None)
            for source in self._reverse.pop(path):
                if source != path:
                    self._forward[source].discard(path)
                self._typed.pop((source, path), None)
            return True

    def clear_links_from(self, path: str) -> None:
        """Drop all outgoing edges of *path*, keeping the vertex."""
        with self._lock:
            for target in self._forward.get(path, set()):
                self._reverse[target].discard(path)
                self._typed.pop((path, target), None)
            if path in self._forward:
                self._forward[path] = set()

    # -- queries -----------------------------------------------------------

    def has_document(self, path: str) -> bool:
        with self._lock:
            return path in self._forward

    def has_link(self, source: str, target: str) -> bool:
        with self._lock:
            return target in self._forward.get(source, set())

    @property
    def document_count(self) -> int:
        with self._lock:
            return len(self._forward)

    @property
    def link_count(self) -> int:
        with self._lock:
            return sum(len(t) for t in self._forward.values())

    def documents(self) -> list[str]:
        with self._lock:
            return sorted(self._forward)

    def get_linked_documents(self, path: str) -> list[str]:
        """Outgoing neighbours of *path*, sorted."""
        with self._lock:
            return sorted(self._forward.get(path, set()))

    def get_incoming_links(self, path: str) -> list[str]:
        with self._lock:
            return sorted(self._reverse.get(path, set()))

    def get_linked_documents_with_depth(
        self,
        path: str,
        max_depth: int,
        max_documents: int,
    ) -> list[tuple[str, int]]:
        """Breadth-first walk of outgoing edges from *path*.

        Returns ``(document, depth)`` pairs, nearest first, excluding *path*
        itself, visiting at most *max_depth* levels and *max_documents*
        documents.
        """
        if max_depth <= 0 or max_documents <= 0:
            return []
        with self._lock:
            if path not in self._forward:
                return []
            visited: set[str] = {path}
            result: list[tuple[str, int]] = []
            queue: deque[tuple[str, int]] = deque([(path, 0)])
            while queue:
                current, depth = queue.popleft()
                if depth >= max_depth:
                    continue
                for neighbor in sorted(self._forward.get(current, set())):
                    if neighbor in visited:
                        continue
                    visited.add(neighbor)
                    result.append((neighbor, depth + 1))
                    if len(result) >= max_documents:
                        return result
                    queue.append((neighbor, depth + 1))
            return result

    def find_cycle(self, path: str) -> list[str] | None:
        """Return a cycle reachable from *path* as a vertex list, or None.

        A self-loop is reported as a one-vertex cycle.
        """
        with self._lock:
            if path not in self._forward:
                return None
            return self._find_cycle_from(path, set())

    def is_acyclic(self) -> bool:
        with self._lock:
            finished: set[str] = set()
            for vertex in sorted(self._forward):
                if vertex in finished:
                    continue
                if self._find_cycle_from(vertex, finished) is not None:
                    return False
            return True

    def _find_cycle_from(self, start: str, finished: set[str]) -> list[str] | None:
        # Iterative DFS: stack of (vertex, remaining neighbours); path mirrors the stack.
        path: list[str] = [start]
        on_path: set[str] = {start}
        stack: list[tuple[str, list[str]]] = [(start, sorted(self._forward.get(start, set())))]
        while stack:
            vertex, pending = stack[-1]
            if not pending:
                stack.pop()
                path.pop()
                on_path.discard(vertex)
                finished.add(vertex)
                continue
            neighbor = pending.pop(0)
            if neighbor in on_path:
                return path[path.index(neighbor) :]
            if neighbor in finished:
                continue
            path.append(neighbor)
            on_path.add(neighbor)
            stack.append((neighbor, sorted(self._forward.get(neighbor, set()))))
        return None

    # -- typed relationships ----------------------------------------------

    def get_typed_relationships(self, path: str) -> list[TypedRelationship]:
        with self._lock:
            return sorted(
                (
                    TypedRelationship(src, dst, kind)
                    for (src, dst), kinds in self._typed.items()
                    if src == path
                    for kind in kinds
                ),
                key=lambda r: (r.target, r.kind.value),
            )

    def get_incoming_typed_relationships(self, path: str) -> list[TypedRelationship]:
        with self._lock:
            return sorted(
                (
                    TypedRelationship(src, dst, kind)
                    for (src, dst), kinds in self._typed.items()
                    if dst == path
                    for kind in kinds
                ),
                key=lambda r: (r.source, r.kind.value),
            )

    def get_documents_by_relationship_type(self, path: str, kind: RelationshipType) -> list[str]:
        """Targets of *path*'s outgoing relationships of type *kind*."""
        with self._lock:
            return sorted(dst for (src, dst), kinds in self._typed.items() if src == path and kind in kinds)

    def relationship_type_counts(self) -> dict[RelationshipType, int]:
        counts: dict[RelationshipType, int] = {}
        with self._lock:
            for kinds in self._typed.values():
                for kind in kinds:
                    counts[kind] = counts.get(kind, 0) + 1
        return counts

    def clear(self) -> None:
        with self._lock:
            self._forward.clear()
            self._reverse.clear()
            self._typed.clear()
