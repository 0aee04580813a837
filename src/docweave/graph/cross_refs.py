"""Cross-reference extraction and resolution, feeding the link graph."""

from __future__ import annotations

import enum
import hashlib
import logging
import posixpath
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from docweave.models import check_cancelled

if TYPE_CHECKING:
    from collections.abc import Callable

    from docweave.graph.link_graph import LinkGraph
    from docweave.models import Document

logger = logging.getLogger(__name__)

_WIKI_RE = re.compile(r"\[\[([^\]]+)\]\]")
_MD_LINK_RE = re.compile(r"\[([^\]]*)\]\(([^)]+)\)")
_DOC_ID_RE = re.compile(r"(?<![\w/])doc:([A-Za-z0-9_-]+)")
_FILE_RE = re.compile(r"(?<![\w/])file:(\S+)")
_EXTERNAL_RE = re.compile(r"^https?://", re.IGNORECASE)


class ReferenceKind(enum.Enum):
    WIKI_LINK = "wiki_link"
    MARKDOWN_LINK = "markdown_link"
    DOCUMENT_ID = "document_id"
    FILE_PATH = "file_path"
    EXTERNAL_URL = "external_url"


@dataclass(frozen=True)
class DocumentReference:
    kind: ReferenceKind
    raw_text: str
    target: str
    display_text: str = ""
    anchor: str | None = None
    line: int = 1
    column: int = 1


@dataclass(frozen=True)
class ResolvedReference:
    reference: DocumentReference
    is_resolved: bool
    resolved_path: str | None = None
    error: str | None = None

    @property
    def is_external(self) -> bool:
        return self.reference.kind is ReferenceKind.EXTERNAL_URL


@dataclass(frozen=True)
class LinkResolutionSettings:
    max_depth: int = 2
    max_linked_docs: int = 5


@dataclass
class _CacheEntry:
    content_hash: str
    resolved: list[ResolvedReference] = field(default_factory=list)


def _split_anchor(target: str) -> tuple[str, str | None]:
    """Split ``path#anchor`` on the last ``#`` unless it is the first character."""
    idx = target.rfind("#")
    if idx > 0:
        return target[:idx], target[idx + 1 :] or None
    return target, None


def _classify(target: str) -> tuple[ReferenceKind, str]:
    if _EXTERNAL_RE.match(target):
        return ReferenceKind.EXTERNAL_URL, target
    if target.startswith("doc:"):
        return ReferenceKind.DOCUMENT_ID, target[len("doc:") :]
    if target.startswith("file:"):
        return ReferenceKind.FILE_PATH, target[len("file:") :]
    return ReferenceKind.MARKDOWN_LINK, target


def _content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _overlaps(span: tuple[int, int], taken: list[tuple[int, int]]) -> bool:
    return any(span[0] < end and start < span[1] for start, end in taken)


def extract_references(text: str) -> list[DocumentReference]:
    """Find wiki, Markdown, ``doc:`` and ``file:`` references in *text*.

    Bare ``doc:``/``file:`` tokens inside a wiki or Markdown link are not
    reported a second time.
    """
    if not text or not text.strip():
        return []

    refs: list[DocumentReference] = []
    for lineno, line in enumerate(text.split("\n"), start=1):
        taken: list[tuple[int, int]] = []

        for m in _WIKI_RE.finditer(line):
            target, anchor = _split_anchor(m.group(1).strip())
            taken.append(m.span())
            refs.append(
                DocumentReference(
                    kind=ReferenceKind.WIKI_LINK,
                    raw_text=m.group(0),
                    target=target,
                    display_text=target,
                    anchor=anchor,
                    line=lineno,
                    column=m.start() + 1,
                )
            )

        for m in _MD_LINK_RE.finditer(line):
            if _overlaps(m.span(), taken):
                continue
            taken.append(m.span())
            kind, raw_target = _classify(m.group(2).strip())
            target, anchor = (raw_target, None) if kind is ReferenceKind.EXTERNAL_URL else _split_anchor(raw_target)
            refs.append(
                DocumentReference(
                    kind=kind,
                    raw_text=m.group(0),
                    target=target,
                    display_text=m.group(1),
                    anchor=anchor,
                    line=lineno,
                    column=m.start() + 1,
                )
            )

        for pattern, kind in ((_DOC_ID_RE, ReferenceKind.DOCUMENT_ID), (_FILE_RE, ReferenceKind.FILE_PATH)):
            for m in pattern.finditer(line):
                if _overlaps(m.span(), taken):
                    continue
                target, anchor = (
                    (m.group(1), None) if kind is ReferenceKind.DOCUMENT_ID else _split_anchor(m.group(1))
                )
                refs.append(
                    DocumentReference(
                        kind=kind,
                        raw_text=m.group(0),
                        target=target,
                        anchor=anchor,
                        line=lineno,
                        column=m.start() + 1,
                    )
                )

    return refs


class CrossReferenceResolver:
    """Resolve references against the project tree and maintain the link graph.

    Resolution results are cached per ``(tenant, source path)`` and reused
    while the content hash is unchanged.
    """

    def __init__(
        self,
        link_graph: LinkGraph,
        project_root: Path,
        document_lookup: Callable[[str, str], Document | None] | None = None,
        settings: LinkResolutionSettings | None = None,
    ) -> None:
        self._graph = link_graph
        self._root = Path(project_root)
        self._lookup = document_lookup
        self.settings = settings or LinkResolutionSettings()
        self._lock = threading.Lock()
        self._cache: dict[tuple[str, str], _CacheEntry] = {}
        self._broken: dict[str, list[DocumentReference]] = {}

    @property
    def link_graph(self) -> LinkGraph:
        return self._graph

    def extract_references(self, text: str) -> list[DocumentReference]:
        return extract_references(text)

    # -- resolution --------------------------------------------------------

    def resolve(self, ref: DocumentReference, source_path: str, tenant_key: str) -> ResolvedReference:
        """Resolve a single reference. Never raises."""
        try:
            if ref.kind is ReferenceKind.EXTERNAL_URL:
                return ResolvedReference(ref, is_resolved=False)
            if ref.kind is ReferenceKind.WIKI_LINK:
                return self._resolve_wiki(ref, source_path)
            if ref.kind is ReferenceKind.MARKDOWN_LINK:
                return self._resolve_markdown(ref, source_path)
            if ref.kind is ReferenceKind.DOCUMENT_ID:
                return self._resolve_doc_id(ref, tenant_key)
            return self._resolve_file(ref, source_path)
        except Exception as exc:
            logger.warning("Failed to resolve reference '%s' from %s: %s", ref.target, source_path, exc)
            return ResolvedReference(ref, is_resolved=False, error=f"Resolution error: {exc}")

    def _existing(self, candidate: str | None) -> str | None:
        if candidate is None:
            return None
        if (self._root / candidate).is_file():
            return candidate
        return None

    def _normalize(self, path: str) -> str | None:
        """Normalize a root-relative path; None if it escapes the root."""
        normalized = posixpath.normpath(path.replace("\\", "/")).lstrip("/")
        if normalized in ("", ".") or normalized == ".." or normalized.startswith("../"):
            return None
        return normalized

    def _relative_to_source(self, target: str, source_path: str) -> str | None:
        source_dir = posixpath.dirname(source_path.replace("\\", "/"))
        return self._normalize(posixpath.join(source_dir, target))

    def _resolve_wiki(self, ref: DocumentReference, source_path: str) -> ResolvedReference:
        target = ref.target
        source_dir = posixpath.dirname(source_path.replace("\\", "/"))
        candidates = [
            posixpath.join(source_dir, f"{target}.md"),
            posixpath.join(source_dir, target, "index.md"),
            posixpath.join(source_dir, target, "README.md"),
            f"{target}.md",
            posixpath.join(target, "index.md"),
        ]
        for candidate in candidates:
            found = self._existing(self._normalize(candidate))
            if found:
                return ResolvedReference(ref, is_resolved=True, resolved_path=found)
        return ResolvedReference(ref, is_resolved=False, error=f"Document not found: {target}")

    def _resolve_markdown(self, ref: DocumentReference, source_path: str) -> ResolvedReference:
        target = ref.target
        if not target:
            return ResolvedReference(ref, is_resolved=False, error="Empty link target")
        base = self._relative_to_source(target, source_path)
        found = self._existing(base)
        if found is None and base is not None and not base.endswith(".md"):
            found = self._existing(f"{base}.md")
        if found:
            return ResolvedReference(ref, is_resolved=True, resolved_path=found)
        return ResolvedReference(ref, is_resolved=False, error=f"File not found: {target}")

    def _resolve_doc_id(self, ref: DocumentReference, tenant_key: str) -> ResolvedReference:
        if self._lookup is not None:
            document = self._lookup(tenant_key, ref.target)
            if document is not None:
                return ResolvedReference(ref, is_resolved=True, resolved_path=document.file_path)
            return ResolvedReference(ref, is_resolved=False, error=f"Document id not found: {ref.target}")
        return ResolvedReference(
            ref,
            is_resolved=False,
            error=f"Document ID resolution requires repository lookup: {ref.target}",
        )

    def _resolve_file(self, ref: DocumentReference, source_path: str) -> ResolvedReference:
        target = ref.target
        if target.startswith(("./", "../")):
            candidate = self._relative_to_source(target, source_path)
        else:
            candidate = self._normalize(target)
        found = self._existing(candidate)
        if found:
            return ResolvedReference(ref, is_resolved=True, resolved_path=found)
        return ResolvedReference(ref, is_resolved=False, error=f"File not found: {target}")

    def resolve_all(
        self,
        text: str,
        source_path: str,
        tenant_key: str,
        cancel: threading.Event | None = None,
    ) -> list[ResolvedReference]:
        """Resolve every reference in *text*.

        Raises ``OperationCancelledError`` if *cancel* is set between
        references; in that case the cache is left untouched.
        """
        key = (tenant_key, source_path)
        content_hash = _content_hash(text or "")
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None and cached.content_hash == content_hash:
                logger.debug("Using cached resolution for %s", source_path)
                return list(cached.resolved)

        refs = extract_references(text)
        results: list[ResolvedReference] = []
        broken: list[DocumentReference] = []
        for ref in refs:
            check_cancelled(cancel)
            resolved = self.resolve(ref, source_path, tenant_key)
            results.append(resolved)
            if not resolved.is_resolved and not resolved.is_external:
                broken.append(ref)

        with self._lock:
            self._cache[key] = _CacheEntry(content_hash=content_hash, resolved=list(results))
            self._broken[source_path] = broken

        logger.debug(
            "Resolved %d references from %s: %d resolved, %d broken",
            len(results),
            source_path,
            sum(1 for r in results if r.is_resolved),
            len(broken),
        )
        return results

    # -- graph maintenance -------------------------------------------------

    def update_link_graph(self, source_path: str, resolved: list[ResolvedReference]) -> None:
        """Replace the outgoing edges of *source_path* with *resolved* targets."""
        if not source_path or not source_path.strip():
            msg = "source_path must be a non-empty string"
            raise ValueError(msg)
        self._graph.clear_links_from(source_path)
        self._graph.add_document(source_path)
        for item in resolved:
            if item.is_resolved and item.resolved_path:
                self._graph.add_link(source_path, item.resolved_path)

    def get_backlinks(self, path: str) -> list[str]:
        return self._graph.get_incoming_links(path)

    def get_forward_links(self, path: str) -> list[str]:
        return self._graph.get_linked_documents(path)

    def get_broken_links(self, path: str) -> list[DocumentReference]:
        with self._lock:
            return list(self._broken.get(path, []))

    def get_linked_context(self, path: str) -> list[tuple[str, int]]:
        """Documents reachable from *path* within the configured bounds."""
        return self._graph.get_linked_documents_with_depth(
            path, self.settings.max_depth, self.settings.max_linked_docs
        )

    def clear_cache(self, path: str | None = None) -> None:
        with self._lock:
            if path is None:
                self._cache.clear()
                self._broken.clear()
                return
            for key in [k for k in self._cache if k[1] == path]:
                del self._cache[key]
            self._broken.pop(path, None)

    def remove_document(self, path: str) -> None:
        """Forget *path*: cache entries, broken links and graph vertex."""
        self.clear_cache(path)
        self._graph.remove_document(path)
