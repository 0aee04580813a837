"""Supersession tracking: documents replacing other documents."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from docweave.doc_sync.events import DocumentPromotedEvent, DocumentSupersededEvent
from docweave.doc_sync.parser import get_string_list
from docweave.models import BASELINE_LEVEL, check_cancelled

if TYPE_CHECKING:
    from collections.abc import Iterable

    from docweave.doc_sync.events import DocumentEventPublisher
    from docweave.models import Document, DocumentRepository

logger = logging.getLogger(__name__)

SUPERSEDED_SCORE_PENALTY = 0.5


@dataclass
class SupersessionResult:
    has_supersession: bool = False
    superseded_paths: list[str] = field(default_factory=list)
    not_found_paths: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SupersessionEntry:
    file_path: str
    superseded_by: str | None = None


@dataclass
class SupersessionChain:
    """Chain of documents ordered oldest to newest."""

    entries: list[SupersessionEntry] = field(default_factory=list)

    @property
    def current_document(self) -> str | None:
        return self.entries[-1].file_path if self.entries else None

    @property
    def original_document(self) -> str | None:
        return self.entries[0].file_path if self.entries else None

    @property
    def length(self) -> int:
        return len(self.entries)


@dataclass
class ScoredDocument:
    document: Document
    score: float
    is_superseded: bool = False
    superseded_by: str | None = None


def _normalize_target(path: str) -> str:
    path = path.strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path


class SupersessionTracker:
    """Track which documents supersede which, per tenant.

    The forward map holds superseder -> superseded paths; the reverse map
    holds superseded -> its single superseder.
    """

    def __init__(self, repository: DocumentRepository, publisher: DocumentEventPublisher) -> None:
        self._repository = repository
        self._publisher = publisher
        self._lock = threading.Lock()
        self._supersedes: dict[tuple[str, str], set[str]] = {}
        self._superseded_by: dict[tuple[str, str], str] = {}

    def supersession_targets(self, file_path: str, frontmatter: dict[str, Any] | None) -> list[str]:
        """Normalized, de-duplicated ``supersedes`` targets, excluding *file_path* itself."""
        targets = [_normalize_target(p) for p in get_string_list(frontmatter, "supersedes")]
        return [t for t in dict.fromkeys(targets) if t and t != file_path]

    def process_supersession(
        self,
        document: Document,
        frontmatter: dict[str, Any] | None,
        tenant_key: str,
        cancel: threading.Event | None = None,
    ) -> SupersessionResult:
        """Apply the ``supersedes`` frontmatter of *document*.

        Each existing target is recorded, demoted to the baseline level if
        needed and announced via the publisher. Missing targets are reported.
        Only the map update holds the lock; lookups, demotion and subscriber
        callbacks run outside it.
        """
        targets = self.supersession_targets(document.file_path, frontmatter)
        if not targets:
            return SupersessionResult()

        logger.info("Processing supersession: %s supersedes %d document(s)", document.file_path, len(targets))
        result = SupersessionResult(has_supersession=True)

        for target in targets:
            check_cancelled(cancel)
            try:
                superseded = self._repository.get_by_tenant_and_path(tenant_key, target)
            except Exception as exc:
                logger.exception("Lookup failed for superseded document %s", target)
                result.errors.append(f"Failed to look up {target}: {exc}")
                continue

            if superseded is None:
                logger.warning("Superseded document not found: %s", target)
                result.not_found_paths.append(target)
                continue

            self.restore_relation(document.file_path, target, tenant_key)
            result.superseded_paths.append(target)

            try:
                self._demote(superseded, document, tenant_key)
            except Exception as exc:
                logger.exception("Failed to demote superseded document %s", target)
                result.errors.append(f"Failed to demote {target}: {exc}")

            self._publisher.publish_superseded(
                DocumentSupersededEvent(
                    tenant_key=tenant_key,
                    superseded_path=target,
                    superseding_path=document.file_path,
                    superseded_id=superseded.id,
                )
            )

        logger.info(
            "Supersession processed: %d succeeded, %d not found",
            len(result.superseded_paths),
            len(result.not_found_paths),
        )
        return result

    def restore_relation(self, superseder: str, superseded: str, tenant_key: str) -> None:
        """Record that *superseder* replaces *superseded* without touching the store."""
        with self._lock:
            self._record(superseder, superseded, tenant_key)

    def _record(self, superseder: str, superseded: str, tenant_key: str) -> None:
        previous = self._superseded_by.get((tenant_key, superseded))
        if previous is not None and previous != superseder:
            self._supersedes.get((tenant_key, previous), set()).discard(superseded)
        self._supersedes.setdefault((tenant_key, superseder), set()).add(superseded)
        self._superseded_by[(tenant_key, superseded)] = superseder

    def _demote(self, superseded: Document, superseding: Document, tenant_key: str) -> None:
        previous_level = superseded.promotion_level
        if previous_level <= BASELINE_LEVEL:
            return
        if not self._repository.update_promotion_level(superseded.id, BASELINE_LEVEL):
            logger.warning("Promotion update reported no change for %s", superseded.file_path)
            return
        logger.info(
            "Lowered promotion level of superseded document %s from %s to %s",
            superseded.file_path,
            previous_level.value,
            BASELINE_LEVEL.value,
        )
        self._publisher.publish_promoted(
            DocumentPromotedEvent(
                tenant_key=tenant_key,
                file_path=superseded.file_path,
                document_id=superseded.id,
                previous_level=previous_level,
                new_level=BASELINE_LEVEL,
                reason=f"Superseded by {superseding.file_path}",
            )
        )

    # -- queries -----------------------------------------------------------

    def get_superseded_documents(self, path: str, tenant_key: str) -> list[str]:
        with self._lock:
            return sorted(self._supersedes.get((tenant_key, path), set()))

    def get_superseding_document(self, path: str, tenant_key: str) -> str | None:
        with self._lock:
            return self._superseded_by.get((tenant_key, path))

    def is_superseded(self, path: str, tenant_key: str) -> bool:
        return self.get_superseding_document(path, tenant_key) is not None

    def get_supersession_chain(self, path: str, tenant_key: str) -> SupersessionChain:
        """Return the chain containing *path*, oldest first. Cycles terminate the walk."""
        with self._lock:
            oldest = path
            visited = {path}
            while True:
                older = sorted(self._supersedes.get((tenant_key, oldest), set()))
                if not older or older[0] in visited:
                    break
                oldest = older[0]
                visited.add(oldest)

            entries: list[SupersessionEntry] = []
            seen: set[str] = set()
            current: str | None = oldest
            while current is not None and current not in seen:
                seen.add(current)
                newer = self._superseded_by.get((tenant_key, current))
                entries.append(SupersessionEntry(file_path=current, superseded_by=newer))
                current = newer
            return SupersessionChain(entries=entries)

    def adjust_scores_for_supersession(
        self,
        scored: Iterable[ScoredDocument],
        tenant_key: str,
    ) -> list[ScoredDocument]:
        """Penalize superseded documents and return results sorted by score."""
        adjusted: list[ScoredDocument] = []
        with self._lock:
            for item in scored:
                superseder = self._superseded_by.get((tenant_key, item.document.file_path))
                if superseder is None:
                    adjusted.append(item)
                    continue
                adjusted.append(
                    replace(
                        item,
                        score=item.score * SUPERSEDED_SCORE_PENALTY,
                        is_superseded=True,
                        superseded_by=superseder,
                    )
                )
        adjusted.sort(key=lambda s: s.score, reverse=True)
        return adjusted

    def remove_from_chain(self, path: str, tenant_key: str) -> None:
        """Forget *path* as superseder, as superseded, and inside any superseded set."""
        with self._lock:
            for older in self._supersedes.pop((tenant_key, path), set()):
                if self._superseded_by.get((tenant_key, older)) == path:
                    del self._superseded_by[(tenant_key, older)]
            self._superseded_by.pop((tenant_key, path), None)
            for (tenant, _), superseded in self._supersedes.items():
                if tenant == tenant_key:
                    superseded.discard(path)
