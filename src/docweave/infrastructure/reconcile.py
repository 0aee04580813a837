"""Reconciliation: compare the file tree with stored documents and heal drift."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from docweave.infrastructure.watcher import PathFilter
from docweave.models import check_cancelled

if TYPE_CHECKING:
    from docweave.doc_sync.indexer import DocumentIndexer, IndexResult
    from docweave.models import DocumentRepository

logger = logging.getLogger(__name__)

# Timestamps closer than this are considered equal.
MTIME_TOLERANCE_SECONDS = 1.0


class ReconciliationAction(enum.Enum):
    INDEX = "index"
    REINDEX = "reindex"
    REMOVE = "remove"


@dataclass(frozen=True)
class ReconciliationItem:
    file_path: str
    action: ReconciliationAction
    reason: str


@dataclass
class ReconciliationResult:
    """Planned actions. Computing it has no side effects."""

    root: Path
    timestamp: datetime
    new_files: list[ReconciliationItem] = field(default_factory=list)
    modified_files: list[ReconciliationItem] = field(default_factory=list)
    deleted_files: list[ReconciliationItem] = field(default_factory=list)
    total_on_disk: int = 0
    total_in_store: int = 0

    @property
    def totals(self) -> dict[str, int]:
        return {
            "new": len(self.new_files),
            "modified": len(self.modified_files),
            "deleted": len(self.deleted_files),
            "on_disk": self.total_on_disk,
            "in_store": self.total_in_store,
        }

    @property
    def total_actions(self) -> int:
        return len(self.new_files) + len(self.modified_files) + len(self.deleted_files)

    @property
    def has_changes(self) -> bool:
        return self.total_actions > 0

    @property
    def all_items(self) -> list[ReconciliationItem]:
        return [*self.new_files, *self.modified_files, *self.deleted_files]

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": str(self.root),
            "timestamp": self.timestamp.isoformat(),
            "totals": self.totals,
            "items": [
                {"path": i.file_path, "action": i.action.value, "reason": i.reason} for i in self.all_items
            ],
        }


@dataclass
class ApplyResult:
    indexed: int = 0
    removed: int = 0
    errors: list[str] = field(default_factory=list)


def _file_mtime(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


def _as_utc(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


class Reconciler:
    """Compute and apply the difference between disk and the repository."""

    def __init__(self, repository: DocumentRepository, path_filter: PathFilter | None = None) -> None:
        self._repository = repository
        self.path_filter = path_filter or PathFilter()

    def scan(self, root: Path, cancel: threading.Event | None = None) -> dict[str, datetime]:
        """Return ``{relative_path: mtime}`` for matching files under *root*."""
        files: dict[str, datetime] = {}
        for path in sorted(root.rglob("*")):
            check_cancelled(cancel)
            rel = path.relative_to(root).as_posix()
            if not self.path_filter.matches(rel):
                continue
            try:
                if not path.is_file():
                    continue
                files[rel] = _file_mtime(path)
            except OSError as exc:
                logger.warning("Skipping unreadable file %s: %s", rel, exc)
        return files

    def reconcile(
        self,
        root: Path | str,
        tenant_key: str,
        cancel: threading.Event | None = None,
    ) -> ReconciliationResult:
        """Classify files as new, modified or deleted relative to the store.

        Raises
        ------
        FileNotFoundError
            If *root* is not an existing directory.
        """
        root = Path(root)
        if not root.is_dir():
            msg = f"Directory not found: {root}"
            raise FileNotFoundError(msg)

        on_disk = self.scan(root, cancel)
        stored = {doc.file_path: doc for doc in self._repository.get_all_for_tenant(tenant_key)}

        result = ReconciliationResult(
            root=root,
            timestamp=datetime.now(tz=timezone.utc),
            total_on_disk=len(on_disk),
            total_in_store=len(stored),
        )
        for rel, mtime in on_disk.items():
            doc = stored.get(rel)
            if doc is None:
                result.new_files.append(
                    ReconciliationItem(rel, ReconciliationAction.INDEX, "File not in index")
                )
                continue
            drift = abs((mtime - _as_utc(doc.last_modified)).total_seconds())
            if drift > MTIME_TOLERANCE_SECONDS:
                result.modified_files.append(
                    ReconciliationItem(
                        rel,
                        ReconciliationAction.REINDEX,
                        f"Modified on disk ({drift:.1f}s newer or older than index)",
                    )
                )
        for rel in sorted(set(stored) - set(on_disk)):
            result.deleted_files.append(
                ReconciliationItem(rel, ReconciliationAction.REMOVE, "File no longer on disk")
            )

        logger.info(
            "Reconciliation of %s: %d new, %d modified, %d deleted",
            root,
            len(result.new_files),
            len(result.modified_files),
            len(result.deleted_files),
        )
        return result

    def apply(
        self,
        result: ReconciliationResult,
        indexer: DocumentIndexer,
        cancel: threading.Event | None = None,
    ) -> ApplyResult:
        """Index new/modified files and remove deleted ones, stopping on cancel."""
        applied = ApplyResult()
        index_results: list[IndexResult] = []
        for item in result.all_items:
            if cancel is not None and cancel.is_set():
                logger.info("Reconciliation apply cancelled")
                break
            if item.action is ReconciliationAction.REMOVE:
                if indexer.delete_path(item.file_path):
                    applied.removed += 1
                else:
                    applied.errors.append(f"{item.file_path}: delete failed")
                continue
            index_result = indexer.index_file(item.file_path, cancel=cancel)
            if index_result.is_success:
                applied.indexed += 1
            else:
                applied.errors.extend(f"{item.file_path}: {e}" for e in index_result.errors)
            index_results.append(index_result)
        indexer.resolve_pending_supersession(index_results, cancel)
        if applied.errors:
            logger.warning("Reconciliation apply finished with %d error(s)", len(applied.errors))
        return applied
