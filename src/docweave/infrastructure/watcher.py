"""File watcher: debounce and coalesce file changes, dispatch them for indexing."""

from __future__ import annotations

import enum
import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from watchfiles import Change, watch

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from docweave.doc_sync.indexer import DocumentIndexer, IndexResult
    from docweave.infrastructure.reconcile import ReconciliationResult, Reconciler

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 500
DEFAULT_RECONCILE_INTERVAL_S = 300.0
DEFAULT_INCLUDE_PATTERNS: tuple[str, ...] = ("**/*.md",)
DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = ("**/node_modules/**", "**/.git/**")

# Grouping window handed to watchfiles itself; our own debounce runs on top.
_RAW_DEBOUNCE_MS = 50


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Path filtering
# ---------------------------------------------------------------------------


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a ``/``-separated glob into a case-insensitive regex.

    ``**/`` matches zero or more directories, a trailing ``**`` matches
    anything, ``*`` and ``?`` never cross a ``/``.
    """
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts), re.IGNORECASE)


class PathFilter:
    """Include/exclude glob filter over root-relative POSIX paths.

    Exclude wins over include; an empty include list accepts everything.
    """

    def __init__(
        self,
        include_patterns: Iterable[str] = DEFAULT_INCLUDE_PATTERNS,
        exclude_patterns: Iterable[str] = DEFAULT_EXCLUDE_PATTERNS,
    ) -> None:
        self.include_patterns = tuple(include_patterns)
        self.exclude_patterns = tuple(exclude_patterns)
        self._include = [glob_to_regex(p) for p in self.include_patterns]
        self._exclude = [glob_to_regex(p) for p in self.exclude_patterns]

    def matches(self, relative_path: str) -> bool:
        path = relative_path.replace("\\", "/").lstrip("/")
        if any(rx.fullmatch(path) for rx in self._exclude):
            return False
        if not self._include:
            return True
        return any(rx.fullmatch(path) for rx in self._include)


# ---------------------------------------------------------------------------
# Change events
# ---------------------------------------------------------------------------


class FileChangeType(enum.Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class FileChangeEvent:
    """A pending change. Paths are relative to the watched root, ``/``-separated."""

    file_path: str
    change_type: FileChangeType
    timestamp: datetime = field(default_factory=_now)
    old_path: str | None = None


def coalesce_events(existing: FileChangeEvent, incoming: FileChangeEvent) -> FileChangeEvent:
    """Merge two pending events for the same path.

    A rename or delete always wins, a pending create stays a create, and
    anything else is replaced by the newer event.
    """
    if incoming.change_type in (FileChangeType.RENAMED, FileChangeType.DELETED):
        return incoming
    if existing.change_type is FileChangeType.CREATED:
        return replace(existing, timestamp=incoming.timestamp)
    return incoming


class DispatchGate:
    """Capacity-one, non-blocking gate shared by batch dispatch and reconciliation.

    Work that finds the gate busy is dropped, not queued.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[bool]:
        """Yield True if the gate was acquired; release on exit."""
        acquired = self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()


# ---------------------------------------------------------------------------
# Watcher
# ---------------------------------------------------------------------------


class FileWatcher:
    """Watch one directory tree and emit debounced, coalesced batches.

    A background thread runs :func:`watchfiles.watch`; the raw entry points
    (``on_created`` and friends) only update the pending map under a lock and
    restart the debounce timer. When the timer fires the pending map is
    swapped for an empty one and handed to *on_batch*.
    """

    def __init__(
        self,
        *,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        path_filter: PathFilter | None = None,
        on_batch: Callable[[list[FileChangeEvent]], None] | None = None,
    ) -> None:
        if debounce_ms < 0:
            msg = "debounce_ms cannot be negative"
            raise ValueError(msg)
        self.debounce_ms = debounce_ms
        self.path_filter = path_filter or PathFilter()
        self.on_batch = on_batch

        self._lock = threading.Lock()
        self._pending: dict[str, FileChangeEvent] = {}
        self._timer: threading.Timer | None = None
        self._root: Path | None = None
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None
        self._restart_attempted = False

    # -- lifecycle ---------------------------------------------------------

    @property
    def is_watching(self) -> bool:
        return self._root is not None

    @property
    def watched_path(self) -> Path | None:
        return self._root

    def start_watching(self, root: Path | str) -> None:
        """Start watching *root* recursively.

        Raises
        ------
        FileNotFoundError
            If *root* is not an existing directory.
        RuntimeError
            If the watcher is already running.
        """
        root = Path(root).resolve()
        if not root.is_dir():
            msg = f"Directory not found: {root}"
            raise FileNotFoundError(msg)
        if self.is_watching:
            msg = f"Already watching {self._root}"
            raise RuntimeError(msg)
        self._root = root
        self._restart_attempted = False
        self._spawn(root)
        logger.info("Watching %s (debounce %dms)", root, self.debounce_ms)

    def stop_watching(self) -> None:
        """Stop the watcher thread, cancel the timer and drop pending changes."""
        stop_event = self._stop_event
        thread = self._thread
        if stop_event is not None:
            stop_event.set()
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)
        was_watching = self._root is not None
        self._root = None
        self._thread = None
        self._stop_event = None
        if was_watching:
            logger.info("Stopped watching")

    def _spawn(self, root: Path) -> None:
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._watch_loop,
            args=(root, stop_event),
            name="docweave-watcher",
            daemon=True,
        )
        self._stop_event = stop_event
        self._thread = thread
        thread.start()

    def _watch_loop(self, root: Path, stop_event: threading.Event) -> None:
        try:
            for raw in watch(
                root,
                recursive=True,
                debounce=_RAW_DEBOUNCE_MS,
                step=50,
                stop_event=stop_event,
            ):
                if stop_event.is_set():
                    return
                self.handle_raw_changes(raw)
        except Exception as exc:
            if stop_event.is_set():
                return
            logger.error("File watcher error on %s: %s", root, exc)
            self._restart_after_error(root)

    def _restart_after_error(self, root: Path) -> None:
        if self._restart_attempted:
            logger.error("File watcher failed again; staying stopped")
            self._root = None
            return
        self._restart_attempted = True
        logger.warning("Restarting file watcher on %s", root)
        try:
            if not root.is_dir():
                msg = f"Directory not found: {root}"
                raise FileNotFoundError(msg)
            self._spawn(root)
        except Exception as exc:
            logger.error("File watcher restart failed: %s", exc)
            self._root = None

    # -- raw events --------------------------------------------------------

    def handle_raw_changes(self, raw: Iterable[tuple[Change, str]]) -> None:
        """Translate one watchfiles batch into entry-point calls.

        watchfiles reports a rename as a deletion plus an addition, so a
        batch holding exactly those two changes is treated as a rename.
        """
        changes = list(raw)
        deleted = [p for c, p in changes if c == Change.deleted]
        added = [p for c, p in changes if c == Change.added]
        if len(changes) == 2 and len(deleted) == 1 and len(added) == 1:
            self.on_renamed(deleted[0], added[0])
            return
        for change, path in changes:
            if change == Change.added:
                self.on_created(path)
            elif change == Change.modified:
                self.on_modified(path)
            elif change == Change.deleted:
                self.on_deleted(path)

    def on_created(self, path: Path | str) -> None:
        self._accept(path, FileChangeType.CREATED)

    def on_modified(self, path: Path | str) -> None:
        self._accept(path, FileChangeType.MODIFIED)

    def on_deleted(self, path: Path | str) -> None:
        self._accept(path, FileChangeType.DELETED)

    def on_renamed(self, old_path: Path | str, new_path: Path | str) -> None:
        old_rel = self._relative(old_path)
        new_rel = self._relative(new_path)
        if old_rel is not None and not self.path_filter.matches(old_rel):
            old_rel = None
        if new_rel is not None and not self.path_filter.matches(new_rel):
            new_rel = None
        if old_rel and new_rel:
            self._enqueue(FileChangeEvent(new_rel, FileChangeType.RENAMED, old_path=old_rel))
        elif old_rel:
            self._enqueue(FileChangeEvent(old_rel, FileChangeType.DELETED))
        elif new_rel:
            self._enqueue(FileChangeEvent(new_rel, FileChangeType.CREATED))
        else:
            logger.debug("Ignoring rename %s -> %s", old_path, new_path)

    def _relative(self, path: Path | str) -> str | None:
        p = Path(path)
        if self._root is None or not p.is_absolute():
            return p.as_posix()
        try:
            return p.relative_to(self._root).as_posix()
        except ValueError:
            try:
                return p.resolve().relative_to(self._root).as_posix()
            except ValueError:
                return None

    def _accept(self, path: Path | str, change_type: FileChangeType) -> None:
        rel = self._relative(path)
        if rel is None or not self.path_filter.matches(rel):
            logger.debug("Ignoring %s event for %s", change_type.value, path)
            return
        self._enqueue(FileChangeEvent(rel, change_type))

    def _enqueue(self, event: FileChangeEvent) -> None:
        with self._lock:
            existing = self._pending.get(event.file_path)
            self._pending[event.file_path] = coalesce_events(existing, event) if existing else event
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_ms / 1000, self._drain)
            self._timer.daemon = True
            self._timer.start()

    # -- dispatch ----------------------------------------------------------

    @property
    def pending(self) -> dict[str, FileChangeEvent]:
        with self._lock:
            return dict(self._pending)

    def flush(self) -> list[FileChangeEvent]:
        """Cancel the timer and dispatch whatever is pending right now."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
        return self._drain()

    def _drain(self) -> list[FileChangeEvent]:
        with self._lock:
            batch, self._pending = self._pending, {}
            self._timer = None
        events = sorted(batch.values(), key=lambda e: e.timestamp)
        if not events:
            return events
        logger.info("Dispatching %d file change(s)", len(events))
        if self.on_batch is not None:
            try:
                self.on_batch(events)
            except Exception:
                logger.exception("File change batch handler failed")
        return events


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileChangeProcessingResult:
    success: bool
    file_path: str
    change_type: FileChangeType
    error: str | None = None
    index_result: IndexResult | None = field(default=None, repr=False, compare=False)


class FileChangeProcessor:
    """Apply file change events to the index."""

    def __init__(self, indexer: DocumentIndexer) -> None:
        self._indexer = indexer

    def process(
        self,
        event: FileChangeEvent,
        cancel: threading.Event | None = None,
    ) -> list[FileChangeProcessingResult]:
        try:
            if event.change_type in (FileChangeType.CREATED, FileChangeType.MODIFIED):
                return [self._index(event.file_path, event.change_type, cancel)]
            if event.change_type is FileChangeType.DELETED:
                return [self._delete(event.file_path, event.change_type)]
            results: list[FileChangeProcessingResult] = []
            if event.old_path:
                results.append(self._delete(event.old_path, event.change_type))
            results.append(self._index(event.file_path, event.change_type, cancel))
            return results
        except Exception as exc:
            logger.exception("Failed to process %s for %s", event.change_type.value, event.file_path)
            return [FileChangeProcessingResult(False, event.file_path, event.change_type, str(exc))]

    def _index(
        self,
        file_path: str,
        change_type: FileChangeType,
        cancel: threading.Event | None,
    ) -> FileChangeProcessingResult:
        result = self._indexer.index_file(file_path, cancel=cancel)
        error = "; ".join(result.errors) if result.errors else None
        return FileChangeProcessingResult(result.is_success, file_path, change_type, error, index_result=result)

    def _delete(self, file_path: str, change_type: FileChangeType) -> FileChangeProcessingResult:
        ok = self._indexer.delete_path(file_path)
        return FileChangeProcessingResult(ok, file_path, change_type, None if ok else "Delete was vetoed or failed")

    def process_many(
        self,
        events: Iterable[FileChangeEvent],
        cancel: threading.Event | None = None,
    ) -> list[FileChangeProcessingResult]:
        """Process *events* in order, stopping between events once *cancel* is set."""
        results: list[FileChangeProcessingResult] = []
        for event in events:
            if cancel is not None and cancel.is_set():
                logger.info("File change processing cancelled")
                break
            results.extend(self.process(event, cancel=cancel))
        self._indexer.resolve_pending_supersession(
            (r.index_result for r in results if r.index_result is not None), cancel
        )
        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.warning("%d of %d file change(s) failed", failed, len(results))
        return results


# ---------------------------------------------------------------------------
# Sync service
# ---------------------------------------------------------------------------


class SyncService:
    """Wire watcher, processor and reconciler behind one dispatch gate."""

    def __init__(
        self,
        indexer: DocumentIndexer,
        *,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        path_filter: PathFilter | None = None,
        reconciler: Reconciler | None = None,
        reconcile_interval_s: float | None = DEFAULT_RECONCILE_INTERVAL_S,
    ) -> None:
        from docweave.infrastructure.reconcile import Reconciler

        self.indexer = indexer
        self.path_filter = path_filter or PathFilter()
        self.gate = DispatchGate()
        self.processor = FileChangeProcessor(indexer)
        self.reconciler = reconciler or Reconciler(indexer.repository, self.path_filter)
        self.watcher = FileWatcher(
            debounce_ms=debounce_ms,
            path_filter=self.path_filter,
            on_batch=self.handle_batch,
        )
        self.reconcile_interval_s = reconcile_interval_s
        self._cancel = threading.Event()
        self._root: Path | None = None
        self._reconcile_thread: threading.Thread | None = None
        self.last_results: list[FileChangeProcessingResult] = []

    @property
    def is_running(self) -> bool:
        return self.watcher.is_watching

    def start(self, root: Path | str) -> ReconciliationResult | None:
        """Start watching *root*, heal drift accumulated while stopped, then reconcile periodically.

        The periodic pass picks up batches the dispatch gate dropped.
        """
        self._cancel.clear()
        self._root = Path(root).resolve()
        self.watcher.start_watching(self._root)
        result = self.reconcile_and_apply(cancel=self._cancel)
        if self.reconcile_interval_s:
            self._reconcile_thread = threading.Thread(
                target=self._reconcile_loop,
                args=(self.reconcile_interval_s,),
                name="docweave-reconcile",
                daemon=True,
            )
            self._reconcile_thread.start()
        return result

    def stop(self) -> None:
        self._cancel.set()
        self.watcher.stop_watching()
        thread = self._reconcile_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)
        self._reconcile_thread = None

    def _reconcile_loop(self, interval_s: float) -> None:
        while not self._cancel.wait(interval_s):
            try:
                result = self.reconcile_and_apply(cancel=self._cancel)
            except Exception:
                logger.exception("Periodic reconciliation failed")
                continue
            if result is not None and result.has_changes:
                logger.info("Periodic reconciliation applied %d action(s)", result.total_actions)

    def handle_batch(self, events: list[FileChangeEvent]) -> None:
        with self.gate.hold() as acquired:
            if not acquired:
                logger.debug("Dispatch gate busy; dropping %d change(s)", len(events))
                return
            self.last_results = self.processor.process_many(events, cancel=self._cancel)

    def reconcile_and_apply(
        self,
        root: Path | str | None = None,
        cancel: threading.Event | None = None,
    ) -> ReconciliationResult | None:
        """Reconcile disk against the repository and apply the actions.

        Returns None when the gate is busy (the pass is dropped).
        """
        target = Path(root).resolve() if root is not None else self._root or self.indexer.base_path
        with self.gate.hold() as acquired:
            if not acquired:
                logger.debug("Dispatch gate busy; skipping reconciliation")
                return None
            result = self.reconciler.reconcile(target, self.indexer.tenant_key, cancel=cancel)
            if result.has_changes:
                self.reconciler.apply(result, self.indexer, cancel=cancel)
            return result
