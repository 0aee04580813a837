"""Project configuration: ``.docweave/config.yml``."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from docweave.doc_sync.chunker import ChunkingOptions
from docweave.graph.cross_refs import LinkResolutionSettings
from docweave.infrastructure.watcher import (
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_EXCLUDE_PATTERNS,
    DEFAULT_INCLUDE_PATTERNS,
    DEFAULT_RECONCILE_INTERVAL_S,
    PathFilter,
)

logger = logging.getLogger(__name__)

CONFIG_DIR = ".docweave"
CONFIG_FILE = "config.yml"
DEFAULT_DB_NAME = "docweave.db"
DEFAULT_BRANCH = "main"


class ConfigError(ValueError):
    """Raised when config.yml cannot be read or holds invalid values."""


@dataclass(frozen=True)
class WatcherSettings:
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    include_patterns: tuple[str, ...] = DEFAULT_INCLUDE_PATTERNS
    exclude_patterns: tuple[str, ...] = DEFAULT_EXCLUDE_PATTERNS
    reconcile_interval_s: float = DEFAULT_RECONCILE_INTERVAL_S

    def path_filter(self) -> PathFilter:
        return PathFilter(self.include_patterns, self.exclude_patterns)


@dataclass(frozen=True)
class SyncConfig:
    project_root: Path
    project_name: str
    branch: str = DEFAULT_BRANCH
    db_path: Path = Path(CONFIG_DIR) / DEFAULT_DB_NAME
    watcher: WatcherSettings = field(default_factory=WatcherSettings)
    chunking: ChunkingOptions = field(default_factory=ChunkingOptions)
    links: LinkResolutionSettings = field(default_factory=LinkResolutionSettings)
    embedding: dict[str, Any] | None = None


def detect_branch(project_root: Path) -> str:
    """Read the current branch from ``.git/HEAD``; ``main`` when unknown."""
    head = project_root / ".git" / "HEAD"
    try:
        content = head.read_text(encoding="utf-8").strip()
    except OSError:
        return DEFAULT_BRANCH
    prefix = "ref: refs/heads/"
    if content.startswith(prefix):
        return content[len(prefix) :] or DEFAULT_BRANCH
    # Detached HEAD: use the abbreviated commit.
    return content[:12] or DEFAULT_BRANCH


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        msg = f"'{key}' must be a mapping"
        raise ConfigError(msg)
    return value


def _int(section: dict[str, Any], key: str, default: int, prefix: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"'{prefix}.{key}' must be an integer, got {value!r}"
        raise ConfigError(msg)
    return value


def _seconds(section: dict[str, Any], key: str, default: float, prefix: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"'{prefix}.{key}' must be a number of seconds, got {value!r}"
        raise ConfigError(msg)
    if value < 0:
        msg = f"'{prefix}.{key}' cannot be negative"
        raise ConfigError(msg)
    return float(value)


def _patterns(section: dict[str, Any], key: str, default: tuple[str, ...], prefix: str) -> tuple[str, ...]:
    value = section.get(key, list(default))
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        msg = f"'{prefix}.{key}' must be a list of glob strings"
        raise ConfigError(msg)
    return tuple(value)


def parse_config(data: dict[str, Any], project_root: Path) -> SyncConfig:
    """Build a :class:`SyncConfig` from parsed YAML.

    Raises
    ------
    ConfigError
        On values of the wrong type or out of range.
    """
    watcher_raw = _section(data, "watcher")
    debounce = _int(watcher_raw, "debounce_ms", DEFAULT_DEBOUNCE_MS, "watcher")
    if debounce < 0:
        msg = "'watcher.debounce_ms' cannot be negative"
        raise ConfigError(msg)
    watcher = WatcherSettings(
        debounce_ms=debounce,
        include_patterns=_patterns(watcher_raw, "include", DEFAULT_INCLUDE_PATTERNS, "watcher"),
        exclude_patterns=_patterns(watcher_raw, "exclude", DEFAULT_EXCLUDE_PATTERNS, "watcher"),
        reconcile_interval_s=_seconds(
            watcher_raw, "reconcile_interval_s", DEFAULT_RECONCILE_INTERVAL_S, "watcher"
        ),
    )

    chunking_raw = _section(data, "chunking")
    defaults = ChunkingOptions()
    chunking = ChunkingOptions(
        chunk_size=_int(chunking_raw, "chunk_size", defaults.chunk_size, "chunking"),
        overlap=_int(chunking_raw, "overlap", defaults.overlap, "chunking"),
        min_chunk_size=_int(chunking_raw, "min_chunk_size", defaults.min_chunk_size, "chunking"),
        respect_paragraph_boundaries=bool(
            chunking_raw.get("respect_paragraph_boundaries", defaults.respect_paragraph_boundaries)
        ),
    )
    try:
        chunking.validate()
    except ValueError as exc:
        msg = f"'chunking': {exc}"
        raise ConfigError(msg) from exc

    links_raw = _section(data, "links")
    links = LinkResolutionSettings(
        max_depth=_int(links_raw, "max_depth", 2, "links"),
        max_linked_docs=_int(links_raw, "max_linked_docs", 5, "links"),
    )

    embedding = data.get("embedding")
    if embedding is not None and not isinstance(embedding, dict):
        msg = "'embedding' must be a mapping"
        raise ConfigError(msg)

    db_path = Path(str(data.get("db_path", Path(CONFIG_DIR) / DEFAULT_DB_NAME)))
    if not db_path.is_absolute():
        db_path = project_root / db_path

    return SyncConfig(
        project_root=project_root,
        project_name=str(data.get("project_name") or project_root.name),
        branch=str(data.get("branch") or detect_branch(project_root)),
        db_path=db_path,
        watcher=watcher,
        chunking=chunking,
        links=links,
        embedding=embedding,
    )


def load_config(project_root: Path | str) -> SyncConfig:
    """Load ``.docweave/config.yml`` under *project_root*; defaults when absent."""
    root = Path(project_root).resolve()
    config_path = root / CONFIG_DIR / CONFIG_FILE
    if not config_path.is_file():
        logger.debug("No config at %s, using defaults", config_path)
        return parse_config({}, root)

    try:
        with config_path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Failed to read {config_path}: {exc}"
        raise ConfigError(msg) from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"{config_path} must contain a mapping"
        raise ConfigError(msg)
    return parse_config(data, root)
