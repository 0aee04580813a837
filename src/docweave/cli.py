"""docweave CLI entry point."""

from __future__ import annotations

import json
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import click

from docweave import __version__

if TYPE_CHECKING:
    from docweave.config import SyncConfig
    from docweave.doc_sync.indexer import DocumentIndexer, IndexResult
    from docweave.graph.cross_refs import CrossReferenceResolver
    from docweave.graph.link_graph import LinkGraph
    from docweave.graph.supersession import SupersessionTracker
    from docweave.infrastructure.db import SQLiteDocumentRepository

_PROJECT_OPTION = click.option(
    "--project",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Project root (default: current directory).",
)


def _configure_logging(*, verbose: bool, quiet: bool) -> None:
    from rich.logging import RichHandler

    level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(show_path=False, rich_tracebacks=verbose)],
        force=True,
    )


@click.group()
@click.version_option(version=__version__, prog_name="docweave")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output (errors only).")
@click.pass_context
def main(ctx: click.Context, *, verbose: bool, quiet: bool) -> None:
    """docweave - Markdown document sync and indexing engine."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    _configure_logging(verbose=verbose, quiet=quiet)


# ---------------------------------------------------------------------------
# Workspace wiring
# ---------------------------------------------------------------------------


@dataclass
class _Workspace:
    config: SyncConfig
    tenant_key: str
    repository: SQLiteDocumentRepository
    link_graph: LinkGraph
    cross_refs: CrossReferenceResolver
    supersession: SupersessionTracker
    indexer: DocumentIndexer

    def close(self) -> None:
        self.repository.close()


def _open_workspace(project: Path | None) -> _Workspace:
    from docweave.config import ConfigError, load_config
    from docweave.doc_sync.events import DocumentEventPublisher
    from docweave.doc_sync.indexer import DocumentIndexer, IndexResult
    from docweave.doc_sync.validator import DocTypeRegistry, DocumentValidator
    from docweave.graph.cross_refs import CrossReferenceResolver
    from docweave.graph.link_graph import LinkGraph
    from docweave.graph.supersession import SupersessionTracker
    from docweave.infrastructure.db import SQLiteDocumentRepository
    from docweave.infrastructure.embeddings import create_embedding_service, parse_embedding_config
    from docweave.tenant import compute_path_hash, generate_tenant_key

    project_root = (project or Path.cwd()).resolve()
    try:
        config = load_config(project_root)
        embedding_config = parse_embedding_config(config.embedding)
    except (ConfigError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    config.db_path.parent.mkdir(parents=True, exist_ok=True)
    repository = SQLiteDocumentRepository.open(config.db_path)
    tenant_key = generate_tenant_key(config.project_name, config.branch, compute_path_hash(str(project_root)))
    link_graph = LinkGraph()
    cross_refs = CrossReferenceResolver(link_graph, project_root, settings=config.links)
    supersession = SupersessionTracker(repository, DocumentEventPublisher())
    indexer = DocumentIndexer(
        repository,
        create_embedding_service(embedding_config),
        tenant_key,
        project_root,
        validator=DocumentValidator(DocTypeRegistry()),
        chunking=config.chunking,
        cross_refs=cross_refs,
        supersession=supersession,
    )
    return _Workspace(
        config=config,
        tenant_key=tenant_key,
        repository=repository,
        link_graph=link_graph,
        cross_refs=cross_refs,
        supersession=supersession,
        indexer=indexer,
    )


def _rebuild_relations(ws: _Workspace) -> None:
    """Populate the in-memory link graph and supersession map from the stored documents.

    Read-only: promotion levels in the store are left as they are.
    """
    from docweave.doc_sync.parser import parse_document

    documents = ws.repository.get_all_for_tenant(ws.tenant_key)
    stored = {d.file_path for d in documents}
    for document in documents:
        path = ws.config.project_root / document.file_path
        if not path.is_file():
            continue
        parsed = parse_document(path.read_text(encoding="utf-8"))
        resolved = ws.cross_refs.resolve_all(parsed.body, document.file_path, ws.tenant_key)
        ws.cross_refs.update_link_graph(document.file_path, resolved)
        for target in ws.supersession.supersession_targets(document.file_path, parsed.frontmatter):
            if target in stored:
                ws.supersession.restore_relation(document.file_path, target, ws.tenant_key)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@main.command("watch")
@click.option("--debounce", default=None, type=int, help="Debounce delay in ms (default: from config).")
@_PROJECT_OPTION
def watch_cmd(*, debounce: int | None, project: Path | None) -> None:
    """Watch Markdown files and keep the index in sync.

    Runs a reconciliation pass on start, then indexes changes as they
    happen and re-reconciles every ``watcher.reconcile_interval_s``
    seconds. Press Ctrl+C to stop.
    """
    from rich.console import Console

    from docweave.infrastructure.watcher import SyncService

    console = Console()
    ws = _open_workspace(project)
    settings = ws.config.watcher
    service = SyncService(
        ws.indexer,
        debounce_ms=settings.debounce_ms if debounce is None else debounce,
        path_filter=settings.path_filter(),
        reconcile_interval_s=settings.reconcile_interval_s,
    )

    console.print(f"[bold blue]Watching:[/bold blue] {ws.config.project_root}")
    console.print(
        f"[dim]Debounce: {service.watcher.debounce_ms}ms  |  "
        f"Reconcile every {settings.reconcile_interval_s:g}s  |  Press Ctrl+C to stop[/dim]"
    )
    try:
        result = service.start(ws.config.project_root)
        if result is not None:
            console.print(
                f"[green]Reconciled[/green] {result.total_actions} action(s): "
                f"{len(result.new_files)} new, {len(result.modified_files)} modified, "
                f"{len(result.deleted_files)} deleted"
            )
        while service.is_running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        console.print("\n[yellow]Watch stopped.[/yellow]")
    finally:
        service.stop()
        ws.close()


@main.command()
@click.option("--apply", "apply_changes", is_flag=True, help="Apply the planned actions.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@_PROJECT_OPTION
def reconcile(*, apply_changes: bool, as_json: bool, project: Path | None) -> None:
    """Compare files on disk with the index and report (or fix) drift."""
    from rich.console import Console
    from rich.table import Table

    from docweave.infrastructure.reconcile import Reconciler

    ws = _open_workspace(project)
    try:
        reconciler = Reconciler(ws.repository, ws.config.watcher.path_filter())
        result = reconciler.reconcile(ws.config.project_root, ws.tenant_key)
        applied = reconciler.apply(result, ws.indexer) if apply_changes and result.has_changes else None
    finally:
        ws.close()

    if as_json:
        data = result.to_dict()
        if applied is not None:
            data["applied"] = {"indexed": applied.indexed, "removed": applied.removed, "errors": applied.errors}
        click.echo(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        console = Console()
        if not result.has_changes:
            console.print("[green]Index is in sync.[/green]")
        else:
            table = Table(title="Reconciliation")
            table.add_column("Action")
            table.add_column("Path")
            table.add_column("Reason", style="dim")
            for item in result.all_items:
                table.add_row(item.action.value, item.file_path, item.reason)
            console.print(table)
        if applied is not None:
            console.print(f"Indexed {applied.indexed}, removed {applied.removed}.")
            for error in applied.errors:
                console.print(f"[red]{error}[/red]")

    if applied is not None and applied.errors:
        sys.exit(1)


@main.command()
@_PROJECT_OPTION
def reindex(*, project: Path | None) -> None:
    """Index every matching file and drop records whose file is gone."""
    from docweave.infrastructure.reconcile import Reconciler

    ws = _open_workspace(project)
    failed: list[str] = []
    indexed = 0
    results: list[IndexResult] = []
    try:
        reconciler = Reconciler(ws.repository, ws.config.watcher.path_filter())
        on_disk = reconciler.scan(ws.config.project_root)
        for rel in on_disk:
            result = ws.indexer.index_file(rel)
            results.append(result)
            if result.is_success:
                indexed += 1
            else:
                failed.extend(f"{rel}: {e}" for e in result.errors)
        ws.indexer.resolve_pending_supersession(results)
        removed = 0
        for document in ws.repository.get_all_for_tenant(ws.tenant_key):
            if document.file_path not in on_disk and ws.indexer.delete(document.id):
                removed += 1
    finally:
        ws.close()

    click.echo(f"Indexed {indexed} document(s), removed {removed}.")
    for line in failed:
        click.echo(f"Error: {line}", err=True)
    if failed:
        sys.exit(1)


@main.command()
@click.argument("path")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@_PROJECT_OPTION
def links(path: str, *, as_json: bool, project: Path | None) -> None:
    """Show forward links, backlinks and broken links of PATH."""
    ws = _open_workspace(project)
    try:
        _rebuild_relations(ws)
        forward = ws.cross_refs.get_forward_links(path)
        back = ws.cross_refs.get_backlinks(path)
        broken = ws.cross_refs.get_broken_links(path)
    finally:
        ws.close()

    if as_json:
        data = {
            "path": path,
            "forward": forward,
            "backlinks": back,
            "broken": [{"target": r.target, "line": r.line, "kind": r.kind.value} for r in broken],
        }
        click.echo(json.dumps(data, indent=2, ensure_ascii=False))
        return

    click.echo(f"{path}")
    click.echo(f"  links to ({len(forward)}):")
    for target in forward:
        click.echo(f"    -> {target}")
    click.echo(f"  linked from ({len(back)}):")
    for source in back:
        click.echo(f"    <- {source}")
    if broken:
        click.echo(f"  broken ({len(broken)}):")
        for ref in broken:
            click.echo(f"    x {ref.target} (line {ref.line})")


@main.command("check-cycles")
@_PROJECT_OPTION
def check_cycles(*, project: Path | None) -> None:
    """Report link cycles between documents. Exits 1 when any are found."""
    ws = _open_workspace(project)
    try:
        _rebuild_relations(ws)
        cycles: list[list[str]] = []
        seen: set[frozenset[str]] = set()
        if not ws.link_graph.is_acyclic():
            for doc in ws.link_graph.documents():
                cycle = ws.link_graph.find_cycle(doc)
                if cycle and frozenset(cycle) not in seen:
                    seen.add(frozenset(cycle))
                    cycles.append(cycle)
    finally:
        ws.close()

    if not cycles:
        click.echo("No link cycles found.")
        return
    for cycle in cycles:
        click.echo("Cycle: " + " -> ".join([*cycle, cycle[0]]))
    sys.exit(1)


@main.command()
@click.argument("path")
@_PROJECT_OPTION
def chain(path: str, *, project: Path | None) -> None:
    """Show the supersession chain containing PATH, oldest first."""
    ws = _open_workspace(project)
    try:
        _rebuild_relations(ws)
        result = ws.supersession.get_supersession_chain(path, ws.tenant_key)
    finally:
        ws.close()

    if result.length <= 1:
        click.echo(f"{path} is not part of a supersession chain.")
        return
    for entry in result.entries:
        marker = " (current)" if entry.file_path == result.current_document else ""
        click.echo(f"{entry.file_path}{marker}")
