"""Document lifecycle hooks: before/after index and delete."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from docweave.doc_sync.parser import ParsedDocument
    from docweave.models import Document

logger = logging.getLogger(__name__)


@dataclass
class HookResult:
    should_continue: bool = True
    is_success: bool = True
    error_message: str | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, warnings: list[str] | None = None) -> HookResult:
        return cls(warnings=list(warnings or []))

    @classmethod
    def veto(cls, message: str) -> HookResult:
        return cls(should_continue=False, is_success=False, error_message=message)


@dataclass
class HookContext:
    """What a hook sees about the document being processed."""

    tenant_key: str
    file_path: str
    parsed: ParsedDocument | None = None
    document: Document | None = None
    chunk_count: int = 0


class DocumentHook:
    """Base class for lifecycle hooks. Override the stages you need."""

    name = "hook"
    order = 100
    enabled = True

    def on_before_index(self, context: HookContext) -> HookResult:
        return HookResult.ok()

    def on_after_index(self, context: HookContext) -> HookResult:
        return HookResult.ok()

    def on_before_delete(self, context: HookContext) -> HookResult:
        return HookResult.ok()

    def on_after_delete(self, context: HookContext) -> HookResult:
        return HookResult.ok()


class HookExecutor:
    """Run enabled hooks in ascending ``order``.

    Before-stages stop at the first veto; an exception in a before-stage
    counts as a veto. After-stages never stop; exceptions become warnings.
    """

    def __init__(self, hooks: Iterable[DocumentHook] = ()) -> None:
        self._hooks: list[DocumentHook] = list(hooks)

    def register(self, hook: DocumentHook) -> None:
        self._hooks.append(hook)

    @property
    def hooks(self) -> list[DocumentHook]:
        return sorted((h for h in self._hooks if h.enabled), key=lambda h: h.order)

    def before_index(self, context: HookContext) -> HookResult:
        return self._run_before("on_before_index", context)

    def after_index(self, context: HookContext) -> HookResult:
        return self._run_after("on_after_index", context)

    def before_delete(self, context: HookContext) -> HookResult:
        return self._run_before("on_before_delete", context)

    def after_delete(self, context: HookContext) -> HookResult:
        return self._run_after("on_after_delete", context)

    def _run_before(self, stage: str, context: HookContext) -> HookResult:
        warnings: list[str] = []
        for hook in self.hooks:
            try:
                result = getattr(hook, stage)(context)
            except Exception as exc:
                logger.exception("Hook '%s' failed in %s for %s", hook.name, stage, context.file_path)
                return HookResult(
                    should_continue=False,
                    is_success=False,
                    error_message=f"Hook '{hook.name}' failed: {exc}",
                    warnings=warnings,
                )
            warnings.extend(result.warnings)
            if not result.should_continue:
                logger.info("Hook '%s' vetoed %s for %s", hook.name, stage, context.file_path)
                return HookResult(
                    should_continue=False,
                    is_success=result.is_success,
                    error_message=result.error_message or f"Vetoed by hook '{hook.name}'",
                    warnings=warnings,
                )
        return HookResult(warnings=warnings)

    def _run_after(self, stage: str, context: HookContext) -> HookResult:
        warnings: list[str] = []
        for hook in self.hooks:
            try:
                result = getattr(hook, stage)(context)
            except Exception as exc:
                logger.warning("Hook '%s' failed in %s: %s", hook.name, stage, exc)
                warnings.append(f"Hook '{hook.name}' failed: {exc}")
                continue
            warnings.extend(result.warnings)
            if result.error_message:
                warnings.append(result.error_message)
        return HookResult(warnings=warnings)
