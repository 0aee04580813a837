"""Tests for docweave.doc_sync.hooks."""

from __future__ import annotations

from support import TENANT

from docweave.doc_sync.hooks import DocumentHook, HookContext, HookExecutor, HookResult


class _Recording(DocumentHook):
    def __init__(self, name: str, order: int, calls: list[str], *, veto: bool = False) -> None:
        self.name = name
        self.order = order
        self._calls = calls
        self._veto = veto

    def on_before_index(self, context: HookContext) -> HookResult:
        self._calls.append(self.name)
        if self._veto:
            return HookResult.veto(f"{self.name} says no")
        return HookResult.ok([f"{self.name} saw {context.file_path}"])


class _Exploding(DocumentHook):
    name = "boom"

    def on_before_delete(self, context: HookContext) -> HookResult:
        raise RuntimeError("kaput")

    def on_after_index(self, context: HookContext) -> HookResult:
        raise RuntimeError("late failure")


def _ctx() -> HookContext:
    return HookContext(TENANT, "docs/a.md")


class TestBeforeStages:
    def test_runs_in_order(self) -> None:
        calls: list[str] = []
        executor = HookExecutor([_Recording("second", 20, calls), _Recording("first", 10, calls)])
        result = executor.before_index(_ctx())
        assert calls == ["first", "second"]
        assert result.should_continue is True
        assert result.warnings == ["first saw docs/a.md", "second saw docs/a.md"]

    def test_first_veto_stops_the_run(self) -> None:
        calls: list[str] = []
        executor = HookExecutor(
            [_Recording("gate", 1, calls, veto=True), _Recording("later", 2, calls)]
        )
        result = executor.before_index(_ctx())
        assert calls == ["gate"]
        assert result.should_continue is False
        assert result.error_message == "gate says no"

    def test_exception_counts_as_veto(self) -> None:
        result = HookExecutor([_Exploding()]).before_delete(_ctx())
        assert result.should_continue is False
        assert result.error_message == "Hook 'boom' failed: kaput"

    def test_disabled_hooks_skipped(self) -> None:
        calls: list[str] = []
        hook = _Recording("off", 1, calls, veto=True)
        hook.enabled = False
        executor = HookExecutor()
        executor.register(hook)
        assert executor.before_index(_ctx()).should_continue is True
        assert calls == []


class TestAfterStages:
    def test_exceptions_become_warnings(self) -> None:
        result = HookExecutor([_Exploding()]).after_index(_ctx())
        assert result.should_continue is True
        assert result.warnings == ["Hook 'boom' failed: late failure"]

    def test_default_hook_is_noop(self) -> None:
        result = HookExecutor([DocumentHook()]).after_delete(_ctx())
        assert result.should_continue is True
        assert result.warnings == []
