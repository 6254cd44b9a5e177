"""Unit tests for rebuild hooks."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

pytestmark = pytest.mark.unit


@pytest.fixture
def logged(tmp_path: Path, contacts_csv, make_event):
    """A change event and the log entry written for it."""
    from csv_sentinel.changelog import ChangeLog

    event = make_event(contacts_csv)
    entry = ChangeLog(tmp_path / "logs").append(event)
    return event, entry


class TestHookRegistry:
    """Test registration and execution order."""

    @pytest.mark.asyncio
    async def test_Should_RunInOrder_When_Registered(self, logged):
        from csv_sentinel.hooks import HookRegistry, RebuildHook

        calls = []
        registry = HookRegistry()
        registry.register(RebuildHook("first", "", lambda event, entry: calls.append("first")))
        registry.register(RebuildHook("second", "", lambda event, entry: calls.append("second")))

        outcomes = await registry.run(*logged)

        assert calls == ["first", "second"]
        assert [o.name for o in outcomes] == ["first", "second"]
        assert all(o.success for o in outcomes)

    @pytest.mark.asyncio
    async def test_Should_ContinueAfterFailure_When_HookRaises(self, logged):
        """A failing hook does not stop the ones after it."""
        from csv_sentinel.hooks import HookRegistry, RebuildHook

        def broken(event, entry):
            raise RuntimeError("boom")

        calls = []
        registry = HookRegistry()
        registry.register(RebuildHook("broken", "", broken))
        registry.register(RebuildHook("after", "", lambda event, entry: calls.append("after")))

        outcomes = await registry.run(*logged)

        assert calls == ["after"]
        assert outcomes[0].success is False
        assert outcomes[0].error == "Hook 'broken' failed: boom"
        assert outcomes[1].success is True

    @pytest.mark.asyncio
    async def test_Should_SkipHook_When_Disabled(self, logged):
        from csv_sentinel.hooks import HookRegistry, RebuildHook

        calls = []
        registry = HookRegistry()
        registry.register(RebuildHook("off", "", lambda event, entry: calls.append("off"), enabled=False))

        assert await registry.run(*logged) == []
        assert calls == []

    @pytest.mark.asyncio
    async def test_Should_AwaitHandler_When_HandlerIsAsync(self, logged):
        from csv_sentinel.hooks import HookRegistry, RebuildHook

        seen = []

        async def handler(event, entry):
            seen.append(entry.sequence)

        registry = HookRegistry()
        registry.register(RebuildHook("async", "", handler))

        await registry.run(*logged)

        assert seen == [1]

    def test_Should_ReplaceInPlace_When_NameReregistered(self):
        from csv_sentinel.hooks import HookRegistry, RebuildHook

        registry = HookRegistry()
        registry.register(RebuildHook("a", "one", lambda e, l: None))
        registry.register(RebuildHook("b", "", lambda e, l: None))
        registry.register(RebuildHook("a", "two", lambda e, l: None))

        assert registry.names() == ["a", "b"]
        assert registry.get("a").description == "two"

    def test_Should_RaiseHookError_When_ToggleOrUnregisterUnknown(self):
        from csv_sentinel.exceptions import HookError
        from csv_sentinel.hooks import HookRegistry

        registry = HookRegistry()

        with pytest.raises(HookError, match="No rebuild hook named 'missing'"):
            registry.toggle("missing", True)
        with pytest.raises(HookError, match="missing"):
            registry.unregister("missing")

    def test_Should_ReturnHook_When_ToggledOrUnregistered(self):
        from csv_sentinel.hooks import HookRegistry, RebuildHook

        registry = HookRegistry()
        registry.register(RebuildHook("a", "one", lambda event, entry: None))

        assert registry.toggle("a", False).enabled is False
        assert registry.unregister("a").name == "a"
        assert len(registry) == 0


class TestBookstoreHooks:
    """Test the shipped bookstore hooks."""

    def test_Should_DisableNotification_When_Defaults(self):
        from csv_sentinel.hooks import bookstore_rebuild_hooks

        hooks = {hook.name: hook for hook in bookstore_rebuild_hooks()}

        assert list(hooks) == ["regenerate-json", "rebuild-static-pages", "update-search-index", "notify-administrators"]
        assert hooks["notify-administrators"].enabled is False

    @pytest.mark.asyncio
    async def test_Should_WriteRecords_When_RegenerateJsonRuns(self, tmp_path: Path, logged):
        from csv_sentinel.hooks import HookRegistry, bookstore_rebuild_hooks

        target = tmp_path / "site" / "stores.json"
        registry = HookRegistry()
        for hook in bookstore_rebuild_hooks(json_output=target):
            registry.register(hook)

        outcomes = await registry.run(*logged)

        assert all(o.success for o in outcomes)
        records = json.loads(target.read_text(encoding="utf-8"))
        assert [r["name"] for r in records] == ["Paper Reads", "Quiet Pages", "Lantern Books"]

    @pytest.mark.asyncio
    async def test_Should_SkipRegeneration_When_FileDeleted(self, tmp_path: Path, contacts_csv, make_event):
        from csv_sentinel.changelog import ChangeLog
        from csv_sentinel.hooks import bookstore_rebuild_hooks
        from csv_sentinel.monitor import ChangeKind

        contacts_csv.unlink()
        event = make_event(contacts_csv, ChangeKind.DELETED)
        entry = ChangeLog(tmp_path / "logs").append(event)
        regenerate = bookstore_rebuild_hooks(json_output=tmp_path / "out.json")[0]

        await regenerate.handler(event, entry)

        assert not (tmp_path / "out.json").exists()
