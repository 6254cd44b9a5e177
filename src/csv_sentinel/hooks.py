"""Rebuild hooks run after every logged change.

A hook is a named handler called with the ChangeEvent and the
ChangeLogEntry written for it. Hooks run in registration order; a failing
hook is recorded as a failed HookOutcome and the remaining hooks still run.
Disabled hooks are skipped, not faked.

``bookstore_rebuild_hooks()`` ships the hooks a bookstore directory site
needs: regenerating its JSON data file, rebuilding static pages, refreshing
its search index and (disabled by default) notifying administrators.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import inspect
import json
import logging
from pathlib import Path
import time
from typing import Awaitable, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from .changelog import ChangeLogEntry
from .config import DialectConfig
from .exceptions import HookError
from .monitor.models import ChangeEvent, ChangeKind
from .tabular import read_table
from .utils import write_text_atomic

__all__ = [
    "HookHandler",
    "RebuildHook",
    "HookOutcome",
    "HookRegistry",
    "bookstore_rebuild_hooks",
]

logger = logging.getLogger(__name__)

HookHandler = Callable[[ChangeEvent, ChangeLogEntry], Union[None, Awaitable[None]]]


@dataclass
class RebuildHook:
    """Named post-change action.

    Attributes:
        name: Unique key in the registry
        description: Shown in status output
        handler: Sync or async callable taking (event, entry)
        enabled: Disabled hooks are skipped
    """

    name: str
    description: str
    handler: HookHandler
    enabled: bool = True


class HookOutcome(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    success: bool
    error: Optional[str] = None
    duration_ms: float = 0.0


class HookRegistry:
    """Ordered name -> RebuildHook table."""

    def __init__(self):
        self._hooks: dict[str, RebuildHook] = {}

    def register(self, hook: RebuildHook) -> None:
        """Add a hook; re-registering a name replaces it in place."""
        self._hooks[hook.name] = hook

    def unregister(self, name: str) -> RebuildHook:
        """Remove and return a hook.

        Raises:
            HookError: If no hook has this name
        """
        hook = self._hooks.pop(name, None)
        if hook is None:
            raise HookError(f"No rebuild hook named '{name}'")
        return hook

    def toggle(self, name: str, enabled: bool) -> RebuildHook:
        """Enable or disable a hook by name.

        Raises:
            HookError: If no hook has this name
        """
        hook = self._hooks.get(name)
        if hook is None:
            raise HookError(f"No rebuild hook named '{name}'")
        hook.enabled = enabled
        return hook

    def get(self, name: str) -> RebuildHook | None:
        return self._hooks.get(name)

    def names(self) -> list[str]:
        return list(self._hooks)

    def hooks(self) -> list[RebuildHook]:
        return list(self._hooks.values())

    def __len__(self) -> int:
        return len(self._hooks)

    async def run(self, event: ChangeEvent, entry: ChangeLogEntry) -> list[HookOutcome]:
        """Run every enabled hook in order, isolating failures."""
        outcomes: list[HookOutcome] = []
        for hook in self.hooks():
            if not hook.enabled:
                continue

            start = time.perf_counter()
            try:
                result = hook.handler(event, entry)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000.0
                logger.error(f"Hook '{hook.name}' failed for {event.path}: {e}")
                outcomes.append(HookOutcome(name=hook.name, success=False, error=f"Hook '{hook.name}' failed: {e}", duration_ms=elapsed))
                continue

            elapsed = (time.perf_counter() - start) * 1000.0
            logger.debug(f"Hook '{hook.name}' ran in {elapsed:.1f}ms")
            outcomes.append(HookOutcome(name=hook.name, success=True, duration_ms=elapsed))
        return outcomes


# =============================================================================
# Bookstore hooks
# =============================================================================


def bookstore_rebuild_hooks(
    json_output: Path | str | None = None,
    dialect: DialectConfig | None = None,
) -> list[RebuildHook]:
    """Default hooks for the bookstore directory.

    Args:
        json_output: Where ``regenerate-json`` writes the records
            (default: ``<stem>.json`` beside the changed file)
        dialect: Dialect used to read the changed file
    """

    async def regenerate_json(event: ChangeEvent, entry: ChangeLogEntry) -> None:
        if event.kind in (ChangeKind.DELETED, ChangeKind.RENAMED):
            logger.info(f"Skipping JSON regeneration: {Path(event.path).name} was {event.kind.value}")
            return
        source = Path(event.path)
        target = Path(json_output) if json_output is not None else source.with_suffix(".json")
        table = await asyncio.to_thread(read_table, source, dialect)
        text = json.dumps(table.records, indent=2, ensure_ascii=False) + "\n"
        await asyncio.to_thread(write_text_atomic, target, text)
        logger.info(f"Regenerated {target} from {source.name} ({table.row_count} records)")

    def announce(action: str) -> HookHandler:
        def handler(event: ChangeEvent, entry: ChangeLogEntry) -> None:
            logger.info(f"{action} due to {event.kind.value} in {Path(event.path).name} (log #{entry.sequence})")

        return handler

    return [
        RebuildHook("regenerate-json", "Regenerate JSON data from updated CSV", regenerate_json),
        RebuildHook(
            "rebuild-static-pages",
            "Rebuild static pages when store data changes",
            announce("Rebuilding static pages"),
        ),
        RebuildHook(
            "update-search-index",
            "Update search index when store data changes",
            announce("Updating search index"),
        ),
        RebuildHook(
            "notify-administrators",
            "Send notifications to administrators about data changes",
            announce("Notifying administrators"),
            enabled=False,
        ),
    ]
