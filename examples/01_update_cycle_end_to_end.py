#!/usr/bin/env python3
"""Example 01: One Update Cycle End-to-End.

Drives the update orchestrator through two pipeline cycles on a synthetic
contact sheet, without a filesystem observer, so the run is reproducible.

Key Concepts:
-------------
- Orchestrator owns Settings and every component
- Auto-backup, validation, diff against the previous backup
- Change log entry per event
- Rebuild hooks after logging

Cycles:
-------
1. Setup: Generate a valid contact sheet
2. Added: First cycle (backup + validation, nothing to diff against yet)
3. Changed: Edit one row, second cycle (backup + validation + diff reports)
4. Inspect: Change log, backups and status

Example Usage:
-------------
    $ python examples/01_update_cycle_end_to_end.py

    # Or with custom parameters
    $ OUTPUT_ROOT=temp/my_output N_ROWS=50 SEED=123 python examples/01_update_cycle_end_to_end.py
"""

import asyncio
from pathlib import Path
import shutil

from pydantic_settings import BaseSettings, SettingsConfigDict

from csv_sentinel.backup import format_backup_record
from csv_sentinel.changelog import format_change_log_entry
from csv_sentinel.config import BackupConfig, ChangeLogConfig, DiffConfig, MonitorConfig, Settings
from csv_sentinel.hooks import RebuildHook
from csv_sentinel.monitor import ChangeEvent, ChangeKind, normalize_path
from csv_sentinel.pipeline import UpdateOrchestrator, format_status
from csv_sentinel.utils import configure_logging, file_hash, utc_now
from synthetic.scenarios import happy_path


class ExampleSettings(BaseSettings):
    """Settings for Example 01: One Update Cycle End-to-End."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    output_root: Path = Path("temp/examples/01_update_cycle")
    n_rows: int = 20
    seed: int = 42


def _event(path: Path, kind: ChangeKind) -> ChangeEvent:
    return ChangeEvent(
        kind=kind,
        path=normalize_path(path),
        timestamp=utc_now(),
        current_digest=file_hash(path),
        size=path.stat().st_size,
    )


async def run(example: ExampleSettings) -> None:
    root = example.output_root
    if root.exists():
        shutil.rmtree(root)
    root.mkdir(parents=True)

    settings = Settings(
        monitor=MonitorConfig(use_observer=False),
        backup=BackupConfig(directory=root / "backups"),
        diff=DiffConfig(key_columns=["name"], report_dir=root / "reports", report_formats=["markdown", "json"]),
        changelog=ChangeLogConfig(directory=root / "logs"),
    )

    print("=" * 80)
    print("PHASE 1: Setup - Generate Synthetic Data")
    print("=" * 80)
    data = happy_path.make_file(root / "data", n_rows=example.n_rows, seed=example.seed)
    print(f"Wrote {data}")

    async with UpdateOrchestrator(settings) as orchestrator:
        orchestrator.register_hook(
            RebuildHook("print-entry", "Print each log entry", lambda event, entry: print(f"  hook saw #{entry.sequence}"))
        )

        print("=" * 80)
        print("PHASE 2: Added")
        print("=" * 80)
        report = await orchestrator.process_event(_event(data, ChangeKind.ADDED))
        print(f"  states: {[s.value for s in report.states]}")
        print(f"  valid: {report.validation.is_valid if report.validation else None}")

        print("=" * 80)
        print("PHASE 3: Changed")
        print("=" * 80)
        lines = data.read_text(encoding="utf-8").splitlines()
        lines[1] = lines[1].replace("hello@", "contact@")
        data.write_text("\n".join(lines) + "\n", encoding="utf-8")
        report = await orchestrator.process_event(_event(data, ChangeKind.CHANGED))
        print(f"  states: {[s.value for s in report.states]}")
        if report.diff is not None:
            for path in report.diff.report_paths:
                print(f"  report: {path}")

        print("=" * 80)
        print("PHASE 4: Inspect")
        print("=" * 80)
        for entry in await orchestrator.get_recent_changes():
            print(f"  {format_change_log_entry(entry)}")
        for record in await orchestrator.list_backups():
            print(f"  {format_backup_record(record)}")
        print(format_status(await orchestrator.get_status()))


if __name__ == "__main__":
    configure_logging("INFO")
    asyncio.run(run(ExampleSettings()))
