#!/usr/bin/env python3
"""Example 02: Structured Diff Reports.

Compares the schema-drift pair in every mode and writes one report per
format.

Example Usage:
-------------
    $ python examples/02_diff_reports.py
    $ OUTPUT_ROOT=temp/diffs python examples/02_diff_reports.py
"""

import asyncio
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from csv_sentinel.config import DiffConfig
from csv_sentinel.diff import REPORT_EXTENSIONS, DiffEngine, ReportGenerator, format_diff_statistics
from csv_sentinel.utils import configure_logging
from synthetic.scenarios import schema_drift


class ExampleSettings(BaseSettings):
    """Settings for Example 02: Structured Diff Reports."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False, extra="ignore")

    output_root: Path = Path("temp/examples/02_diff_reports")


async def run(example: ExampleSettings) -> None:
    pair = schema_drift.make_pair(example.output_root / "data")
    engine = DiffEngine(DiffConfig(key_columns=["name"]))

    for mode in ("text", "schema", "structured", "hybrid"):
        result = await engine.compare_files(pair.old_path, pair.new_path, mode=mode)
        print(f"--- {mode} ---")
        print(format_diff_statistics(result.statistics))

    result = await engine.compare_files(pair.old_path, pair.new_path, mode="hybrid")
    generator = ReportGenerator()
    for fmt, ext in REPORT_EXTENSIONS.items():
        target = example.output_root / "reports" / f"drift.{ext}"
        generator.render(result, fmt, target)
        print(f"Wrote {target}")


if __name__ == "__main__":
    configure_logging("WARNING")
    asyncio.run(run(ExampleSettings()))
