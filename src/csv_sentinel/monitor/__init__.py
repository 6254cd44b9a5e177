"""Change monitoring for watched tabular files.

Converts raw, noisy filesystem notifications (watchdog) into a clean stream
of ChangeEvents per watched path, with per-path debounce and sequential
classification.

Public API:
-----------
    from csv_sentinel.monitor import (
        ChangeMonitor,
        ChangeEvent,
        ChangeKind,
        FileBaseline,
    )

See core and models modules for detailed documentation.
"""

from .core import ChangeHandler, ChangeMonitor, ErrorHandler, normalize_path
from .models import ChangeEvent, ChangeKind, FileBaseline, RawKind

__all__ = [
    "ChangeMonitor",
    "ChangeHandler",
    "ErrorHandler",
    "ChangeEvent",
    "ChangeKind",
    "FileBaseline",
    "RawKind",
    "normalize_path",
]
