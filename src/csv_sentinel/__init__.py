"""csv-sentinel: watch, back up, validate and diff tabular data files.

Public API:
-----------
    from csv_sentinel import UpdateOrchestrator, Settings, load_settings

Subpackages (monitor, backup, validation, diff) and the changelog, hooks and
notifier modules are importable on their own.
"""

from .config import Settings, load_settings
from .pipeline import UpdateOrchestrator

__version__ = "0.1.0"

__all__ = ["Settings", "load_settings", "UpdateOrchestrator", "__version__"]
