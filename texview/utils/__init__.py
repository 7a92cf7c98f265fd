"""
Shared utilities for texview.

Common functionality used by the rendering context:
- External process execution with polled timeouts
- Diagnostic path sanitization
- Host environment probing
- Logging setup and timestamps
"""

from texview.utils.path_sanitizer import PLACEHOLDER, sanitize
from texview.utils.process import ProcessOutcome, run_process
from texview.utils.timestamp import now, now_exact

__all__ = ["PLACEHOLDER", "ProcessOutcome", "now", "now_exact", "run_process", "sanitize"]
