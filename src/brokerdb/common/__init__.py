from __future__ import annotations

from .logging import configure_logging
from .timing import format_duration

__all__ = [
    "configure_logging",
    "format_duration",
]
