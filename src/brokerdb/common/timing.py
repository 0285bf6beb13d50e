"""Duration helpers for log output."""

from __future__ import annotations


def format_duration(seconds: float) -> str:
    """Render ``seconds`` as a short human readable duration.

    >>> format_duration(0.25)
    '250ms'
    >>> format_duration(75.5)
    '1m15.5s'
    """

    if seconds < 1:
        return f"{round(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.3g}s"
    minutes, remainder = divmod(seconds, 60)
    if minutes < 60:
        return f"{int(minutes)}m{remainder:.3g}s"
    hours, minutes = divmod(minutes, 60)
    return f"{int(hours)}h{int(minutes)}m{int(remainder)}s"
