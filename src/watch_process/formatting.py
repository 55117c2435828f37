"""Formatting utilities for CLI output."""


def format_elapsed(seconds: int | float | None) -> str:
    """Format a process age compactly.

    Returns:
        "45s", "12m05s", "3h07m", "2d04h", or "-" when unknown
    """
    if seconds is None:
        return "-"
    total = int(seconds)
    if total < 0:
        return "-"
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}d{hours:02d}h"
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


def truncate(text: str, width: int) -> str:
    """Cut text to width, marking the cut with '..'."""
    if len(text) <= width:
        return text
    if width <= 2:
        return text[:width]
    return text[: width - 2] + ".."
