"""Operating system family detection."""

import re
import sys
from enum import Enum

DEFAULT_KEYS = [
    "start_time",
    "user",
    "pid",
    "parent_pid",
    "cpu_time",
    "cpu_percent",
    "memory_percent",
    "mem_rss",
    "mem_size",
    "state",
    "proc_name",
    "command",
]
DEFAULT_KEYS_WIN32 = [
    "StartTime",
    "UserName",
    "SessionId",
    "Id",
    "CPU",
    "WorkingSet",
    "VirtualMemorySize",
    "HandleCount",
    "ProcessName",
]

# sys.platform reports "win32"; the rest cover Cygwin/MSYS style identifiers
_WINDOWS_PATTERN = re.compile(r"cygwin|mswin|mingw|bccwin|wince|emx|^win32", re.IGNORECASE)
_MAC_PATTERN = re.compile(r"darwin", re.IGNORECASE)


class Platform(Enum):
    """Operating system family. Chosen once at startup."""

    LINUX = "linux"
    MAC = "mac"
    WINDOWS = "windows"

    @property
    def is_windows(self) -> bool:
        return self is Platform.WINDOWS

    @property
    def default_keys(self) -> list[str]:
        """Canonical field list for this platform's listing output."""
        return list(DEFAULT_KEYS_WIN32 if self.is_windows else DEFAULT_KEYS)


def detect(platform_id: str | None = None) -> Platform:
    """Classify the running OS from its platform identifier.

    Args:
        platform_id: Identifier to classify (defaults to sys.platform)

    Returns:
        Platform.WINDOWS, Platform.MAC, or Platform.LINUX for everything else
    """
    if platform_id is None:
        platform_id = sys.platform
    if _WINDOWS_PATTERN.search(platform_id):
        return Platform.WINDOWS
    if _MAC_PATTERN.search(platform_id):
        return Platform.MAC
    return Platform.LINUX
