"""Process-listing command construction."""

from watch_process.platforms import Platform

# Forcing the locale keeps lstart weekday/month names parseable
LINUX_PS_COMMAND = (
    "LANG=en_US.UTF-8 && ps -ewwo lstart,user:20,pid,ppid,time,%cpu,%mem,rss,sz,s,comm,cmd"
)
MAC_PS_COMMAND = (
    "LANG=en_US.UTF-8 && ps -ewwo lstart,user,pid,ppid,time,%cpu,%mem,rss,vsz,state,comm,command"
)


def build_win32_command(keys: list[str]) -> str:
    """Build a PowerShell pipeline that prints one compact JSON object per process."""
    pipeline = "".join(
        [
            "Get-Process",
            f" | Select-Object -Property {','.join(keys)}",
            " | ForEach { ConvertTo-JSON -Compress $_; }",
        ]
    )
    return f'powershell -command "{pipeline}"'


def build_command(platform: Platform, keys: list[str], override: str | None = None) -> str:
    """Return the shell command that lists processes on this platform.

    An explicit override is used verbatim. Keys only shape the Windows
    command; the ps field list is fixed and must line up with the keys
    passed to the parser.
    """
    if override:
        return override
    if platform is Platform.WINDOWS:
        return build_win32_command(keys)
    if platform is Platform.MAC:
        return MAC_PS_COMMAND
    return LINUX_PS_COMMAND
