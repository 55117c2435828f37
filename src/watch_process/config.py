"""Configuration system for watch-process."""

import re
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit


class ConfigurationError(ValueError):
    """Configuration is missing a required value or holds an invalid one."""


_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: float | int | str) -> float:
    """Parse a duration such as ``5``, ``2.5``, ``"10s"``, ``"1m"`` into seconds.

    Raises:
        ConfigurationError: If value is not a recognised duration
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION_PATTERN.match(str(value))
    if not match:
        raise ConfigurationError(f"Invalid duration: {value!r}")
    return float(match.group(1)) * _DURATION_UNITS[match.group(2)]


@dataclass
class WatchConfig:
    """What to sample and how often."""

    tag: str = ""  # Required; "${hostname}" / "__HOSTNAME__" are expanded at startup
    command: str | None = None  # Overrides the platform listing command verbatim
    keys: list[str] | None = None  # Field names in column order (None = platform default)
    interval: float = 5.0  # Seconds between ticks
    timeout: float | None = None  # Max seconds per tick (None = interval)
    lookup_user: list[str] | None = None  # Allowed users (None = all users)
    hostname_command: str = "hostname"
    types: str = (
        "pid:integer,parent_pid:integer,cpu_percent:float,memory_percent:float,"
        "mem_rss:integer,mem_size:integer"
    )

    @property
    def tick_timeout(self) -> float:
        """Upper bound on a single tick."""
        return self.timeout if self.timeout is not None else self.interval


@dataclass
class OutputConfig:
    """Where emitted records go."""

    stdout: bool = True  # JSON Lines on stdout
    socket: bool = False  # Stream to clients over the Unix socket
    ring_buffer_size: int = 500  # Recent records replayed to new socket clients


@dataclass
class SystemConfig:
    """Daemon housekeeping."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively.

    None values are skipped; TOML has no null.
    """
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if value is None:
            continue
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    watch: WatchConfig = field(default_factory=WatchConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "watch-process"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "watch-process"

    @property
    def runtime_dir(self) -> Path:
        """Runtime directory for ephemeral files (PID, socket)."""
        return Path("/tmp/watch-process")

    @property
    def log_path(self) -> Path:
        """Daemon log path."""
        return self.state_dir / "daemon.log"

    @property
    def pid_path(self) -> Path:
        """PID file path."""
        return self.runtime_dir / "daemon.pid"

    @property
    def socket_path(self) -> Path:
        """Unix socket path for streaming records."""
        return self.runtime_dir / "daemon.sock"

    def validate(self) -> None:
        """Check the settings the sampler depends on.

        Raises:
            ConfigurationError: On the first invalid setting found
        """
        from watch_process.coercion import parse_types

        watch = self.watch
        if not watch.tag:
            raise ConfigurationError("'tag' is required")
        if watch.interval <= 0:
            raise ConfigurationError(f"interval must be > 0, got {watch.interval}")
        if watch.timeout is not None and watch.timeout <= 0:
            raise ConfigurationError(f"timeout must be > 0, got {watch.timeout}")
        if watch.keys is not None and not watch.keys:
            raise ConfigurationError("keys must not be empty")
        if not watch.hostname_command:
            raise ConfigurationError("hostname_command must not be empty")
        parse_types(watch.types)
        if self.output.ring_buffer_size < 1:
            raise ConfigurationError(
                f"ring_buffer_size must be >= 1, got {self.output.ring_buffer_size}"
            )

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ["watch", "output", "system"]:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        Raises:
            ConfigurationError: If the file cannot be parsed or holds invalid values
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ConfigurationError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            watch=_load_watch_config(data.get("watch", {})),
            output=_load_output_config(data.get("output", {})),
            system=_load_system_config(data.get("system", {})),
        )


def _string_list(data: dict, name: str) -> list[str] | None:
    """Read an optional list of strings; an empty list counts as unset."""
    value = data.get(name)
    if value is None:
        return None
    if isinstance(value, str):
        value = [v.strip() for v in value.split(",")]
    if not isinstance(value, list):
        raise ConfigurationError(f"{name} must be a list of strings, got {value!r}")
    items = [str(v) for v in value if str(v)]
    return items or None


def _bool(data: dict, name: str, default: bool) -> bool:
    """Read an optional TOML boolean."""
    value = data.get(name, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"{name} must be true or false, got {value!r}")
    return value


def _load_watch_config(data: dict) -> WatchConfig:
    """Load [watch] from TOML data, using dataclass defaults for missing fields."""
    d = WatchConfig()
    timeout = data.get("timeout")
    return WatchConfig(
        tag=str(data.get("tag", d.tag)),
        command=data.get("command", d.command) or None,
        keys=_string_list(data, "keys"),
        interval=parse_duration(data.get("interval", d.interval)),
        timeout=parse_duration(timeout) if timeout is not None else d.timeout,
        lookup_user=_string_list(data, "lookup_user"),
        hostname_command=str(data.get("hostname_command", d.hostname_command)),
        types=str(data.get("types", d.types)),
    )


def _load_output_config(data: dict) -> OutputConfig:
    """Load [output] from TOML data."""
    d = OutputConfig()
    return OutputConfig(
        stdout=_bool(data, "stdout", d.stdout),
        socket=_bool(data, "socket", d.socket),
        ring_buffer_size=int(data.get("ring_buffer_size", d.ring_buffer_size)),
    )


def _load_system_config(data: dict) -> SystemConfig:
    """Load [system] from TOML data."""
    d = SystemConfig()
    return SystemConfig(
        log_max_bytes=int(data.get("log_max_bytes", d.log_max_bytes)),
        log_backup_count=int(data.get("log_backup_count", d.log_backup_count)),
    )
