"""CLI commands for watch-process."""

from pathlib import Path

import click

# Table columns for `once --table`: header, width, record keys (Unix, Windows)
_TABLE_COLUMNS = [
    ("PID", 7, ("pid", "Id")),
    ("USER", 12, ("user", "UserName")),
    ("ELAPSED", 8, ("elapsed_time", "ElapsedTime")),
    ("CPU", 6, ("cpu_percent", "CPU")),
    ("MEM", 6, ("memory_percent", "WorkingSet")),
    ("COMMAND", 40, ("command", "ProcessName")),
]


def _load_config(ctx: click.Context):
    """Load config from the --config path, exiting on errors."""
    from watch_process import logging as wlog
    from watch_process.config import Config, ConfigurationError

    try:
        return Config.load(ctx.obj.get("config_path"))
    except ConfigurationError as e:
        wlog.config_invalid(str(e))
        raise SystemExit(1)


def _apply_overrides(config, tag: str | None, interval: str | None, users: tuple[str, ...]):
    """Return config with command-line overrides applied."""
    from dataclasses import replace

    from watch_process.config import parse_duration

    watch = config.watch
    if tag:
        watch = replace(watch, tag=tag)
    if interval:
        watch = replace(watch, interval=parse_duration(interval))
    if users:
        watch = replace(watch, lookup_user=list(users))
    return replace(config, watch=watch)


@click.group()
@click.version_option(package_name="watch-process")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.config/watch-process/config.toml)",
)
@click.pass_context
def main(ctx: click.Context, config_path: Path | None) -> None:
    """Sample the process table and emit one record per process."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command()
@click.option("--tag", "-t", default=None, help="Tag attached to every record")
@click.option("--interval", "-i", default=None, help="Sampling interval, e.g. 5, 10s, 1m")
@click.option("--user", "-u", "users", multiple=True, help="Only emit processes of this user")
@click.pass_context
def run(ctx: click.Context, tag: str | None, interval: str | None, users: tuple[str, ...]) -> None:
    """Run the sampler until interrupted."""
    import asyncio

    from watch_process import logging as wlog
    from watch_process.config import ConfigurationError
    from watch_process.daemon import DaemonAlreadyRunning, run_daemon

    try:
        config = _apply_overrides(_load_config(ctx), tag, interval, users)
        config.validate()
    except ConfigurationError as e:
        wlog.config_invalid(str(e))
        raise SystemExit(1)

    try:
        asyncio.run(run_daemon(config))
    except DaemonAlreadyRunning as e:
        wlog.already_running(e.pid)
        raise SystemExit(1)
    except KeyboardInterrupt:
        pass


@main.command()
@click.option("--tag", "-t", default=None, help="Tag attached to every record")
@click.option("--user", "-u", "users", multiple=True, help="Only show processes of this user")
@click.option("--table", "as_table", is_flag=True, help="Print a table instead of JSON Lines")
@click.pass_context
def once(ctx: click.Context, tag: str | None, users: tuple[str, ...], as_table: bool) -> None:
    """Take a single sample and print it."""
    import asyncio
    import logging

    from watch_process import logging as wlog
    from watch_process.config import ConfigurationError
    from watch_process.sampler import Sampler, expand_tag, resolve_hostname
    from watch_process.sinks import JsonLinesSink, RingBuffer, Sink

    config = _load_config(ctx)
    try:
        config = _apply_overrides(config, tag or config.watch.tag or "watch_process", None, users)
        config.validate()
    except ConfigurationError as e:
        wlog.config_invalid(str(e))
        raise SystemExit(1)

    wlog.configure(config, log_file=False, level=logging.WARNING)

    async def sample(sink: Sink):
        hostname = await resolve_hostname(config.watch.hostname_command)
        sampler = Sampler(config, sink, tag=expand_tag(config.watch.tag, hostname))
        return await sampler.tick()

    if not as_table:
        stats = asyncio.run(sample(JsonLinesSink()))
        if stats.failed:
            raise SystemExit(1)
        return

    collected = RingBuffer(max_events=1_000_000)
    stats = asyncio.run(sample(collected))

    from watch_process.formatting import format_elapsed, truncate

    click.echo("  ".join(f"{name:<{width}}" for name, width, _ in _TABLE_COLUMNS).rstrip())
    click.echo("-" * (sum(width for _, width, _ in _TABLE_COLUMNS) + 2 * len(_TABLE_COLUMNS)))
    for event in collected.events:
        cells = []
        for name, width, keys in _TABLE_COLUMNS:
            value = next((event.record[k] for k in keys if k in event.record), None)
            if name == "ELAPSED":
                text = format_elapsed(value)
            else:
                text = "-" if value is None else str(value)
            cells.append(f"{truncate(text, width):<{width}}")
        click.echo("  ".join(cells).rstrip())
    click.echo(f"\n{stats.emitted} processes ({stats.filtered} filtered)")
    if stats.failed:
        raise SystemExit(1)


@main.command()
@click.pass_context
def command(ctx: click.Context) -> None:
    """Print the process-listing command for this platform."""
    from watch_process.command import build_command
    from watch_process.platforms import detect

    config = _load_config(ctx)
    platform = detect()
    keys = config.watch.keys or platform.default_keys
    click.echo(f"Platform: {platform.value}")
    click.echo(f"Keys: {','.join(keys)}")
    click.echo(build_command(platform, keys, config.watch.command))


@main.command()
@click.option("--no-replay", is_flag=True, help="Skip records buffered before connecting")
@click.pass_context
def tail(ctx: click.Context, no_replay: bool) -> None:
    """Follow records streamed by a running daemon."""
    import asyncio

    from watch_process import logging as wlog
    from watch_process.socket_client import SocketClient

    config = _load_config(ctx)
    client = SocketClient(config.socket_path)

    async def follow() -> None:
        await client.connect()
        wlog.tail_connected(str(config.socket_path))
        try:
            async for event in client.events(replay=not no_replay):
                click.echo(event.to_json())
        finally:
            await client.disconnect()
        wlog.tail_disconnected()

    try:
        asyncio.run(follow())
    except (FileNotFoundError, ConnectionRefusedError):
        wlog.daemon_not_running(str(config.socket_path))
        raise SystemExit(1)
    except KeyboardInterrupt:
        pass


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Quick health check."""
    import psutil

    config = _load_config(ctx)

    pid: int | None = None
    if config.pid_path.exists():
        try:
            pid = int(config.pid_path.read_text().strip())
        except ValueError:
            pid = None

    running = pid is not None and psutil.pid_exists(pid)
    click.echo(f"Daemon: {'running' if running else 'stopped'}")
    if running:
        click.echo(f"PID: {pid}")
    click.echo(f"Socket: {'listening' if config.socket_path.exists() else 'none'}")
    click.echo(f"Log: {config.log_path}")


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Display current configuration."""
    cfg = _load_config(ctx)
    path = ctx.obj.get("config_path") or cfg.config_path
    watch = cfg.watch

    click.echo(f"Config file: {path}")
    click.echo(f"Exists: {path.exists()}")
    click.echo()
    click.echo("[watch]")
    click.echo(f"  tag = {watch.tag or '(not set)'}")
    click.echo(f"  command = {watch.command or '(platform default)'}")
    click.echo(f"  keys = {','.join(watch.keys) if watch.keys else '(platform default)'}")
    click.echo(f"  interval = {watch.interval}")
    click.echo(f"  timeout = {watch.tick_timeout}")
    click.echo(f"  lookup_user = {','.join(watch.lookup_user) if watch.lookup_user else '(all)'}")
    click.echo(f"  hostname_command = {watch.hostname_command}")
    click.echo(f"  types = {watch.types}")
    click.echo()
    click.echo("[output]")
    click.echo(f"  stdout = {cfg.output.stdout}")
    click.echo(f"  socket = {cfg.output.socket}")
    click.echo(f"  ring_buffer_size = {cfg.output.ring_buffer_size}")


@config.command("init")
@click.option("--tag", "-t", required=True, help="Tag attached to every record")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def config_init(ctx: click.Context, tag: str, force: bool) -> None:
    """Write a config file with defaults and the given tag."""
    from watch_process import logging as wlog
    from watch_process.config import Config, WatchConfig

    cfg = Config(watch=WatchConfig(tag=tag))
    path = ctx.obj.get("config_path") or cfg.config_path
    if path.exists() and not force:
        click.echo(f"Config already exists at {path} (use --force to overwrite)", err=True)
        raise SystemExit(1)

    cfg.save(path)
    wlog.config_created(str(path))


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
@click.pass_context
def config_reset(ctx: click.Context) -> None:
    """Reset configuration to defaults, keeping the tag."""
    from watch_process.config import Config, WatchConfig

    current = _load_config(ctx)
    cfg = Config(watch=WatchConfig(tag=current.watch.tag))
    path = ctx.obj.get("config_path") or cfg.config_path
    cfg.save(path)
    click.echo(f"Config reset to defaults at {path}")


if __name__ == "__main__":
    main()
