"""
Desktop installer — CLI entrypoint.

Usage:
    desktop-installer --help
    desktop-installer install [--dry-run] [--keep-temp]
    desktop-installer -c my.json update
    desktop-installer uninstall --yes
    desktop-installer check
    desktop-installer config show application
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from desktop_installer import __version__
from desktop_installer.core.observability.logging_config import LOG_FORMATS, die, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="desktop-installer")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Configuration override file (JSON or YAML).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Only show errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--log-format",
    type=click.Choice(LOG_FORMATS),
    default=None,
    help="Log output format (default: installer.log_format).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    verbose: bool,
    quiet: bool,
    debug: bool,
    log_format: str | None,
) -> None:
    """Install, update and remove the desktop application."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["log_format"] = log_format

    # CLI flag > DI_LOG_LEVEL / DI_DEBUG > config
    if debug or os.environ.get("DI_DEBUG", "").lower() in ("1", "true", "yes", "on"):
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = None
    ctx.obj["level"] = level

    # ── Logging setup (provisional until the config is loaded) ──
    setup_logging(
        level=level or os.environ.get("DI_LOG_LEVEL", "INFO"),
        log_file=os.environ.get("DI_LOG_FILE"),
        log_file_level="DEBUG",
        log_format=log_format or os.environ.get("DI_LOG_FORMAT", "standard"),
        quiet_third_party=not debug,
    )


def _load_config(ctx: click.Context):
    """Build the configuration store and apply its logging settings."""
    from desktop_installer.core.config.loader import ConfigError, ConfigStore
    from desktop_installer.core.reliability.errors import ExitCode

    try:
        config = ConfigStore.build(ctx.obj.get("config_path"))
    except ConfigError as e:
        die(str(e), int(ExitCode.CONFIGURATION))

    level = ctx.obj.get("level") or str(config.get("installer.log_level", "INFO"))
    log_format = ctx.obj.get("log_format") or str(config.get("installer.log_format", "standard"))
    setup_logging(
        level=level,
        log_file=os.environ.get("DI_LOG_FILE"),
        log_file_level="DEBUG",
        log_format=log_format if log_format in LOG_FORMATS else "standard",
        quiet_third_party=level != "DEBUG",
    )
    return config


def _confirm(prompt: str) -> bool:
    from desktop_installer.core.reliability.errors import UserAbort

    try:
        return click.confirm(prompt, default=False)
    except click.Abort as e:
        raise UserAbort("Prompt aborted by user") from e


def _run(ctx: click.Context, action: str, dry_run: bool, keep_temp: bool, assume_yes: bool = False) -> None:
    from desktop_installer.core.use_cases.run import run_action

    config = _load_config(ctx)
    result = run_action(
        action,
        config,
        dry_run=dry_run,
        keep_temp=True if keep_temp else None,
        assume_yes=assume_yes,
        confirm=_confirm,
    )

    if result.kept_temp:
        click.echo(f"Temporary files preserved at: {result.temp_dir}")

    if result.ok:
        if action != "check":
            click.secho(f"✅ {action.capitalize()} completed", fg="green", bold=True)
        else:
            click.secho("✅ Application is installed", fg="green")
        return

    if result.error is None:
        # check: application absent
        click.secho("❌ Application is not installed", fg="red")
        sys.exit(int(result.exit_code))

    paths = f"Session log: {result.log_file}" if result.log_file else "No session log"
    die(
        f"{action.capitalize()} failed ({result.error}). {paths}; error log: {result.error_log}",
        int(result.exit_code),
    )


def _action_options(func):
    func = click.option("--keep-temp", is_flag=True, help="Keep the session temp directory.")(func)
    func = click.option("--dry-run", is_flag=True, help="Log what would change without changing it.")(func)
    return func


# ── Actions ─────────────────────────────────────────────────────


@cli.command()
@_action_options
@click.pass_context
def install(ctx: click.Context, dry_run: bool, keep_temp: bool) -> None:
    """Download, build and install the application."""
    _run(ctx, "install", dry_run, keep_temp)


@cli.command()
@_action_options
@click.pass_context
def update(ctx: click.Context, dry_run: bool, keep_temp: bool) -> None:
    """Upgrade an existing installation in place."""
    _run(ctx, "update", dry_run, keep_temp)


@cli.command()
@_action_options
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Do not ask before removing user data.")
@click.pass_context
def uninstall(ctx: click.Context, dry_run: bool, keep_temp: bool, assume_yes: bool) -> None:
    """Remove the application package and, optionally, its user data."""
    _run(ctx, "uninstall", dry_run, keep_temp, assume_yes=assume_yes)


@cli.command()
@_action_options
@click.pass_context
def check(ctx: click.Context, dry_run: bool, keep_temp: bool) -> None:
    """Validate the system and report whether the application is installed."""
    _run(ctx, "check", dry_run, keep_temp)


# ── Config ──────────────────────────────────────────────────────


@cli.group()
def config() -> None:
    """Configuration commands."""


@config.command("show")
@click.argument("pattern", required=False)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_show(ctx: click.Context, pattern: str | None, as_json: bool) -> None:
    """Show the merged configuration (optionally keys matching PATTERN)."""
    store = _load_config(ctx)

    if as_json:
        click.echo(json.dumps(dict(store.items(pattern)), indent=2))
        return

    click.secho("Current configuration:", fg="cyan", bold=True)
    for key, value in store.items(pattern):
        click.echo(f"  {key} = {value}")
    if store.sources:
        click.echo()
        click.echo("Sources: " + ", ".join(str(s) for s in store.sources))


@config.command("validate")
@click.pass_context
def config_validate(ctx: click.Context) -> None:
    """Check the merged configuration against its schema."""
    store = _load_config(ctx)

    if not store.schema_warnings:
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        return

    click.secho("⚠️  Schema violations:", fg="yellow", bold=True)
    for warning in store.schema_warnings:
        click.echo(f"   • {warning}")
    sys.exit(1)


@config.command("init")
@click.argument("path", type=click.Path(dir_okay=False))
@click.option(
    "--template",
    type=click.Choice(["minimal", "wayland-optimized"]),
    default="minimal",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite an existing file.")
def config_init(path: str, template: str, force: bool) -> None:
    """Write a starter override file."""
    from desktop_installer.core.config.loader import create_user_config

    target = Path(path).expanduser()
    if target.exists() and not force:
        click.secho(f"❌ {target} already exists (use --force to overwrite)", fg="red")
        sys.exit(1)
    create_user_config(target, template)
    click.secho(f"✅ Created {target} ({template})", fg="green")


# ── System ──────────────────────────────────────────────────────


@cli.group()
def system() -> None:
    """Host inspection commands."""


@system.command("report")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def system_report(as_json: bool) -> None:
    """Show detected system facts and hardware capabilities."""
    from desktop_installer.adapters.registry import AdapterRegistry
    from desktop_installer.core.services.system_detection import SystemValidator

    report = SystemValidator(AdapterRegistry.default()).system_report()

    if as_json:
        click.echo(json.dumps(report, indent=2))
        return

    click.secho("System information:", fg="cyan", bold=True)
    capabilities = report.pop("capabilities")
    for fact, value in report.items():
        click.echo(f"  {fact:<15} {value}")
    click.echo()
    click.secho("Hardware capabilities:", fg="cyan", bold=True)
    for name, available in capabilities.items():
        marker = click.style("available", fg="green") if available else "not available"
        click.echo(f"  {name:<15} {marker}")


# ── Cache ───────────────────────────────────────────────────────


@cli.group()
def cache() -> None:
    """Download cache commands."""


@cache.command("clean")
@click.option("--max-age-days", type=int, default=None, help="Default: downloader.cache_max_age_days.")
@click.pass_context
def cache_clean(ctx: click.Context, max_age_days: int | None) -> None:
    """Remove old cached downloads and leftovers of aborted runs."""
    from desktop_installer.core.services.downloader import Downloader

    store = _load_config(ctx)
    if max_age_days is None:
        max_age_days = store.get_int("downloader.cache_max_age_days", 7)

    removed = Downloader.from_config(store).clean_cache(max_age_days)
    click.echo(f"Removed {len(removed)} cached files")


if __name__ == "__main__":
    cli()
