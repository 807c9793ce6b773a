"""Command line entry points: the pre-commit sync hook and update helpers."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from ._version import __version__
from .config import ConfigManager, Settings
from .constants import CONFIG_FILENAME, LOG_DIR
from .controller import UpdateController
from .exceptions import ExitCode, VersyncError
from .logging_config import setup_logging
from .sync import SyncPipeline

app = typer.Typer(help="Keep project manifest versions in sync and check for app updates.")

logger = logging.getLogger(__name__)


def _load_settings(root: Path, config: Optional[Path], log_level: Optional[str], log_file: bool) -> Settings:
    config_path = config or root / CONFIG_FILENAME
    try:
        settings = ConfigManager(config_path).load()
    except VersyncError as e:
        setup_logging(log_level or 'INFO')
        logger.error(str(e))
        raise typer.Exit(code=int(e.exit_code))
    setup_logging(log_level or settings.log_level, LOG_DIR if log_file else None)
    return settings


@app.command("sync", help="Sync dependent manifests to the primary version and stage the changes.")
def sync_command(
    root: Path = typer.Option(Path('.'), "--root", help="Project root directory."),
    config: Optional[Path] = typer.Option(None, "--config", help=f"Config file (default: <root>/{CONFIG_FILENAME})."),
    no_stage: bool = typer.Option(False, "--no-stage", help="Write files but do not run 'git add'."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level."),
    log_file: bool = typer.Option(False, "--log-file", help="Also write ~/.versync/logs/latest.log."),
) -> None:
    settings = _load_settings(root, config, log_level, log_file)
    pipeline = SyncPipeline(root, settings.sync)
    try:
        report = asyncio.run(pipeline.run(stage=False if no_stage else None))
    except VersyncError as e:
        logger.error(f"Error during version sync: {e}")
        raise typer.Exit(code=int(e.exit_code))
    except Exception:
        logger.exception("Unexpected error during version sync.")
        raise typer.Exit(code=int(ExitCode.UNEXPECTED))

    for warning in report.warnings:
        typer.echo(f"warning: {warning}", err=True)
    if report.changed:
        for path in report.changes.paths:
            typer.echo(f"synced {path} -> {report.version}")


@app.command("check", help="Report mismatched manifests without changing anything.")
def check_command(
    root: Path = typer.Option(Path('.'), "--root", help="Project root directory."),
    config: Optional[Path] = typer.Option(None, "--config", help=f"Config file (default: <root>/{CONFIG_FILENAME})."),
) -> None:
    settings = _load_settings(root, config, None, False)
    try:
        plan = SyncPipeline(root, settings.sync).check()
    except VersyncError as e:
        logger.error(str(e))
        raise typer.Exit(code=int(e.exit_code))
    if not plan:
        typer.echo("All manifests are in sync.")
        return
    for entry in plan:
        typer.echo(f"{entry.descriptor.path}: {entry.old} != {entry.new}")
    raise typer.Exit(code=int(ExitCode.OUT_OF_SYNC))


@app.command("version", help="Print the application version.")
def version_command() -> None:
    typer.echo(__version__)


@app.command("check-update", help="Check GitHub for a newer release.")
def check_update_command(
    root: Path = typer.Option(Path('.'), "--root", help="Directory holding the config file."),
) -> None:
    settings = _load_settings(root, None, None, False)
    controller = UpdateController.from_settings(settings.updater)
    result = asyncio.run(controller.check_for_updates())
    if not result['success']:
        typer.echo(result['error'], err=True)
        raise typer.Exit(code=int(ExitCode.UNEXPECTED))
    info = result['info']
    if info.has_update:
        typer.echo(f"New version available: {info.latest} (current {info.current})")
        if info.download_url:
            typer.echo(info.download_url)
    else:
        typer.echo(f"You are running the latest version ({info.current}).")


@app.command("trigger-update", help="Download and launch the installer for a newer release.")
def trigger_update_command(
    root: Path = typer.Option(Path('.'), "--root", help="Directory holding the config file."),
) -> None:
    settings = _load_settings(root, None, None, False)
    controller = UpdateController.from_settings(settings.updater)
    result = asyncio.run(controller.trigger_update_check())
    if not result['success']:
        typer.echo(result['error'], err=True)
        raise typer.Exit(code=int(ExitCode.UNEXPECTED))
    typer.echo(result['message'])
