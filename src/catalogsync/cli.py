"""Command-line interface for catalogsync.

Commands:
- run: Reconcile store and catalog once, now
- diff: Show discrepancies without repairing them
- schedule: Run reconciliation on a cron schedule until interrupted
- list-store: List the objects reconciliation sees in the store
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any

import click

from catalogsync.core.config import Settings
from catalogsync.server.reconcile import ReconciliationJob, SnapshotReadError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_path: Path | None = None, verbose: bool = False) -> None:
    """Configure logging to output to stdout and optionally a file.

    Args:
        log_path: Optional path to a log file.
        verbose: Log at DEBUG instead of INFO.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger("catalogsync")
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    root_logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    if log_path is not None:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def _build_job(ctx: click.Context) -> ReconciliationJob:
    settings: Settings = ctx.obj["settings"]
    try:
        return ReconciliationJob.from_settings(settings)
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Also write logs to this file (default: CATALOGSYNC_LOG_PATH).",
)
@click.version_option(package_name="catalogsync")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, log_file: str | None) -> None:
    """catalogsync - keep the file catalog in step with the object store."""
    try:
        settings = Settings.from_env()
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e
    log_path = log_file or settings.log_path
    setup_logging(Path(log_path) if log_path else None, verbose)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command()
@click.option("--dry-run", is_flag=True, help="Log what would change without changing it.")
@click.pass_context
def run(ctx: click.Context, dry_run: bool) -> None:
    """Reconcile store and catalog once.

    Exits with status 1 if the store or catalog cannot be read.
    """
    job = _build_job(ctx)
    try:
        report = job.run_reconciliation(dry_run=dry_run)
    except SnapshotReadError as e:
        click.echo(f"Reconciliation failed: {e}", err=True)
        sys.exit(1)
    finally:
        job.close()

    click.echo(f"Reconciliation {report.summary()}")
    for failure in report.failures:
        click.echo(f"  {failure.action.value} failed for {failure.item}: {failure.error}", err=True)


@cli.command()
@click.pass_context
def diff(ctx: click.Context) -> None:
    """Show discrepancies between store and catalog."""
    job = _build_job(ctx)
    try:
        result = job.diff()
    except SnapshotReadError as e:
        click.echo(f"Diff failed: {e}", err=True)
        sys.exit(1)
    finally:
        job.close()

    if result.is_consistent:
        click.echo("Store and catalog are consistent.")
        return

    click.echo(f"Missing in catalog ({len(result.missing_in_catalog)}):")
    for obj in result.missing_in_catalog:
        click.echo(f"  + {obj.storage_key} ({obj.size_bytes} bytes)")
    click.echo(f"Missing in store ({len(result.missing_in_store)}):")
    for record in result.missing_in_store:
        click.echo(f"  - {record.record_id} {record.display_name} -> {record.locator_url}")


@cli.command()
@click.option(
    "--cron",
    "cron_expr",
    default=None,
    help="Crontab expression (default: CATALOGSYNC_SCHEDULE or hourly).",
)
@click.option("--run-now", is_flag=True, help="Also run once immediately on start.")
@click.pass_context
def schedule(ctx: click.Context, cron_expr: str | None, run_now: bool) -> None:
    """Run reconciliation on a schedule until SIGINT/SIGTERM."""
    from catalogsync.server.scheduler import ReconciliationScheduler

    settings: Settings = ctx.obj["settings"]
    expr = cron_expr or settings.schedule
    job = _build_job(ctx)
    try:
        scheduler = ReconciliationScheduler(job, expr)
    except ValueError as e:
        job.close()
        raise click.ClickException(f"Invalid schedule '{expr}': {e}") from e

    stop = threading.Event()

    def _handle_signal(signum: int, _frame: Any) -> None:
        logger.info("Received %s, stopping reconciliation scheduler", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("Starting reconciliation with schedule: %s", expr)
    scheduler.start()
    try:
        if run_now:
            try:
                scheduler.run_now()
            except SnapshotReadError:
                logger.error("Initial reconciliation failed; waiting for next scheduled run")
        stop.wait()
    finally:
        scheduler.stop()
        job.close()


@cli.command("list-store")
@click.pass_context
def list_store(ctx: click.Context) -> None:
    """List the objects reconciliation sees in the store."""
    from catalogsync.server.storage import create_store

    settings: Settings = ctx.obj["settings"]
    store = create_store(settings.store)
    try:
        objects = store.list(settings.store.prefix)
    except Exception as e:
        raise click.ClickException(f"Failed to list {store.location}: {e}") from e

    if not objects:
        click.echo(f"No files found in {store.location}.")
        return
    click.echo(f"Files in {store.location}:")
    for obj in objects:
        click.echo(f"- Key: {obj.storage_key}, Name: {obj.display_name}, Size: {obj.size_bytes}")


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
