"""CLI tools for running automation sweeps and inspecting action items."""

import json

import click

from app.core.async_utils import run_async
from app.core.config import settings
from app.core.structured_logging import configure_logging
from app.db.enums import EntityType, JobType
from app.db.session import SessionLocal
from app.jobs.registry import ScheduledJob, run_job
from app.services.action_item_engine import collect_action_items
from app.services.automation_store import SqlAutomationStore


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL for this run")
def cli(log_level: str | None):
    """Pipeline automation CLI tools."""
    configure_logging(log_level or settings.LOG_LEVEL)


def _run_job(job: ScheduledJob, timeout: float | None) -> dict[str, int]:
    db = SessionLocal()
    try:
        return run_async(run_job, db, job, timeout=timeout)
    finally:
        db.close()


@cli.command("sweep-sequences")
@click.option("--limit", type=int, default=None, help="Max due steps to execute (default: SEQUENCE_SWEEP_BATCH_SIZE)")
@click.option("--timeout", type=float, default=None, help="Abort the sweep after N seconds")
def sweep_sequences(limit: int | None, timeout: float | None):
    """
    Execute delayed sequence steps that are due.

    Example:
        python -m app.cli sweep-sequences --limit 50
    """
    payload = {"limit": limit} if limit else {}
    counts = _run_job(ScheduledJob(job_type=JobType.SEQUENCE_STEP_SWEEP.value, payload=payload), timeout)
    click.echo(
        f"✓ {counts['due']} due: {counts['executed']} executed, "
        f"{counts['failed']} failed, {counts['skipped']} skipped, {counts['not_run']} not run"
    )


@cli.command("sweep-inactivity")
@click.option(
    "--entity-type",
    "entity_types",
    type=click.Choice([e.value for e in EntityType]),
    multiple=True,
    help="Restrict to one or more entity types (default: all)",
)
@click.option("--timeout", type=float, default=None, help="Abort the sweep after N seconds")
def sweep_inactivity(entity_types: tuple[str, ...], timeout: float | None):
    """
    Fire days_inactive rules for every active entity (once per rule per day).

    Example:
        python -m app.cli sweep-inactivity --entity-type client
    """
    payload = {"entity_types": list(entity_types)} if entity_types else {}
    counts = _run_job(ScheduledJob(job_type=JobType.INACTIVITY_SWEEP.value, payload=payload), timeout)
    click.echo(
        f"✓ {counts['entities']} entities checked: {counts['actions']} actions, {counts['failed']} failed"
    )


@cli.command("action-items")
@click.argument("entity_type", type=click.Choice([e.value for e in EntityType]))
@click.option("--as-json", is_flag=True, help="Print items as JSON")
def action_items(entity_type: str, as_json: bool):
    """
    List ranked action items for every active entity of a type.

    Example:
        python -m app.cli action-items caregiver
    """
    db = SessionLocal()
    try:
        items = run_async(collect_action_items, SqlAutomationStore(db), entity_type)
    finally:
        db.close()

    if as_json:
        click.echo(json.dumps([item.to_dict() for item in items], indent=2))
        return
    if not items:
        click.echo("✓ Nothing needs attention")
        return
    for item in items:
        click.echo(f"[{item.urgency.upper():8}] {item.name}: {item.title}")
        click.echo(f"           {item.detail}")


if __name__ == "__main__":
    cli()
