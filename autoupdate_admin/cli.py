"""
Admin CLI for managing auto-update intents and inspecting the upgrade history.

Operates directly on the database, so it works without the API server.
"""

import asyncio
import json
import os
import sys

import click

from autoupdate_common.errors import NotFoundError, ValidationError
from autoupdate_common.models import criteria_from_fields
from autoupdate_engine.analytics import calculate_stats, filter_by_endpoints
from autoupdate_engine.intent_store import IntentStore
from autoupdate_persistence.sqlite_repository import SQLiteAutoUpdateRepository


def get_db_path() -> str:
    """Get the database path from environment variable or default."""
    return os.environ.get("AU_DB_PATH", "autoupdate.db")


def get_repository() -> SQLiteAutoUpdateRepository:
    """Get the repository instance."""
    return SQLiteAutoUpdateRepository(get_db_path())


def run_async(coro):
    """Helper to run async functions in CLI commands."""
    return asyncio.run(coro)


def fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def describe_criteria(intent) -> str:
    fields = intent.criteria.to_fields()
    if fields["image_repo"]:
        return f"image={fields['image_repo']}"
    if fields["stack_name"]:
        return f"stack={fields['stack_name']}/{fields['service_name']}"
    return f"name={fields['container_name']}"


@click.group()
def cli():
    """Auto-update Admin - Manage intents and inspect upgrade history."""
    pass


@cli.group()
def intent():
    """Manage auto-update intents."""
    pass


@cli.group()
def history():
    """Inspect the upgrade history."""
    pass


# ============================================================================
# Intent Commands
# ============================================================================


@intent.command("create")
@click.option("--image-repo", help="Match containers by image repository")
@click.option("--stack", help="Match by compose stack (requires --service)")
@click.option("--service", help="Match by compose service (requires --stack)")
@click.option("--container-name", help="Match one container by name")
@click.option("--description", help="Free-text description")
@click.option("--enabled", is_flag=True, help="Enable the intent immediately")
def intent_create(
    image_repo: str | None,
    stack: str | None,
    service: str | None,
    container_name: str | None,
    description: str | None,
    enabled: bool,
):
    """Create a new intent with exactly one criteria shape."""
    try:
        criteria = criteria_from_fields(
            image_repo=image_repo,
            stack_name=stack,
            service_name=service,
            container_name=container_name,
        )
    except ValidationError as e:
        fail(str(e))

    async def create():
        repo = get_repository()
        await repo.initialize()

        try:
            intent_obj = await IntentStore(repo).create(
                criteria, description=description, enabled=enabled
            )

            click.echo("✓ Intent created successfully")
            click.echo(f"  ID:       {intent_obj.id}")
            click.echo(f"  Criteria: {describe_criteria(intent_obj)}")
            click.echo(f"  Enabled:  {'yes' if intent_obj.enabled else 'no'}")

        finally:
            await repo.close()

    run_async(create())


@intent.command("list")
@click.option("--enabled-only", is_flag=True, help="Only list enabled intents")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def intent_list(enabled_only: bool, json_output: bool):
    """List intents in creation order."""

    async def list_intents():
        repo = get_repository()
        await repo.initialize()

        try:
            intents = await IntentStore(repo).list(enabled_only=enabled_only)

            if json_output:
                click.echo(json.dumps([i.to_dict() for i in intents], indent=2))
                return

            if not intents:
                click.echo("No intents found.")
                return

            click.echo(f"\n{'ID':<38} {'Enabled':<8} {'Criteria':<40} {'Description'}")
            click.echo("-" * 110)
            for i in intents:
                enabled = "yes" if i.enabled else "no"
                click.echo(
                    f"{i.id:<38} {enabled:<8} {describe_criteria(i):<40} {i.description or ''}"
                )
            click.echo()

        finally:
            await repo.close()

    run_async(list_intents())


def _set_enabled(intent_id: str, enabled: bool) -> None:
    async def set_enabled():
        repo = get_repository()
        await repo.initialize()

        try:
            await IntentStore(repo).set_enabled(intent_id, enabled)
            click.echo(f"✓ Intent {'enabled' if enabled else 'disabled'}: {intent_id}")
        except NotFoundError as e:
            fail(str(e))
        finally:
            await repo.close()

    run_async(set_enabled())


@intent.command("enable")
@click.argument("intent_id")
def intent_enable(intent_id: str):
    """Enable an intent."""
    _set_enabled(intent_id, True)


@intent.command("disable")
@click.argument("intent_id")
def intent_disable(intent_id: str):
    """Disable an intent."""
    _set_enabled(intent_id, False)


@intent.command("delete")
@click.argument("intent_id")
@click.confirmation_option(prompt="Are you sure you want to delete this intent?")
def intent_delete(intent_id: str):
    """Delete an intent (history records are kept)."""

    async def delete():
        repo = get_repository()
        await repo.initialize()

        try:
            await IntentStore(repo).delete(intent_id)
            click.echo(f"✓ Intent deleted: {intent_id}")
        except NotFoundError as e:
            fail(str(e))
        finally:
            await repo.close()

    run_async(delete())


# ============================================================================
# History Commands
# ============================================================================


@history.command("list")
@click.option("--limit", type=int, default=None, help="Maximum number of records")
@click.option("--offset", type=int, default=0, help="Number of records to skip")
@click.option("--container", help="Filter by container name (substring)")
@click.option(
    "--status", type=click.Choice(["success", "failed"]), help="Filter by status"
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def history_list(
    limit: int | None,
    offset: int,
    container: str | None,
    status: str | None,
    json_output: bool,
):
    """List upgrade records in insertion order."""

    async def list_records():
        repo = get_repository()
        await repo.initialize()

        try:
            records = await repo.query_upgrade_history(
                container_name=container, status=status, limit=limit, offset=offset
            )

            if json_output:
                click.echo(json.dumps([r.to_dict() for r in records], indent=2))
                return

            if not records:
                click.echo("No upgrade history found.")
                return

            click.echo(
                f"\n{'ID':<38} {'Container':<24} {'Status':<8} {'From':<14} {'To':<14} {'Started'}"
            )
            click.echo("-" * 120)
            for r in records:
                click.echo(
                    f"{r.id:<38} {r.container_name[:24]:<24} {r.status:<8} "
                    f"{(r.old_version or '-')[:14]:<14} {(r.new_version or '-')[:14]:<14} "
                    f"{r.started_at.strftime('%Y-%m-%d %H:%M:%S')}"
                )
            click.echo()

        finally:
            await repo.close()

    run_async(list_records())


@history.command("show")
@click.argument("record_id")
def history_show(record_id: str):
    """Show one upgrade record."""

    async def show():
        repo = get_repository()
        await repo.initialize()

        try:
            record = await repo.get_upgrade_record(record_id)
            if record is None:
                fail(f"Upgrade record not found: {record_id}")

            click.echo("\nUpgrade Record:")
            click.echo(f"  ID:        {record.id}")
            click.echo(f"  Container: {record.container_name} ({record.container_id})")
            click.echo(f"  Endpoint:  {record.source_endpoint_name or '-'}")
            click.echo(f"  Status:    {record.status}")
            click.echo(f"  From:      {record.old_image or '-'}")
            click.echo(f"  To:        {record.new_image or '-'}")
            click.echo(f"  Started:   {record.started_at.isoformat()}")
            if record.duration_ms is not None:
                click.echo(f"  Duration:  {record.duration_ms / 1000:.1f}s")
            if record.error_message:
                click.echo(f"  Error:     {record.error_message}")
            click.echo()

        finally:
            await repo.close()

    run_async(show())


@history.command("stats")
@click.option(
    "--endpoint",
    "endpoints",
    multiple=True,
    help="Restrict to an endpoint (repeatable; default: all endpoints)",
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def history_stats(endpoints: tuple[str, ...], json_output: bool):
    """Summary statistics over the upgrade history."""

    async def stats():
        repo = get_repository()
        await repo.initialize()

        try:
            records = filter_by_endpoints(
                await repo.query_upgrade_history(), set(endpoints)
            )
            summary = calculate_stats(records)

            if json_output:
                click.echo(json.dumps(summary, indent=2))
                return

            click.echo("\nUpgrade Statistics:")
            click.echo(f"  Total upgrades:    {summary['totalUpgrades']}")
            click.echo(f"  Success rate:      {summary['successRate']}%")
            click.echo(
                f"  Average duration:  {summary['avgDuration']}s ({summary['speedScore']})"
            )
            click.echo(f"  Unique containers: {summary['uniqueContainers']}")
            click.echo(f"  Most upgraded:     {summary['mostUpgradedContainer']}")
            click.echo(f"  Most reliable:     {summary['mostReliableContainer']}")
            click.echo(f"  Busiest day:       {summary['busiestDay']}")
            click.echo(f"  Busiest hour:      {summary['busiestHour']}")
            click.echo()

        finally:
            await repo.close()

    run_async(stats())


if __name__ == "__main__":
    cli()
