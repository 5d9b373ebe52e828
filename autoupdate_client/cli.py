import argparse
import json
import os
import sys
from datetime import datetime
from typing import Any

from .client import (
    create_intent,
    delete_intent,
    dry_run_intent,
    get_history_record,
    get_history_stats,
    list_history,
    list_intent_executions,
    list_intents,
    run_batch_pass,
    set_intent_enabled,
    upgrade_container,
)


def get_server_url() -> str:
    """
    Get the auto-update server URL from environment variable or use default.

    Environment variables:
    - AU_SERVER_URL: Custom server URL (useful for testing with different ports)
    """
    return os.environ.get("AU_SERVER_URL", "http://localhost:8000")


def format_time(time_str: str | None) -> str:
    """Format ISO timestamp to human-readable format."""
    if not time_str:
        return "N/A"
    try:
        dt = datetime.fromisoformat(time_str.replace("Z", "+00:00"))
        return dt.strftime("%Y-%m-%d %H:%M:%S")
    except (ValueError, AttributeError):
        return time_str


def format_criteria(intent: dict[str, Any]) -> str:
    """Render an intent's criteria in one short string."""
    if intent.get("imageRepo"):
        return f"image={intent['imageRepo']}"
    if intent.get("stackName"):
        return f"stack={intent['stackName']}/{intent.get('serviceName')}"
    return f"name={intent.get('containerName')}"


def format_duration(duration_ms: int | None) -> str:
    if duration_ms is None:
        return "-"
    return f"{duration_ms / 1000:.1f}s"


def print_intents(intents: list[dict[str, Any]]) -> None:
    if not intents:
        print("No intents found.")
        return

    print(f"{'INTENT ID':<38} {'ENABLED':<8} {'CRITERIA':<40} {'DESCRIPTION'}")
    print("-" * 110)
    for intent in intents:
        enabled = "yes" if intent["enabled"] else "no"
        print(
            f"{intent['id']:<38} {enabled:<8} {format_criteria(intent):<40} "
            f"{intent.get('description') or ''}"
        )


def print_match(result: dict[str, Any]) -> None:
    print(
        f"Matched {result['matchedCount']} containers, "
        f"{result['withUpdatesCount']} with updates"
    )
    for container in result["matchedContainers"]:
        update = container.get("updateAvailable") or "up to date"
        print(f"  {container['name']:<30} {container['imageRepo']:<35} {update}")


def print_executions(executions: list[dict[str, Any]]) -> None:
    if not executions:
        print("No executions found.")
        return

    print(
        f"{'STARTED':<20} {'STATUS':<10} {'MATCHED':>7} {'UPDATES':>7} "
        f"{'UPGRADED':>8} {'FAILED':>6}  {'ERROR'}"
    )
    print("-" * 90)
    for execution in executions:
        print(
            f"{format_time(execution.get('startedAt')):<20} {execution['status']:<10} "
            f"{execution['containersMatched']:>7} {execution['containersWithUpdates']:>7} "
            f"{execution['containersUpgraded']:>8} {execution['containersFailed']:>6}  "
            f"{execution.get('errorMessage') or ''}"
        )


def print_history(records: list[dict[str, Any]]) -> None:
    if not records:
        print("No upgrade history found.")
        return

    print(
        f"{'RECORD ID':<38} {'CONTAINER':<24} {'STATUS':<8} "
        f"{'FROM':<14} {'TO':<14} {'STARTED':<20} {'DURATION'}"
    )
    print("-" * 130)
    for record in records:
        print(
            f"{record['id']:<38} {record['containerName'][:24]:<24} {record['status']:<8} "
            f"{(record.get('oldVersion') or '-')[:14]:<14} "
            f"{(record.get('newVersion') or '-')[:14]:<14} "
            f"{format_time(record.get('startedAt')):<20} "
            f"{format_duration(record.get('durationMs'))}"
        )


def print_stats(stats: dict[str, Any]) -> None:
    summary = stats["summary"]
    print(f"Total upgrades:      {summary['totalUpgrades']}")
    print(f"Success rate:        {summary['successRate']}%")
    print(f"Average duration:    {summary['avgDuration']}s ({summary['speedScore']})")
    print(f"Unique containers:   {summary['uniqueContainers']}")
    print(f"Most upgraded:       {summary['mostUpgradedContainer']}")
    print(f"Most reliable:       {summary['mostReliableContainer']}")
    print(f"Busiest day / hour:  {summary['busiestDay']} / {summary['busiestHour']}")
    print(f"Upgrades per day:    {summary['upgradeVelocity']}")
    print(f"Fastest / slowest:   {summary['fastestUpgrade']} / {summary['slowestUpgrade']}")


def print_pass(result: dict[str, Any]) -> None:
    print(
        f"Pass {result['passId']}: {result['intentsEvaluated']} intents, "
        f"{result['upgradesSucceeded']} upgraded, {result['upgradesFailed']} failed"
    )
    for intent_id, error in result["errors"].items():
        print(f"  {intent_id}: {error}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Auto-update intents CLI")
    parser.add_argument(
        "--json",
        dest="json_mode",
        action="store_true",
        help="Output in JSON format",
    )
    subparsers = parser.add_subparsers(dest="command")

    # autoupdate intents ...
    intents_parser = subparsers.add_parser("intents", help="Manage auto-update intents")
    intents_sub = intents_parser.add_subparsers(dest="action")

    intents_sub.add_parser("list", help="List all intents")

    create_parser = intents_sub.add_parser("create", help="Create an intent")
    create_parser.add_argument("--image-repo", help="Match containers by image repository")
    create_parser.add_argument("--stack", help="Match by compose stack (requires --service)")
    create_parser.add_argument("--service", help="Match by compose service (requires --stack)")
    create_parser.add_argument("--container-name", help="Match one container by name")
    create_parser.add_argument("--description", help="Free-text description")
    create_parser.add_argument(
        "--enabled", action="store_true", help="Enable the intent immediately"
    )

    for name, help_text in (
        ("test", "Dry-run an intent (no upgrades)"),
        ("enable", "Enable an intent"),
        ("disable", "Disable an intent"),
        ("delete", "Delete an intent"),
    ):
        action_parser = intents_sub.add_parser(name, help=help_text)
        action_parser.add_argument("intent_id", help="Intent ID")

    executions_parser = intents_sub.add_parser(
        "executions", help="Show an intent's batch pass executions"
    )
    executions_parser.add_argument("intent_id", help="Intent ID")
    executions_parser.add_argument(
        "--limit", type=int, default=20, help="Maximum executions (newest first)"
    )

    # autoupdate history ...
    history_parser = subparsers.add_parser("history", help="Inspect the upgrade history")
    history_sub = history_parser.add_subparsers(dest="action")

    list_parser = history_sub.add_parser("list", help="List upgrade records")
    list_parser.add_argument("--limit", type=int, default=None, help="Maximum records")
    list_parser.add_argument("--offset", type=int, default=0, help="Records to skip")
    list_parser.add_argument("--container", help="Filter by container name (substring)")
    list_parser.add_argument("--status", choices=["success", "failed"], help="Filter by status")

    show_parser = history_sub.add_parser("show", help="Show one upgrade record")
    show_parser.add_argument("record_id", help="Upgrade record ID")

    stats_parser = history_sub.add_parser("stats", help="Upgrade statistics")
    stats_parser.add_argument(
        "--endpoint",
        action="append",
        default=[],
        help="Restrict to an endpoint (repeatable; default: all endpoints)",
    )

    # autoupdate upgrade <container_id>
    upgrade_parser = subparsers.add_parser("upgrade", help="Manually upgrade one container")
    upgrade_parser.add_argument("container_id", help="Container ID")

    # autoupdate run
    subparsers.add_parser("run", help="Run one batch pass now")

    return parser


def dispatch(args: argparse.Namespace, server_url: str) -> Any:
    """Call the server for the parsed command and print the result."""
    action = getattr(args, "action", None)

    if args.command == "intents" and action == "list":
        result = list_intents(server_url=server_url)
        printer = print_intents
    elif args.command == "intents" and action == "create":
        result = create_intent(
            image_repo=args.image_repo,
            stack_name=args.stack,
            service_name=args.service,
            container_name=args.container_name,
            description=args.description,
            enabled=args.enabled,
            server_url=server_url,
        )
        printer = lambda intent: print(f"Intent created: {intent['id']}")  # noqa: E731
    elif args.command == "intents" and action == "test":
        result = dry_run_intent(args.intent_id, server_url=server_url)
        printer = print_match
    elif args.command == "intents" and action in ("enable", "disable"):
        result = set_intent_enabled(
            args.intent_id, action == "enable", server_url=server_url
        )
        printer = lambda intent: print(f"Intent {intent['id']} {action}d")  # noqa: E731
    elif args.command == "intents" and action == "delete":
        delete_intent(args.intent_id, server_url=server_url)
        result = {"deleted": args.intent_id}
        printer = lambda _: print(f"Intent {args.intent_id} deleted")  # noqa: E731
    elif args.command == "intents" and action == "executions":
        result = list_intent_executions(args.intent_id, args.limit, server_url=server_url)
        printer = print_executions
    elif args.command == "history" and action == "list":
        result = list_history(
            limit=args.limit,
            offset=args.offset,
            container_name=args.container,
            status=args.status,
            server_url=server_url,
        )
        printer = print_history
    elif args.command == "history" and action == "show":
        result = get_history_record(args.record_id, server_url=server_url)
        printer = lambda record: print(json.dumps(record, indent=2))  # noqa: E731
    elif args.command == "history" and action == "stats":
        result = get_history_stats(args.endpoint, server_url=server_url)
        printer = print_stats
    elif args.command == "upgrade":
        result = upgrade_container(args.container_id, server_url=server_url)
        printer = lambda record: print_history([record])  # noqa: E731
    elif args.command == "run":
        result = run_batch_pass(server_url=server_url)
        printer = print_pass
    else:
        return None

    if args.json_mode:
        print(json.dumps(result, indent=2))
    else:
        printer(result)
    return result


def main(argv: list[str] | None = None):
    """Main entry point for the auto-update CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        result = dispatch(args, get_server_url())
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if result is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "upgrade" and result.get("status") != "success":
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
