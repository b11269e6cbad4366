#!/usr/bin/env python3
"""
TeamForge CLI — Command Line Interface for workers, the API and operators.

Usage:
    teamforge worker
    teamforge serve [--host HOST] [--port PORT] [--local]
    teamforge enqueue <intent-json | @file> [--task-id ID] [--local]
    teamforge create-team <name> [--kind KIND] [--member USER_ID ...] [--option key=value ...]
    teamforge task <task_id>
    teamforge tasks [--entity-type TYPE] [--entity-id ID] [--page N] [--limit N]
    teamforge repair <task_id> --status completed|failed --note TEXT

Examples:
    # Queue a full event sync
    teamforge enqueue '{"action": "sync", "event_id": "evt-1"}'

    # Create a team with wiki and VCS enabled, run in-process
    teamforge --config teamforge.yaml create-team blue-hawks --kind competition \\
        --member usr-1 --option wiki=true --option vcs=true --local
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .config import Settings
from .errors import TeamForgeError
from .jobs import IntentQueue, LocalIntentQueue
from .provisioning.intents import CreateTeam, IntegrationOptions
from .services import Services, build_services
from .storage.models import TaskStatus
from .tasks.models import Task
from .temporal.client import TemporalClient, TemporalIntentQueue
from .temporal.config import TemporalConfig
from .temporal.worker import run_worker

STATUS_ICONS = {
    TaskStatus.PENDING: "⏳",
    TaskStatus.RUNNING: "🔄",
    TaskStatus.COMPLETED: "✅",
    TaskStatus.FAILED: "❌",
}


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )
    # Quiet down noisy loggers
    if not verbose:
        logging.getLogger("temporalio").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def load_settings(config_path: Optional[str]) -> Settings:
    settings = Settings.from_env()
    if config_path:
        settings = Settings.from_yaml(config_path, base=settings)
    return settings


def parse_option_params(option_args: list) -> Dict[str, Any]:
    """Parse --option key=value arguments into integration option flags."""
    params: Dict[str, Any] = {}
    for arg in option_args:
        if "=" not in arg:
            print(f"Warning: Invalid option format '{arg}', expected key=value")
            continue
        key, value = arg.split("=", 1)
        params[key] = value.strip().lower() in ("1", "true", "yes", "on")
    return params


def load_intent(source: str) -> Dict[str, Any]:
    """Intent from inline JSON/YAML or from @path."""
    if source.startswith("@"):
        with open(source[1:]) as f:
            data = yaml.safe_load(f)
    else:
        data = yaml.safe_load(source)
    if not isinstance(data, dict):
        raise TeamForgeError("Intent must be a mapping with an 'action' key")
    return data


def make_queue(services: Services, local: bool) -> IntentQueue:
    if local:
        return LocalIntentQueue(services.task_store, services.runner)
    return TemporalIntentQueue(TemporalClient(TemporalConfig.from_env()), services.runner)


def print_task(task: Task):
    """Show a Task with its subtasks."""
    print(f"\n{STATUS_ICONS[task.status]} {task.name}  [{task.id}]")
    print("=" * 50)
    print(f"  Status:  {task.status.value}")
    print(f"  Entity:  {task.entity_type} {task.entity_id}")
    print(f"  Created: {task.created_at.isoformat()}")
    if task.finished_at:
        print(f"  Finished: {task.finished_at.isoformat()}")
    if task.error:
        print(f"  Error:   {task.error}")

    print("\n  Subtasks:")
    for sub in task.subtasks:
        note = f" - {sub.error}" if sub.error else ""
        if sub.result and sub.result.get("skipped"):
            note = " (skipped)"
        print(f"    {STATUS_ICONS[sub.status]} {sub.index}. {sub.name}: {sub.status.value}{note}")

    for warning in task.warnings:
        print(f"  ⚠️  {warning}")
    for error in task.errors:
        print(f"  ❗ {error}")


# =============================================================================
# Commands
# =============================================================================

def run_enqueue(args, services: Services) -> int:
    intent = load_intent(args.intent)
    queue = make_queue(services, args.local)
    task_id = asyncio.run(queue.enqueue(intent, task_id=args.task_id))
    print(f"Queued task {task_id}")
    if args.local:
        print_task(services.task_store.get_task(task_id))
    return 0


def run_create_team(args, services: Services) -> int:
    team = services.team_store.create_team(
        name=args.name,
        kind=args.kind,
        subtype=args.subtype,
        description=args.description,
    )
    for user_id in args.member or []:
        services.team_store.add_member(team.id, user_id)
    print(f"Team created: {team.name} [{team.id}]")

    intent = CreateTeam(team_id=team.id, options=IntegrationOptions(**parse_option_params(args.option or [])))
    queue = make_queue(services, args.local)
    task_id = asyncio.run(queue.enqueue(intent))
    print(f"Queued task {task_id}")
    if args.local:
        print_task(services.task_store.get_task(task_id))
    return 0


def run_show_task(args, services: Services) -> int:
    task = services.task_store.get_task(args.task_id)
    if task is None:
        print(f"\n❌ Task not found: {args.task_id}")
        return 1
    if args.json:
        print(json.dumps(task.model_dump(mode="json"), indent=2))
    else:
        print_task(task)
    return 0


def run_list_tasks(args, services: Services) -> int:
    result = services.task_store.list_tasks(args.entity_type, args.entity_id, page=args.page, limit=args.limit)
    print(f"\n📋 Tasks (page {result.page}/{max(result.total_pages, 1)}, {result.total} total):")
    print("=" * 50)
    if not result.tasks:
        print("  (no tasks found)")
    for task in result.tasks:
        print(f"  {STATUS_ICONS[task.status]} {task.id}  {task.name}  {task.created_at:%Y-%m-%d %H:%M}")
    return 0


def run_repair(args, services: Services) -> int:
    task = services.task_store.repair_task(args.task_id, TaskStatus(args.status), args.note)
    print_task(task)
    return 0


def run_serve(args, settings: Settings) -> int:
    import uvicorn

    from .api_gateway.gateway import build_gateway, create_app

    temporal_config = None if args.local else TemporalConfig.from_env()
    app = create_app(build_gateway(settings, temporal_config))
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="TeamForge CLI - team provisioning and membership reconciliation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s worker
  %(prog)s enqueue '{"action": "sync", "event_id": "evt-1", "mode": "auto_assign"}'
  %(prog)s task tsk-1a2b3c
  %(prog)s repair tsk-1a2b3c --status failed --note "vcs team removed by hand"
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("-c", "--config", help="YAML settings file")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("worker", help="Run Temporal workers")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--local", action="store_true", help="Run intents in-process instead of Temporal")

    enqueue_parser = subparsers.add_parser("enqueue", help="Queue an intent")
    enqueue_parser.add_argument("intent", help="Intent JSON/YAML, or @path to a file")
    enqueue_parser.add_argument("--task-id", help="Existing pending task to reuse")
    enqueue_parser.add_argument("--local", action="store_true", help="Run in-process instead of Temporal")

    create_parser = subparsers.add_parser("create-team", help="Create a team and queue its provisioning")
    create_parser.add_argument("name")
    create_parser.add_argument("--kind", default="development")
    create_parser.add_argument("--subtype")
    create_parser.add_argument("--description")
    create_parser.add_argument("--member", "-m", action="append", help="User id to add (repeatable)")
    create_parser.add_argument("--option", "-o", action="append", help="Integration option (key=value)")
    create_parser.add_argument("--local", action="store_true", help="Run in-process instead of Temporal")

    task_parser = subparsers.add_parser("task", help="Show a task")
    task_parser.add_argument("task_id")
    task_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    tasks_parser = subparsers.add_parser("tasks", help="List tasks")
    tasks_parser.add_argument("--entity-type")
    tasks_parser.add_argument("--entity-id")
    tasks_parser.add_argument("--page", type=int, default=1)
    tasks_parser.add_argument("--limit", type=int, default=20)

    repair_parser = subparsers.add_parser("repair", help="Operator repair of a stuck task")
    repair_parser.add_argument("task_id")
    repair_parser.add_argument("--status", required=True, choices=["completed", "failed"])
    repair_parser.add_argument("--note", required=True, help="What was fixed by hand")

    args = parser.parse_args()

    load_dotenv()
    setup_logging(args.verbose)
    settings = load_settings(args.config)

    if args.command == "worker":
        try:
            asyncio.run(run_worker(settings, TemporalConfig.from_env()))
        except KeyboardInterrupt:
            print("\nWorker interrupted by user.")
        return 0
    if args.command == "serve":
        return run_serve(args, settings)
    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "enqueue": run_enqueue,
        "create-team": run_create_team,
        "task": run_show_task,
        "tasks": run_list_tasks,
        "repair": run_repair,
    }
    services = build_services(settings)
    try:
        return commands[args.command](args, services)
    except TeamForgeError as e:
        print(f"\n❌ Error: {e}")
        return 1
    finally:
        services.close()


if __name__ == "__main__":
    sys.exit(main())
