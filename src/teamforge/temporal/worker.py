"""
Temporal workers for TeamForge.

Three workers share one process and one set of services:
- provisioning queue: IntentWorkflow, one activity at a time
- reconciliation queue: IntentWorkflow, configurable concurrency
- chat queue: ChatBatchWorkflow, one activity at a time

Usage:
    teamforge-worker

Or programmatically:
    from teamforge.temporal import run_worker
    await run_worker(settings, temporal_config)
"""

import asyncio
import logging
from dataclasses import replace
from typing import List, Optional

from dotenv import load_dotenv
from temporalio.client import Client
from temporalio.worker import UnsandboxedWorkflowRunner, Worker

from ..adapters.base import AdapterSet
from ..config import Settings
from ..services import Services, build_services, load_adapters
from .activities import IntentActivities
from .client import TemporalChatDispatcher, TemporalClient
from .config import TemporalConfig
from .workflows import ChatBatchWorkflow, IntentWorkflow

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def create_workers(client: Client, services: Services, config: TemporalConfig) -> List[Worker]:
    """
    Create the provisioning, reconciliation and chat workers.

    Args:
        client: Connected Temporal client
        services: Wired services the activities run against
        config: Temporal configuration

    Returns:
        Configured Worker instances (not yet running)
    """
    acts = IntentActivities(services.runner, services.chat_runner)
    intent_activities = [acts.run_intent, acts.abort_intent_task]

    # Workflow modules pass through imports that pull in SQLAlchemy; workflows
    # themselves stay deterministic.
    runner = UnsandboxedWorkflowRunner()

    return [
        Worker(
            client,
            task_queue=config.provisioning_task_queue,
            workflows=[IntentWorkflow],
            activities=intent_activities,
            max_concurrent_activities=1,
            workflow_runner=runner,
        ),
        Worker(
            client,
            task_queue=config.reconciliation_task_queue,
            workflows=[IntentWorkflow],
            activities=intent_activities,
            max_concurrent_activities=config.reconciliation_concurrency,
            workflow_runner=runner,
        ),
        Worker(
            client,
            task_queue=config.chat_task_queue,
            workflows=[ChatBatchWorkflow],
            activities=[acts.apply_chat_operation],
            max_concurrent_activities=1,
            workflow_runner=runner,
        ),
    ]


async def run_worker(
    settings: Settings,
    config: TemporalConfig,
    adapters: Optional[AdapterSet] = None,
) -> None:
    """
    Run all workers (blocking) until interrupted.

    Chat batches submitted by the orchestrator always go through the chat
    task queue, whatever dispatcher the adapter factory provides.

    Args:
        settings: Application settings
        config: Temporal configuration
        adapters: Adapter set (loaded from settings.adapter_factory when omitted)
    """
    logger.info(f"Connecting to Temporal at {config.target}...")
    client = await Client.connect(config.target, namespace=config.namespace)

    adapters = adapters or load_adapters(settings.adapter_factory)
    dispatcher = TemporalChatDispatcher(TemporalClient.from_client(client, config))
    services = build_services(settings, replace(adapters, chat_dispatcher=dispatcher))

    workers = create_workers(client, services, config)
    logger.info(
        f"Connected. Workers on '{config.provisioning_task_queue}', "
        f"'{config.reconciliation_task_queue}', '{config.chat_task_queue}'"
    )

    try:
        await asyncio.gather(*(w.run() for w in workers))
    except asyncio.CancelledError:
        logger.info("Workers cancelled, shutting down...")
    finally:
        services.close()
        logger.info("Workers stopped.")


def main():
    """Entry point for running workers from the command line."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    logging.getLogger("temporalio").setLevel(logging.WARNING)

    try:
        asyncio.run(run_worker(Settings.from_env(), TemporalConfig.from_env()))
    except KeyboardInterrupt:
        print("\nWorker interrupted by user.")


if __name__ == "__main__":
    main()
