"""
Service wiring.

Builds the stores, orchestrator, reconciliation engine and intent runner from
Settings and an AdapterSet. Entry points (worker, API server, CLI) call
build_services() once at startup.
"""

import importlib
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .adapters.base import AdapterSet
from .config import Settings
from .errors import ValidationError
from .jobs import IntentRunner
from .provisioning.chat_batch import ChatBatchRunner
from .provisioning.orchestrator import ProvisioningOrchestrator
from .reconciliation.engine import ReconciliationEngine
from .storage.database import Database
from .storage.event_store import EventStore
from .storage.team_store import TeamStore
from .tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    db: Database
    adapters: AdapterSet
    team_store: TeamStore
    event_store: EventStore
    task_store: TaskStore
    orchestrator: ProvisioningOrchestrator
    engine: ReconciliationEngine
    runner: IntentRunner
    chat_runner: Optional[ChatBatchRunner] = None

    def close(self) -> None:
        self.db.dispose()


def load_adapters(spec: str) -> AdapterSet:
    """
    Build an AdapterSet from a "module:callable" factory path.

    Raises:
        ValidationError: Malformed path or factory not returning an AdapterSet
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValidationError(f"Adapter factory must look like 'module:callable', got {spec!r}")

    module = importlib.import_module(module_name)
    factory: Callable[[], AdapterSet] = getattr(module, attr)
    adapters = factory()
    if not isinstance(adapters, AdapterSet):
        raise ValidationError(f"Adapter factory {spec} returned {type(adapters).__name__}")
    logger.info(f"Adapters loaded from {spec}")
    return adapters


def build_services(
    settings: Settings,
    adapters: Optional[AdapterSet] = None,
    db: Optional[Database] = None,
) -> Services:
    """
    Wire every component against one database.

    Args:
        settings: Application settings
        adapters: Adapter set (loaded from settings.adapter_factory when omitted)
        db: Existing database (opened from settings.database_url when omitted)
    """
    adapters = adapters or load_adapters(settings.adapter_factory)
    db = db or Database(settings.database_url)

    team_store = TeamStore(db)
    event_store = EventStore(db)
    task_store = TaskStore(db)
    orchestrator = ProvisioningOrchestrator(settings, adapters, team_store, task_store)
    engine = ReconciliationEngine(settings, event_store, adapters.workshop, task_store)
    runner = IntentRunner(task_store, team_store, orchestrator, engine)
    chat_runner = (
        ChatBatchRunner(settings, adapters.chat, team_store) if adapters.chat is not None else None
    )

    return Services(
        settings=settings,
        db=db,
        adapters=adapters,
        team_store=team_store,
        event_store=event_store,
        task_store=task_store,
        orchestrator=orchestrator,
        engine=engine,
        runner=runner,
        chat_runner=chat_runner,
    )
