"""
API Gateway — HTTP interface for TeamForge.

Provides REST API endpoints for:
- POST /intents — queue a lifecycle or sync intent, returns the Task id
- GET /tasks/{task_id} — poll a Task with its subtasks
- GET /tasks — list Tasks, filtered by entity, newest first
- GET / — service info

Requests only enqueue; work runs in queue workers.
"""

import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..config import Settings
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..jobs import IntentQueue, LocalIntentQueue
from ..services import build_services
from ..tasks.models import Task, TaskPage
from ..tasks.task_store import TaskStore
from ..temporal.client import TemporalClient, TemporalIntentQueue
from ..temporal.config import TemporalConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Request/Response Models
# =============================================================================

class EnqueueRequest(BaseModel):
    """Request to queue an intent."""
    intent: Dict[str, Any] = Field(..., description="Intent JSON tagged by 'action'")
    task_id: Optional[str] = Field(default=None, description="Existing pending Task to reuse")


class EnqueueResponse(BaseModel):
    """Id of the Task tracking the queued intent."""
    task_id: str


# =============================================================================
# API Gateway Class
# =============================================================================

class APIGateway:
    """
    API Gateway for TeamForge.

    Validates requests, hands intents to the queue and serves Task state.
    """

    def __init__(self, task_store: TaskStore, queue: IntentQueue):
        self.task_store = task_store
        self.queue = queue
        logger.info(f"APIGateway initialized with {type(queue).__name__}")

    # =========================================================================
    # Intent Operations
    # =========================================================================

    async def enqueue(self, request: EnqueueRequest) -> EnqueueResponse:
        """Queue an intent, creating its Task unless an existing one is given."""
        if request.task_id is not None:
            task = self.get_task(request.task_id)
            if task.is_terminal:
                raise InvalidStateError(f"Task {task.id} is already {task.status.value}")
        task_id = await self.queue.enqueue(request.intent, task_id=request.task_id)
        return EnqueueResponse(task_id=task_id)

    # =========================================================================
    # Task Operations
    # =========================================================================

    def get_task(self, task_id: str) -> Task:
        task = self.task_store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def list_tasks(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> TaskPage:
        return self.task_store.list_tasks(entity_type, entity_id, page=page, limit=limit)


def build_gateway(settings: Settings, temporal_config: Optional[TemporalConfig] = None) -> APIGateway:
    """
    Gateway wired to the Temporal queue, or run intents in-process when no
    Temporal config is given.
    """
    services = build_services(settings)
    if temporal_config is None:
        queue: IntentQueue = LocalIntentQueue(services.task_store, services.runner)
    else:
        queue = TemporalIntentQueue(TemporalClient(temporal_config), services.runner)
    return APIGateway(services.task_store, queue)


# =============================================================================
# FastAPI Application
# =============================================================================

def create_app(gateway: APIGateway) -> FastAPI:
    """Create FastAPI application."""

    app = FastAPI(
        title="TeamForge API",
        description="Team provisioning and membership reconciliation",
        version=__version__,
    )

    # Store gateway instance
    app.state.gateway = gateway

    # ==========================================================================
    # Error mapping
    # ==========================================================================

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidStateError)
    async def invalid_state(request: Request, exc: InvalidStateError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    # ==========================================================================
    # Routes
    # ==========================================================================

    @app.get("/")
    async def root():
        """API root."""
        return {
            "name": "TeamForge API",
            "version": __version__,
            "endpoints": {
                "intents": "/intents",
                "tasks": "/tasks",
            },
        }

    @app.post("/intents", response_model=EnqueueResponse, status_code=202)
    async def enqueue_intent(request: EnqueueRequest):
        """Queue an intent."""
        return await gateway.enqueue(request)

    @app.get("/tasks", response_model=TaskPage)
    async def list_tasks(
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
    ):
        """List tasks, newest first."""
        return gateway.list_tasks(entity_type, entity_id, page, limit)

    @app.get("/tasks/{task_id}", response_model=Task)
    async def get_task(task_id: str):
        """Get task by ID."""
        return gateway.get_task(task_id)

    return app


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
    )

    app = create_app(build_gateway(Settings.from_env(), TemporalConfig.from_env()))
    uvicorn.run(app, host=os.getenv("TEAMFORGE_API_HOST", "0.0.0.0"), port=int(os.getenv("TEAMFORGE_API_PORT", "8000")))
