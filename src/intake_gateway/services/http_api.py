"""
HTTP API for the intake gateway.

Routes:
- GET  /health                           liveness and capability availability
- POST /v1/route                         routing decision only
- POST /v1/messages                      full intake pipeline
- POST /v1/workflows                     run a workflow template
- GET  /v1/workflows/{task_id}           stored workflow result
- GET  /v1/sessions/{session_id}         session state summary
- POST /v1/sessions/{session_id}/merge   reconcile a peer's session state

Routing and pipeline calls always answer 200 with a decision; degraded
routing is visible in the decision's is_fallback and reasoning fields.
"""

import logging
from contextlib import asynccontextmanager
from typing import Dict, Any, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from intake_gateway import __version__
from intake_gateway.lib.errors import IntakeError
from intake_gateway.models.classification import RoutingDecision
from intake_gateway.models.message import Message
from intake_gateway.models.session_state import SessionState
from intake_gateway.models.workflow import ExecutionMode, WorkflowResult
from intake_gateway.services.intake_pipeline import IntakeResult
from intake_gateway.services.workflow_templates import build_task, template_names


logger = logging.getLogger(__name__)


class WorkflowRequest(BaseModel):
    task_type: str = Field(..., min_length=1, description="Workflow template name")
    context: Dict[str, Any] = Field(default_factory=dict)
    execution_mode: Optional[ExecutionMode] = None
    task_id: Optional[str] = None


def create_app(application) -> FastAPI:
    """Build the FastAPI app around an IntakeApplication.

    The application is initialized on startup if it has not been already,
    and shut down with the server.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not application.initialized:
            await application.initialize()
        yield
        await application.shutdown()

    app = FastAPI(title="Intake Gateway", version=__version__, lifespan=lifespan)

    @app.exception_handler(IntakeError)
    async def intake_error_handler(request, exc: IntakeError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=503, content=exc.to_dict())

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return application.health()

    @app.post("/v1/route", response_model=RoutingDecision)
    async def route(message: Message) -> RoutingDecision:
        return await application.engine.route(message, message_id=message.message_id)

    @app.post("/v1/messages", response_model=IntakeResult)
    async def process_message(message: Message) -> IntakeResult:
        return await application.pipeline.process(message)

    @app.post("/v1/workflows", response_model=WorkflowResult)
    async def run_workflow(request: WorkflowRequest) -> WorkflowResult:
        if application.orchestrator is None:
            raise HTTPException(status_code=503, detail="Workflow orchestration is disabled")
        task = build_task(request.task_type, request.context, request.execution_mode, request.task_id)
        return await application.orchestrator.execute_task(task)

    @app.get("/v1/workflows")
    async def list_workflows() -> Dict[str, Any]:
        running = application.orchestrator.running_tasks() if application.orchestrator else []
        return {"templates": template_names(), "running": running}

    @app.get("/v1/workflows/{task_id}", response_model=WorkflowResult)
    async def get_workflow(task_id: str) -> WorkflowResult:
        result = application.orchestrator.get_result(task_id) if application.orchestrator else None
        if result is None:
            raise HTTPException(status_code=404, detail=f"No result for task {task_id}")
        return result

    @app.get("/v1/sessions/{session_id}")
    async def get_session(session_id: str) -> Dict[str, Any]:
        state = await application.store.load(session_id)
        if state is None:
            raise HTTPException(status_code=404, detail=f"Unknown session {session_id}")
        return state.summary()

    @app.post("/v1/sessions/{session_id}/merge")
    async def merge_session(session_id: str, remote: SessionState) -> Dict[str, Any]:
        if remote.session_id != session_id:
            raise HTTPException(status_code=400, detail="Session identifier does not match the path")
        state, ordering = await application.store.merge_remote(session_id, remote)
        return {"ordering": ordering.value, "session": state.summary()}

    return app
