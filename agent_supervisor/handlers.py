"""Request handlers exposing the orchestrator to callers.

Each channel takes a camelCase payload, validated with pydantic before the
handler body runs. invoke() wraps every outcome in a
{"success": ..., "data"/"error": ...} envelope. Orchestrator events are
forwarded as "event:agent.orchestrator.<type>".
"""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agent_supervisor.errors import InvalidRequestError
from agent_supervisor.models import AgentSession, SessionEvent, SpawnRequest
from agent_supervisor.orchestrator import AgentOrchestrator
from agent_supervisor.prompts import (
    RESUME_PROMPT,
    build_execution_prompt,
    build_planning_prompt,
    build_replan_prompt,
)

logger = structlog.get_logger(__name__)

EVENT_PREFIX = "event:agent.orchestrator."


class TaskRepository(Protocol):
    """Task store the handlers report status changes to."""

    async def update_task_status(self, task_id: str, status: str) -> Any: ...


# ----------------------------------------------------------------------
# Input models
# ----------------------------------------------------------------------


class _Input(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StartPlanningInput(_Input):
    task_id: str = Field(..., alias="taskId", min_length=1)
    project_path: str = Field(..., alias="projectPath", min_length=1)
    task_description: str = Field(..., alias="taskDescription", min_length=1)
    sub_project_path: str | None = Field(None, alias="subProjectPath")


class StartExecutionInput(StartPlanningInput):
    plan_ref: str | None = Field(None, alias="planRef")


class ReplanInput(StartPlanningInput):
    feedback: str = Field(..., min_length=1)
    previous_plan_path: str | None = Field(None, alias="previousPlanPath")


class KillSessionInput(_Input):
    session_id: str = Field(..., alias="sessionId", min_length=1)


class RestartInput(_Input):
    task_id: str = Field(..., alias="taskId", min_length=1)
    project_path: str = Field(..., alias="projectPath", min_length=1)
    sub_project_path: str | None = Field(None, alias="subProjectPath")


class TaskIdInput(_Input):
    task_id: str = Field(..., alias="taskId", min_length=1)


class EmptyInput(_Input):
    pass


def _spawned(session: AgentSession) -> dict[str, str]:
    return {"sessionId": session.id, "status": "spawned"}


def validate_input(model: type[BaseModel], payload: Any) -> BaseModel:
    """Validate a payload, raising InvalidRequestError naming the bad fields."""
    try:
        return model.model_validate(payload if payload is not None else {})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'input'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidRequestError(f"Invalid input: {problems}") from e


class AgentIpcHandlers:
    """Handlers for the agent.* channels.

    Usage:
        handlers = AgentIpcHandlers(orchestrator, task_repository)
        result = await handlers.invoke(
            "agent.startPlanning",
            {"taskId": "t1", "projectPath": "/repo", "taskDescription": "Add login"},
        )
    """

    def __init__(
        self, orchestrator: AgentOrchestrator, task_repository: TaskRepository
    ):
        self.orchestrator = orchestrator
        self.task_repository = task_repository
        self._channels: dict[
            str, tuple[type[BaseModel], Callable[[Any], Awaitable[Any]]]
        ] = {
            "agent.startPlanning": (StartPlanningInput, self.start_planning),
            "agent.startExecution": (StartExecutionInput, self.start_execution),
            "agent.replanWithFeedback": (ReplanInput, self.replan_with_feedback),
            "agent.killSession": (KillSessionInput, self.kill_session),
            "agent.restartFromCheckpoint": (RestartInput, self.restart_from_checkpoint),
            "agent.getOrchestratorSession": (TaskIdInput, self.get_orchestrator_session),
            "agent.listOrchestratorSessions": (EmptyInput, self.list_orchestrator_sessions),
        }

    @property
    def channels(self) -> list[str]:
        return list(self._channels)

    async def invoke(self, channel: str, payload: Any = None) -> dict[str, Any]:
        """Validate the payload and run the channel's handler.

        Never raises: failures come back as {"success": False, "error": ...}.
        """
        entry = self._channels.get(channel)
        if entry is None:
            return {"success": False, "error": f"No handler for channel: {channel}"}

        model, handler = entry
        try:
            request = validate_input(model, payload)
            data = await handler(request)
        except Exception as e:
            logger.warning("Handler failed", channel=channel, error=str(e))
            return {"success": False, "error": str(e)}
        return {"success": True, "data": data}

    async def start_planning(self, request: StartPlanningInput) -> dict[str, str]:
        await self.task_repository.update_task_status(request.task_id, "planning")
        session = await self.orchestrator.spawn(
            SpawnRequest(
                task_id=request.task_id,
                project_path=request.project_path,
                prompt=build_planning_prompt(request.task_description),
                phase="planning",
                sub_project_path=request.sub_project_path,
            )
        )
        return _spawned(session)

    async def start_execution(self, request: StartExecutionInput) -> dict[str, str]:
        await self.task_repository.update_task_status(request.task_id, "running")
        session = await self.orchestrator.spawn(
            SpawnRequest(
                task_id=request.task_id,
                project_path=request.project_path,
                prompt=build_execution_prompt(request.task_description, request.plan_ref),
                phase="executing",
                sub_project_path=request.sub_project_path,
            )
        )
        return _spawned(session)

    async def replan_with_feedback(self, request: ReplanInput) -> dict[str, str]:
        await self.task_repository.update_task_status(request.task_id, "planning")
        session = await self.orchestrator.spawn(
            SpawnRequest(
                task_id=request.task_id,
                project_path=request.project_path,
                prompt=build_replan_prompt(
                    request.task_description,
                    request.feedback,
                    request.previous_plan_path,
                ),
                phase="planning",
                sub_project_path=request.sub_project_path,
            )
        )
        return _spawned(session)

    async def kill_session(self, request: KillSessionInput) -> dict[str, bool]:
        self.orchestrator.kill(request.session_id)
        return {"success": True}

    async def restart_from_checkpoint(self, request: RestartInput) -> dict[str, str]:
        """Replace the task's current session with a fresh executing one.

        An execution session's directive is reused; anything else restarts
        with the generic resume directive.
        """
        existing = self.orchestrator.get_session_by_task_id(request.task_id)
        prompt = RESUME_PROMPT
        if existing is not None:
            self.orchestrator.kill(existing.id)
            if existing.phase == "executing" and existing.command:
                prompt = existing.command

        await self.task_repository.update_task_status(request.task_id, "running")
        session = await self.orchestrator.spawn(
            SpawnRequest(
                task_id=request.task_id,
                project_path=request.project_path,
                prompt=prompt,
                phase="executing",
                sub_project_path=request.sub_project_path,
            )
        )
        logger.info(
            "Restarted from checkpoint",
            task_id=request.task_id,
            replaced_session=existing.id if existing else None,
            session_id=session.id,
        )
        return _spawned(session)

    async def get_orchestrator_session(self, request: TaskIdInput) -> dict[str, Any] | None:
        session = self.orchestrator.get_session_by_task_id(request.task_id)
        return session.to_dict() if session is not None else None

    async def list_orchestrator_sessions(self, request: EmptyInput) -> list[dict[str, Any]]:
        return [session.to_dict() for session in self.orchestrator.list_active_sessions()]

    def forward_events(self, emit: Callable[[str, dict[str, Any]], None]) -> None:
        """Forward orchestrator events to emit(channel, payload)."""

        def _forward(event: SessionEvent) -> None:
            emit(f"{EVENT_PREFIX}{event.type}", event.to_dict())

        self.orchestrator.on_session_event(_forward)
