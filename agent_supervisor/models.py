"""Data models for agent sessions.

Defines dataclasses for spawned agent sessions, spawn requests and the
lifecycle events the orchestrator emits. Sessions serialize to camelCase
dicts via to_dict() for the IPC boundary.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

AgentSessionStatus = Literal["active", "completed", "error", "killed"]
AgentPhase = Literal["planning", "executing", "qa"]
SessionEventType = Literal[
    "progress", "heartbeat", "planReady", "stopped", "error", "watchdogAlert"
]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "error", "killed"})


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SpawnRequest:
    """Parameters for launching one agent subprocess.

    The prompt is the literal directive sent to the agent; callers build it
    from the templates in agent_supervisor.prompts.
    """

    task_id: str
    project_path: str
    prompt: str
    phase: AgentPhase
    sub_project_path: str | None = None
    env: dict[str, str] | None = None


@dataclass
class AgentSession:
    """One supervised agent subprocess.

    Status moves one way only: active -> completed | error | killed.

    Attributes:
        id: Unique session identifier, never changes after creation
        task_id: Task the agent works on
        pid: OS process id of the agent
        status: Lifecycle status
        phase: Why the agent was launched (planning, executing, qa)
        spawned_at: ISO timestamp of launch
        last_heartbeat: ISO timestamp of the last sign of life
        progress_file: JSONL file the agent's hooks append to
        log_file: File receiving the agent's stdout/stderr
        hooks_config_path: Settings file the hooks were installed into
        original_settings_content: Settings snapshot restored on exit
        exit_code: Process exit code once known
        project_path: Project the agent was launched for
        command: Directive sent to the agent
    """

    id: str
    task_id: str
    pid: int | None
    status: AgentSessionStatus
    phase: AgentPhase
    spawned_at: str
    last_heartbeat: str
    progress_file: str
    log_file: str
    hooks_config_path: str | None
    original_settings_content: str | None
    exit_code: int | None
    project_path: str
    command: str

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase shape used outside the process."""
        return {
            "id": self.id,
            "taskId": self.task_id,
            "pid": self.pid,
            "status": self.status,
            "phase": self.phase,
            "spawnedAt": self.spawned_at,
            "lastHeartbeat": self.last_heartbeat,
            "progressFile": self.progress_file,
            "logFile": self.log_file,
            "hooksConfigPath": self.hooks_config_path,
            "originalSettingsContent": self.original_settings_content,
            "exitCode": self.exit_code,
            "projectPath": self.project_path,
            "command": self.command,
        }


@dataclass
class SessionEvent:
    """A lifecycle event emitted by the orchestrator.

    Every event carries the task id and a timestamp; data holds the
    event-specific payload (progress entry, exit code, error message...).
    """

    type: SessionEventType
    task_id: str
    session_id: str
    timestamp: str = field(default_factory=utc_now_iso)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "taskId": self.task_id,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "data": self.data,
        }
