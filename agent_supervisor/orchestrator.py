"""Agent session orchestrator.

Spawns one Claude Code subprocess per task phase and supervises it:

- an exit watcher moves the session to completed/error when the process ends
- a monitor polls the task's progress file, turning hook entries into
  progress/heartbeat events and raising a watchdogAlert when the agent has
  been silent for too long (advisory only, nothing is killed)

Session status is one-way: active -> completed | error | killed. kill() is a
"request sent" operation; the exit watcher never overwrites a killed session.
"""

import asyncio
import time
import uuid
from collections.abc import Callable
from pathlib import Path

import structlog
from opentelemetry import trace

from agent_supervisor import telemetry
from agent_supervisor.config import SupervisorConfig
from agent_supervisor.errors import SpawnError
from agent_supervisor.hooks import (
    generate_hooks_config,
    install_hooks,
    progress_file_for,
    remove_hooks,
    restore_settings,
)
from agent_supervisor.launcher import AgentProcess, ClaudeCodeLauncher, ProcessLauncher
from agent_supervisor.models import (
    AgentSession,
    AgentSessionStatus,
    SessionEvent,
    SessionEventType,
    SpawnRequest,
    utc_now_iso,
)
from agent_supervisor.progress import ProgressReader

logger = structlog.get_logger(__name__)

SessionEventHandler = Callable[[SessionEvent], None]


class AgentOrchestrator:
    """Owns the lifecycle of agent subprocesses.

    Usage:
        orchestrator = AgentOrchestrator(config=SupervisorConfig.from_env())
        orchestrator.on_session_event(print)
        session = await orchestrator.spawn(
            SpawnRequest(
                task_id="task-1",
                project_path="/path/to/project",
                prompt="/plan-feature Add dark mode",
                phase="planning",
            )
        )
        ...
        orchestrator.dispose()
    """

    def __init__(
        self,
        launcher: ProcessLauncher | None = None,
        config: SupervisorConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the orchestrator.

        Args:
            launcher: Starts agent processes. Defaults to ClaudeCodeLauncher.
            config: Supervisor configuration. If None, uses from_env().
            clock: Monotonic clock used for the watchdog and retention
        """
        self.config = config or SupervisorConfig.from_env()
        self._launcher = launcher or ClaudeCodeLauncher(self.config)
        self._clock = clock

        self._sessions: dict[str, AgentSession] = {}
        self._processes: dict[str, AgentProcess] = {}
        self._readers: dict[str, ProgressReader] = {}
        self._watchers: dict[str, asyncio.Task] = {}
        self._monitors: dict[str, asyncio.Task] = {}
        self._finished_at: dict[str, float] = {}
        # Per settings file: snapshot from before the first session, live owners
        self._pristine_settings: dict[str, str | None] = {}
        self._hook_owners: dict[str, set[str]] = {}
        self._hook_configs: dict[str, dict] = {}
        self._handlers: list[SessionEventHandler] = []

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    async def spawn(self, request: SpawnRequest) -> AgentSession:
        """Launch an agent for a task phase.

        Args:
            request: What to launch and where

        Returns:
            The new session, already registered as active

        Raises:
            SpawnError: If hooks could not be installed or the process could
                not be started. Task status rollback is the caller's job.
        """
        self._prune_finished()

        session_id = f"agent-{uuid.uuid4().hex[:12]}"
        cwd = request.sub_project_path or request.project_path

        data_dir = self.config.data_dir.resolve()
        log_file = data_dir / "logs" / f"{session_id}.log"
        progress_dir = data_dir / "progress"
        progress_file = progress_file_for(request.task_id, progress_dir)

        tracer = trace.get_tracer("agent_supervisor.orchestrator")
        with tracer.start_as_current_span("agent_supervisor.orchestrator.spawn") as span:
            span.set_attribute("task.id", request.task_id)
            span.set_attribute("agent.phase", request.phase)
            span.set_attribute("agent.session_id", session_id)

            hooks_config = generate_hooks_config(request.task_id, progress_dir)
            try:
                log_file.parent.mkdir(parents=True, exist_ok=True)
                progress_dir.mkdir(parents=True, exist_ok=True)
                # A new session starts from an empty progress file
                progress_file.write_text("", encoding="utf-8")
                settings_path, snapshot = install_hooks(cwd, hooks_config)
            except (OSError, ValueError) as e:
                # ValueError covers settings files that are not UTF-8
                span.set_attribute("spawn.error", str(e))
                raise SpawnError(f"Failed to prepare agent session: {e}") from e

            # Sessions sharing a project share the snapshot taken by the first one
            settings_key = str(settings_path)
            original_settings = self._pristine_settings.setdefault(settings_key, snapshot)
            self._hook_owners.setdefault(settings_key, set()).add(session_id)
            self._hook_configs[session_id] = hooks_config

            env = {
                "AGENT_TASK_ID": request.task_id,
                "AGENT_SESSION_ID": session_id,
                **(request.env or {}),
            }

            try:
                process = await self._launcher.launch(
                    request.prompt, cwd, env, log_file
                )
            except Exception as e:
                self._release_hooks(settings_key, session_id)
                span.set_attribute("spawn.error", str(e))
                logger.error(
                    "Agent spawn failed",
                    task_id=request.task_id,
                    phase=request.phase,
                    error=str(e),
                )
                if isinstance(e, SpawnError):
                    raise
                raise SpawnError(f"Failed to launch agent: {e}") from e

            span.set_attribute("agent.pid", process.pid or 0)

        now = utc_now_iso()
        session = AgentSession(
            id=session_id,
            task_id=request.task_id,
            pid=process.pid,
            status="active",
            phase=request.phase,
            spawned_at=now,
            last_heartbeat=now,
            progress_file=str(progress_file),
            log_file=str(log_file),
            hooks_config_path=str(settings_path),
            original_settings_content=original_settings,
            exit_code=None,
            project_path=request.project_path,
            command=request.prompt,
        )

        self._sessions[session_id] = session
        self._processes[session_id] = process
        self._readers[session_id] = ProgressReader(progress_file)
        self._watchers[session_id] = asyncio.create_task(
            self._watch_exit(session_id, process)
        )
        self._monitors[session_id] = asyncio.create_task(self._monitor(session_id))

        try:
            telemetry.sessions_spawned_counter.add(1, {"phase": request.phase})
        except (AttributeError, NameError):
            # Counters not initialized - telemetry disabled
            pass

        logger.info(
            "Agent spawned",
            session_id=session_id,
            task_id=request.task_id,
            phase=request.phase,
            pid=process.pid,
        )
        return session

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def kill(self, session_id: str) -> None:
        """Send a termination request and mark the session killed.

        Unknown or already finished sessions are ignored.
        """
        session = self._sessions.get(session_id)
        if session is None or session.is_terminal:
            return

        process = self._processes.pop(session_id, None)
        if process is not None:
            try:
                process.terminate()
            except OSError as e:
                logger.warning(
                    "Terminate request failed", session_id=session_id, error=str(e)
                )

        self._finish(session, "killed")
        self._emit("stopped", session, {"reason": "killed"})
        logger.info("Agent killed", session_id=session_id, task_id=session.task_id)

    async def _watch_exit(self, session_id: str, process: AgentProcess) -> None:
        try:
            exit_code = await process.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            session = self._sessions.get(session_id)
            if session is not None and not session.is_terminal:
                logger.error("Lost track of agent process", session_id=session_id, error=str(e))
                self._finish(session, "error")
                self._emit("error", session, {"message": str(e)})
            return

        session = self._sessions.get(session_id)
        if session is None or session.is_terminal:
            return

        self._processes.pop(session_id, None)
        # Entries written just before exit
        self._drain_progress(session)

        session.exit_code = exit_code
        payload = {"exitCode": exit_code, "logFile": session.log_file}

        if exit_code == 0:
            self._finish(session, "completed")
            if session.phase == "planning":
                self._emit("planReady", session, payload)
            self._emit("stopped", session, payload)
            logger.info("Agent completed", session_id=session_id, task_id=session.task_id)
        else:
            self._finish(session, "error")
            self._emit(
                "error",
                session,
                {**payload, "message": f"Agent exited with code {exit_code}"},
            )
            logger.warning(
                "Agent exited with error",
                session_id=session_id,
                task_id=session.task_id,
                exit_code=exit_code,
            )

    def _finish(self, session: AgentSession, status: AgentSessionStatus) -> None:
        """Move a session to a terminal status and release its resources."""
        session.status = status
        self._finished_at[session.id] = self._clock()

        monitor = self._monitors.pop(session.id, None)
        if monitor is not None and monitor is not _current_task():
            monitor.cancel()
        self._readers.pop(session.id, None)

        if session.hooks_config_path:
            try:
                self._release_hooks(session.hooks_config_path, session.id)
            except (OSError, ValueError) as e:
                logger.warning(
                    "Failed to restore settings",
                    session_id=session.id,
                    path=session.hooks_config_path,
                    error=str(e),
                )

        try:
            telemetry.sessions_finished_counter.add(
                1, {"phase": session.phase, "status": status}
            )
        except (AttributeError, NameError):
            pass

    def _release_hooks(self, settings_key: str, session_id: str) -> None:
        """Undo one session's hook installation.

        While other sessions still run in the same project only this session's
        hook groups are removed; the last one out restores the snapshot.
        """
        hooks_config = self._hook_configs.pop(session_id, None)
        owners = self._hook_owners.get(settings_key, set())
        owners.discard(session_id)

        if owners:
            if hooks_config is not None:
                remove_hooks(settings_key, hooks_config)
            return

        self._hook_owners.pop(settings_key, None)
        restore_settings(settings_key, self._pristine_settings.pop(settings_key, None))

    # ------------------------------------------------------------------
    # Progress and watchdog
    # ------------------------------------------------------------------

    def _drain_progress(self, session: AgentSession) -> bool:
        """Emit events for new progress entries. Returns True if any arrived."""
        reader = self._readers.get(session.id)
        if reader is None:
            return False

        entries = reader.read_new_entries()
        if not entries:
            return False

        for entry in entries:
            self._emit("progress", session, entry)
        session.last_heartbeat = utc_now_iso()
        self._emit("heartbeat", session, {"lastHeartbeat": session.last_heartbeat})
        return True

    async def _monitor(self, session_id: str) -> None:
        interval = self.config.monitor_interval_seconds
        timeout = self.config.watchdog_timeout_seconds
        last_activity = self._clock()
        alerted = False

        try:
            while True:
                await asyncio.sleep(interval)

                session = self._sessions.get(session_id)
                if session is None or session.is_terminal:
                    return

                if self._drain_progress(session):
                    last_activity = self._clock()
                    alerted = False
                    continue

                silent_for = self._clock() - last_activity
                if not alerted and silent_for >= timeout:
                    # Once per silent stretch; the next heartbeat re-arms it
                    alerted = True
                    logger.warning(
                        "Agent silent past watchdog timeout",
                        session_id=session_id,
                        task_id=session.task_id,
                        silent_seconds=round(silent_for, 1),
                    )
                    self._emit(
                        "watchdogAlert",
                        session,
                        {
                            "lastHeartbeat": session.last_heartbeat,
                            "silentSeconds": round(silent_for, 1),
                        },
                    )
                    try:
                        telemetry.watchdog_alerts_counter.add(1, {"phase": session.phase})
                    except (AttributeError, NameError):
                        pass
        except asyncio.CancelledError:
            raise
        except Exception as e:
            session = self._sessions.get(session_id)
            logger.error("Session monitor failed", session_id=session_id, error=str(e))
            if session is not None and not session.is_terminal:
                self._finish(session, "error")
                self._emit("error", session, {"message": f"Monitor failed: {e}"})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> AgentSession | None:
        return self._sessions.get(session_id)

    def get_session_by_task_id(self, task_id: str) -> AgentSession | None:
        """Most recently spawned session for a task."""
        for session in reversed(list(self._sessions.values())):
            if session.task_id == task_id:
                return session
        return None

    def list_active_sessions(self) -> list[AgentSession]:
        """Every tracked session, including recently finished ones.

        Callers filter by status themselves.
        """
        self._prune_finished()
        return list(self._sessions.values())

    def _prune_finished(self) -> None:
        cutoff = self._clock() - self.config.session_retention_seconds
        expired = [sid for sid, at in self._finished_at.items() if at <= cutoff]
        for session_id in expired:
            self._finished_at.pop(session_id, None)
            self._sessions.pop(session_id, None)
            self._watchers.pop(session_id, None)
        if expired:
            logger.debug("Pruned finished sessions", count=len(expired))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_session_event(self, handler: SessionEventHandler) -> None:
        """Register a listener for session lifecycle events."""
        self._handlers.append(handler)

    def _emit(self, event_type: SessionEventType, session: AgentSession, data: dict) -> None:
        event = SessionEvent(
            type=event_type,
            task_id=session.task_id,
            session_id=session.id,
            data=data,
        )
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Session event handler failed", event_type=event_type, error=str(e)
                )

    def dispose(self) -> None:
        """Kill every active session and clear all state."""
        for session in list(self._sessions.values()):
            if not session.is_terminal:
                self.kill(session.id)

        for task in [*self._watchers.values(), *self._monitors.values()]:
            task.cancel()

        self._sessions.clear()
        self._processes.clear()
        self._readers.clear()
        self._watchers.clear()
        self._monitors.clear()
        self._finished_at.clear()
        self._pristine_settings.clear()
        self._hook_owners.clear()
        self._hook_configs.clear()
        self._handlers.clear()


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
