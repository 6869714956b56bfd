"""Two-tier QA runner.

Quiet mode runs a scoped background check (console errors, screenshots of
affected pages, verification suite). Full mode is an exhaustive walkthrough
(every page, interactions, accessibility, annotated screenshots). Both modes
spawn a headless QA agent through the AgentOrchestrator, wait for it to
exit, and parse its log into a QaReport. Parsing is fail-closed: if no
report can be parsed, the run records a failing fallback report.
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
from agent_supervisor.models import SpawnRequest, utc_now_iso
from agent_supervisor.notifications import Notification, NotificationManager
from agent_supervisor.orchestrator import AgentOrchestrator
from agent_supervisor.qa_models import (
    QaContext,
    QaMode,
    QaReport,
    QaSession,
    QaSessionEvent,
    QaSessionEventType,
)
from agent_supervisor.qa_report_parser import create_fallback_report, parse_qa_report

logger = structlog.get_logger(__name__)

QaSessionEventHandler = Callable[[QaSessionEvent], None]

TOTAL_STEPS = 3

QUIET_DIRECTIVE = (
    "Run quiet QA for this task. Check console errors, take screenshots of "
    "affected pages, run the verification suite, and report findings."
)
FULL_DIRECTIVE = (
    "Run full QA for this task. Walk through every page, test interactions, "
    "check accessibility, monitor DevTools console, take annotated "
    "screenshots, and report findings."
)

REPORT_FORMAT = """\
Output your report as a JSON block with this structure:
```json
{
  "result": "pass" | "fail" | "warnings",
  "checksRun": <number>,
  "checksPassed": <number>,
  "issues": [{ "severity": "critical"|"major"|"minor"|"cosmetic", "category": "<string>", "description": "<string>", "location": "<string>" }],
  "verificationSuite": { "lint": "pass"|"fail", "typecheck": "pass"|"fail", "test": "pass"|"fail", "build": "pass"|"fail", "docs": "pass"|"fail" },
  "screenshots": [{ "label": "<string>", "path": "<string>", "timestamp": "<iso>", "annotated": <boolean> }]
}
```"""


class QaRunner:
    """Runs QA sessions for tasks on top of an AgentOrchestrator.

    At most one active QA session exists per task: starting QA for a task
    that already has one returns the running session.
    """

    def __init__(
        self,
        orchestrator: AgentOrchestrator,
        qa_base_dir: str | Path | None = None,
        notification_manager: NotificationManager | None = None,
        config: SupervisorConfig | None = None,
    ):
        """Initialize the runner.

        Args:
            orchestrator: Spawns and tracks the QA agents
            qa_base_dir: QA output goes to <qa_base_dir>/qa/<task_id>.
                Defaults to config.qa_base_dir.
            notification_manager: Told about failing QA runs
            config: Supervisor configuration. If None, uses from_env().
        """
        self.orchestrator = orchestrator
        self.config = config or SupervisorConfig.from_env()
        self.qa_base_dir = Path(qa_base_dir or self.config.qa_base_dir)
        self.notification_manager = notification_manager

        self._sessions: dict[str, QaSession] = {}
        self._reports: dict[str, QaReport] = {}
        self._handlers: list[QaSessionEventHandler] = []
        self._disposed = False

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def start_quiet(self, task_id: str, context: QaContext) -> QaSession:
        """Run quiet QA for a task and return the finished session.

        Returns the running session instead if the task already has one.
        """
        existing = self._find_active_session(task_id)
        if existing is not None:
            return existing
        return await self._run_qa_session(task_id, "quiet", context)

    async def start_full(self, task_id: str, context: QaContext) -> QaSession:
        """Run full QA for a task and return the finished session.

        Returns the running session instead if the task already has one.
        """
        existing = self._find_active_session(task_id)
        if existing is not None:
            return existing
        return await self._run_qa_session(task_id, "full", context)

    def get_session(self, session_id: str) -> QaSession | None:
        return self._sessions.get(session_id)

    def get_session_by_task_id(self, task_id: str) -> QaSession | None:
        """Most recent QA session for a task."""
        for session in reversed(list(self._sessions.values())):
            if session.task_id == task_id:
                return session
        return None

    def get_report_for_task(self, task_id: str) -> QaReport | None:
        """Latest completed report for a task."""
        return self._reports.get(task_id)

    def cancel(self, session_id: str) -> None:
        """Kill the session's agent and mark the session as errored.

        Unknown ids are ignored. A cancelled run keeps its error status when
        the agent exits.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return

        if session.agent_session_id:
            self.orchestrator.kill(session.agent_session_id)

        session.status = "error"
        session.completed_at = utc_now_iso()
        logger.info("QA session cancelled", qa_session_id=session_id, task_id=session.task_id)

    def on_session_event(self, handler: QaSessionEventHandler) -> None:
        self._handlers.append(handler)

    def dispose(self) -> None:
        """Kill agents of active sessions and clear all state.

        Runs still in flight finish without storing reports or emitting.
        """
        self._disposed = True
        for session in self._sessions.values():
            if session.is_active and session.agent_session_id:
                self.orchestrator.kill(session.agent_session_id)

        self._sessions.clear()
        self._reports.clear()
        self._handlers.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_active_session(self, task_id: str) -> QaSession | None:
        for session in self._sessions.values():
            if session.task_id == task_id and session.is_active:
                return session
        return None

    def _emit(
        self,
        event_type: QaSessionEventType,
        session: QaSession,
        step: str | None = None,
        current: int | None = None,
    ) -> None:
        event = QaSessionEvent(
            type=event_type,
            session=session,
            timestamp=utc_now_iso(),
            step=step,
            total=TOTAL_STEPS if step is not None else None,
            current=current,
        )
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error("QA event handler failed", event_type=event_type, error=str(e))

    def _qa_dir(self, task_id: str) -> Path:
        qa_dir = self.qa_base_dir / "qa" / task_id
        qa_dir.mkdir(parents=True, exist_ok=True)
        return qa_dir

    def build_prompt(self, mode: QaMode, context: QaContext) -> str:
        """Build the QA agent directive for a mode and change context."""
        parts = [
            QUIET_DIRECTIVE if mode == "quiet" else FULL_DIRECTIVE,
            "",
            f"Task description: {context.task_description}",
        ]

        if context.changed_files:
            parts += ["", "Changed files:"]
            parts += [f"  - {path}" for path in context.changed_files]

        if context.plan_content:
            limit = self.config.qa_plan_excerpt_chars
            plan = context.plan_content
            if len(plan) > limit:
                plan = plan[:limit] + "\n... (plan truncated)"
            parts += ["", "Implementation plan:", plan]

        parts += [
            "",
            f"Run the verification suite: {self.config.qa_verification_command}",
            "",
            REPORT_FORMAT,
        ]
        return "\n".join(parts)

    async def _wait_for_agent(self, agent_session_id: str) -> None:
        """Poll until the agent session is finished or no longer tracked."""
        await asyncio.sleep(self.config.qa_poll_initial_delay_seconds)
        while True:
            agent_session = self.orchestrator.get_session(agent_session_id)
            if agent_session is None or agent_session.is_terminal:
                return
            await asyncio.sleep(self.config.qa_poll_interval_seconds)

    @staticmethod
    def _read_log(log_file: str) -> str:
        try:
            return Path(log_file).read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ""

    def _notify_failure(self, session: QaSession, report: QaReport) -> None:
        if self.notification_manager is None:
            return
        notification = Notification(
            id=f"qa-fail-{session.task_id}-{int(time.time() * 1000)}",
            source="qa",
            type="ci_status",
            title=f"QA Failed: Task {session.task_id}",
            body=f"{len(report.issues)} issue(s) found",
            metadata={
                "ciStatus": "failure",
                "taskId": session.task_id,
                "qaSessionId": session.id,
                "report": report,
            },
        )
        try:
            self.notification_manager.on_notification(notification)
        except Exception as e:
            logger.error("QA failure notification failed", task_id=session.task_id, error=str(e))

    async def _run_qa_session(
        self, task_id: str, mode: QaMode, context: QaContext
    ) -> QaSession:
        """Run one QA session end to end. Never raises.

        The session is registered before the first suspension point, so a
        concurrent start for the same task finds it.
        """
        started = time.monotonic()
        session = QaSession(
            id=f"qa-{task_id}-{uuid.uuid4().hex[:12]}",
            task_id=task_id,
            mode=mode,
            status="building",
            started_at=utc_now_iso(),
        )
        self._sessions[session.id] = session

        tracer = trace.get_tracer("agent_supervisor.qa")
        with tracer.start_as_current_span("agent_supervisor.qa.run") as span:
            span.set_attribute("task.id", task_id)
            span.set_attribute("qa.mode", mode)
            span.set_attribute("qa.session_id", session.id)

            try:
                qa_dir = self._qa_dir(task_id)
                self._emit("started", session)

                self._emit("progress", session, step="Building project", current=1)

                session.status = "testing"
                self._emit("progress", session, step="Running QA agent", current=2)

                agent_session = await self.orchestrator.spawn(
                    SpawnRequest(
                        task_id=f"qa-{task_id}",
                        project_path=context.project_path,
                        prompt=self.build_prompt(mode, context),
                        phase="qa",
                        env={"QA_MODE": mode, "QA_OUTPUT_DIR": str(qa_dir)},
                    )
                )
                session.agent_session_id = agent_session.id
                if session.status == "error" or self._disposed:
                    # Cancelled or disposed while the agent was being spawned
                    self.orchestrator.kill(agent_session.id)
                    span.set_attribute("qa.cancelled", True)
                    return session

                logger.info(
                    "QA agent spawned",
                    qa_session_id=session.id,
                    task_id=task_id,
                    mode=mode,
                    agent_session_id=agent_session.id,
                )

                await self._wait_for_agent(agent_session.id)

                if session.status == "error" or self._disposed:
                    span.set_attribute("qa.cancelled", True)
                    return session

                elapsed_ms = int((time.monotonic() - started) * 1000)
                output = self._read_log(agent_session.log_file)
                report = parse_qa_report(output, elapsed_ms)
                if report is None:
                    logger.warning("Could not parse QA agent output", qa_session_id=session.id)
                    report = create_fallback_report(
                        elapsed_ms, "Could not parse QA agent output"
                    )

                session.status = "completed"
                session.completed_at = utc_now_iso()
                session.report = report
                session.screenshots = [shot.path for shot in report.screenshots]
                self._reports[task_id] = report

                span.set_attribute("qa.result", report.result)
                self._record_run(mode, report.result, elapsed_ms)
                logger.info(
                    "QA session completed",
                    qa_session_id=session.id,
                    task_id=task_id,
                    result=report.result,
                    issues=len(report.issues),
                )

                self._emit("completed", session)
                if report.result == "fail":
                    self._notify_failure(session, report)
                return session

            except Exception as e:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                session.status = "error"
                session.completed_at = utc_now_iso()
                session.report = create_fallback_report(elapsed_ms, str(e))

                span.set_attribute("qa.error", str(e))
                self._record_run(mode, "error", elapsed_ms)
                logger.error("QA session failed", qa_session_id=session.id, task_id=task_id, error=str(e))

                self._emit("error", session)
                return session

    def _record_run(self, mode: QaMode, result: str, elapsed_ms: int) -> None:
        try:
            telemetry.qa_runs_counter.add(1, {"mode": mode, "result": result})
            telemetry.qa_duration.record(elapsed_ms / 1000, {"mode": mode})
        except (AttributeError, NameError):
            # Counters not initialized - telemetry disabled
            pass
