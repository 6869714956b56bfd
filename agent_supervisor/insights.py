"""Dashboard metrics derived from orchestrator and QA state."""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable

from agent_supervisor.orchestrator import AgentOrchestrator
from agent_supervisor.qa_runner import QaRunner


@dataclass
class OrchestratorMetrics:
    """Summary of agent sessions.

    Attributes:
        sessions_today: Sessions spawned on the current UTC date
        success_rate: Percent completed among completed + errored sessions
        avg_duration_ms: Mean age of completed sessions, spawn to now
    """

    sessions_today: int
    success_rate: int
    avg_duration_ms: int

    def to_dict(self) -> dict[str, int]:
        return {
            "sessionsToday": self.sessions_today,
            "successRate": self.success_rate,
            "avgDuration": self.avg_duration_ms,
        }


def _percent(part: int, total: int) -> int:
    """Whole-number percentage, halves rounded up, 0 when total is 0."""
    if total <= 0:
        return 0
    return math.floor(part * 100 / total + 0.5)


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_orchestrator_metrics(
    orchestrator: AgentOrchestrator, now: datetime | None = None
) -> OrchestratorMetrics:
    """Compute session metrics over everything the orchestrator tracks."""
    now = now or datetime.now(timezone.utc)
    sessions = orchestrator.list_active_sessions()

    today = now.date().isoformat()
    sessions_today = sum(1 for s in sessions if s.spawned_at.startswith(today))

    completed = [s for s in sessions if s.status == "completed"]
    errored = [s for s in sessions if s.status == "error"]
    success_rate = _percent(len(completed), len(completed) + len(errored))

    # Sessions do not record an end time; age is measured to now
    avg_duration_ms = 0
    if completed:
        total_ms = sum(
            (now - _parse_iso(s.spawned_at)).total_seconds() * 1000 for s in completed
        )
        avg_duration_ms = math.floor(total_ms / len(completed) + 0.5)

    return OrchestratorMetrics(
        sessions_today=sessions_today,
        success_rate=success_rate,
        avg_duration_ms=avg_duration_ms,
    )


def get_qa_pass_rate(qa_runner: QaRunner, task_ids: Iterable[str]) -> int:
    """Percent of tasks with a QA report whose latest report passed."""
    total = 0
    passed = 0
    for task_id in task_ids:
        report = qa_runner.get_report_for_task(task_id)
        if report is None:
            continue
        total += 1
        if report.result == "pass":
            passed += 1
    return _percent(passed, total)


def get_agent_runs_by_day(
    orchestrator: AgentOrchestrator, days: int = 7, today: date | None = None
) -> list[dict[str, object]]:
    """Sessions spawned per UTC day, oldest first, for the last `days` days."""
    today = today or datetime.now(timezone.utc).date()
    sessions = orchestrator.list_active_sessions()

    series = []
    for offset in range(days - 1, -1, -1):
        day = (today - timedelta(days=offset)).isoformat()
        runs = sum(1 for s in sessions if s.spawned_at.startswith(day))
        series.append({"date": day, "agentRuns": runs})
    return series
