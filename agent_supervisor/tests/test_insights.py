"""Tests for dashboard metrics."""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock

from agent_supervisor.insights import (
    get_agent_runs_by_day,
    get_orchestrator_metrics,
    get_qa_pass_rate,
)
from agent_supervisor.models import AgentSession
from agent_supervisor.qa_models import QaReport

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


def session(status: str, spawned_at: str) -> AgentSession:
    return AgentSession(
        id=f"agent-{status}-{spawned_at}",
        task_id="task-1",
        pid=1,
        status=status,  # type: ignore[arg-type]
        phase="executing",
        spawned_at=spawned_at,
        last_heartbeat=spawned_at,
        progress_file="p.jsonl",
        log_file="a.log",
        hooks_config_path=None,
        original_settings_content=None,
        exit_code=None,
        project_path="/project",
        command="/implement-feature x",
    )


def orchestrator_with(*sessions: AgentSession) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.list_active_sessions.return_value = list(sessions)
    return orchestrator


class TestOrchestratorMetrics:
    def test_empty(self) -> None:
        metrics = get_orchestrator_metrics(orchestrator_with(), now=NOW)

        assert metrics.to_dict() == {"sessionsToday": 0, "successRate": 0, "avgDuration": 0}

    def test_counts_and_rates(self) -> None:
        orchestrator = orchestrator_with(
            session("completed", "2026-03-10T11:00:00+00:00"),
            session("completed", "2026-03-10T10:00:00+00:00"),
            session("error", "2026-03-09T10:00:00+00:00"),
            session("active", "2026-03-10T11:59:00+00:00"),
            session("killed", "2026-03-10T09:00:00+00:00"),
        )

        metrics = get_orchestrator_metrics(orchestrator, now=NOW)

        assert metrics.sessions_today == 4
        # 2 completed out of 3 finished (killed excluded)
        assert metrics.success_rate == 67
        # one hour and two hours old
        assert metrics.avg_duration_ms == 5_400_000

    def test_half_rounds_up(self) -> None:
        orchestrator = orchestrator_with(
            session("completed", "2026-03-10T11:00:00+00:00"),
            *[session("error", f"2026-03-10T0{i}:00:00+00:00") for i in range(7)],
        )

        # 1 of 8 is 12.5%
        assert get_orchestrator_metrics(orchestrator, now=NOW).success_rate == 13


class TestQaPassRate:
    def test_only_tasks_with_reports_count(self) -> None:
        reports = {
            "a": QaReport(result="pass", checks_run=1, checks_passed=1),
            "b": QaReport(result="fail", checks_run=1, checks_passed=0),
            "c": QaReport(result="warnings", checks_run=1, checks_passed=1),
        }
        runner = MagicMock()
        runner.get_report_for_task.side_effect = reports.get

        assert get_qa_pass_rate(runner, ["a", "b", "c", "d"]) == 33

    def test_no_reports(self) -> None:
        runner = MagicMock()
        runner.get_report_for_task.return_value = None

        assert get_qa_pass_rate(runner, ["a"]) == 0


class TestAgentRunsByDay:
    def test_last_seven_days_oldest_first(self) -> None:
        orchestrator = orchestrator_with(
            session("completed", "2026-03-10T01:00:00+00:00"),
            session("error", "2026-03-10T02:00:00+00:00"),
            session("completed", "2026-03-04T23:00:00+00:00"),
            session("completed", "2026-03-03T23:00:00+00:00"),
        )

        series = get_agent_runs_by_day(orchestrator, today=date(2026, 3, 10))

        assert len(series) == 7
        assert series[0] == {"date": "2026-03-04", "agentRuns": 1}
        assert series[-1] == {"date": "2026-03-10", "agentRuns": 2}
        assert sum(day["agentRuns"] for day in series) == 3
