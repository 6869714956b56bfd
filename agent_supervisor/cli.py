"""CLI for the agent supervisor.

Runs planning, execution and QA agents from a terminal, and parses QA
reports out of agent logs.
"""

import asyncio
import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from agent_supervisor.config import SupervisorConfig
from agent_supervisor.discord_notifier import (
    format_service_unhealthy,
    format_watchdog_alert,
)
from agent_supervisor.errors import SpawnError
from agent_supervisor.health_registry import HealthRegistry
from agent_supervisor.logging_setup import configure_logging
from agent_supervisor.models import AgentSession, SessionEvent, SpawnRequest
from agent_supervisor.notifications import (
    DesktopNotificationManager,
    DiscordNotificationManager,
    FanOutNotificationManager,
    NotificationManager,
)
from agent_supervisor.orchestrator import AgentOrchestrator
from agent_supervisor.prompts import build_execution_prompt, build_planning_prompt
from agent_supervisor.qa_models import QaContext, QaReport, QaSessionEvent
from agent_supervisor.qa_report_parser import create_fallback_report, parse_qa_report
from agent_supervisor.qa_runner import QaRunner
from agent_supervisor.telemetry import create_metrics, setup_telemetry

console = Console()

RESULT_COLORS = {"pass": "green", "warnings": "yellow", "fail": "red"}
SEVERITY_COLORS = {
    "critical": "bold red",
    "major": "red",
    "minor": "yellow",
    "cosmetic": "dim",
}


@click.group()
@click.version_option(package_name="agent-supervisor")
@click.option("--log-level", default="WARNING", help="Log level (default: WARNING)")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
def cli(log_level: str, json_logs: bool) -> None:
    """Agent Supervisor - spawn, supervise and evaluate coding agents."""
    configure_logging(log_level, json_output=json_logs)


@cli.command()
@click.argument("project_path", type=click.Path(exists=True, file_okay=False))
@click.argument("task_id")
@click.argument("description")
@click.option("--sub-project", default=None, help="Run the agent in this subdirectory")
def plan(project_path: str, task_id: str, description: str, sub_project: str | None) -> None:
    """Run a planning agent for a task and wait for it to finish."""
    request = SpawnRequest(
        task_id=task_id,
        project_path=project_path,
        prompt=build_planning_prompt(description),
        phase="planning",
        sub_project_path=sub_project,
    )
    session = asyncio.run(_run_agent(request))
    sys.exit(0 if session is not None and session.status == "completed" else 1)


@cli.command()
@click.argument("project_path", type=click.Path(exists=True, file_okay=False))
@click.argument("task_id")
@click.argument("description")
@click.option("--plan", "plan_ref", default=None, help="Plan file the agent should follow")
@click.option("--sub-project", default=None, help="Run the agent in this subdirectory")
def execute(
    project_path: str,
    task_id: str,
    description: str,
    plan_ref: str | None,
    sub_project: str | None,
) -> None:
    """Run an execution agent for a task and wait for it to finish."""
    request = SpawnRequest(
        task_id=task_id,
        project_path=project_path,
        prompt=build_execution_prompt(description, plan_ref),
        phase="executing",
        sub_project_path=sub_project,
    )
    session = asyncio.run(_run_agent(request))
    sys.exit(0 if session is not None and session.status == "completed" else 1)


def _setup(config: SupervisorConfig) -> DiscordNotificationManager | None:
    _, meter = setup_telemetry(config)
    create_metrics(meter)
    if config.discord_enabled:
        return DiscordNotificationManager(config.discord_webhook_url)
    return None


def _start_health(
    config: SupervisorConfig,
    orchestrator: AgentOrchestrator,
    discord: DiscordNotificationManager | None,
) -> HealthRegistry:
    """Watch agent heartbeats with a HealthRegistry, alerting when one goes quiet."""

    def on_unhealthy(name: str, missed_count: int) -> None:
        console.print(
            f"[red]Service {name} unhealthy[/red] ({missed_count} missed heartbeats)"
        )
        if discord is not None:
            discord.post(format_service_unhealthy(name, missed_count))

    registry = HealthRegistry(
        on_unhealthy=on_unhealthy,
        sweep_interval_seconds=config.health_sweep_interval_seconds,
    )

    def on_event(event: SessionEvent) -> None:
        name = f"agent:{event.task_id}"
        if event.type == "heartbeat":
            registry.pulse(name)
        elif event.type == "watchdogAlert" and discord is not None:
            discord.post(
                format_watchdog_alert(
                    event.task_id,
                    event.session_id,
                    event.data.get("silentSeconds", config.watchdog_timeout_seconds),
                )
            )

    orchestrator.on_session_event(on_event)
    registry.start()
    return registry


async def _run_agent(request: SpawnRequest) -> AgentSession | None:
    """Spawn one agent, print its events, and wait for it to exit."""
    config = SupervisorConfig.from_env()
    discord = _setup(config)
    orchestrator = AgentOrchestrator(config=config)
    registry = _start_health(config, orchestrator, discord)
    registry.register(
        f"agent:{request.task_id}",
        expected_interval_ms=config.watchdog_timeout_seconds * 1000,
    )

    finished = asyncio.Event()

    def on_event(event: SessionEvent) -> None:
        _print_event(event)
        if event.type in ("stopped", "error"):
            finished.set()

    orchestrator.on_session_event(on_event)

    try:
        session = await orchestrator.spawn(request)
    except SpawnError as e:
        console.print(f"[red]Error:[/red] {e}")
        registry.dispose()
        return None

    console.print(
        f"[bold]{request.phase.capitalize()} agent[/bold] {session.id} "
        f"(pid {session.pid}) for task {request.task_id}"
    )
    console.print(f"  Log: {session.log_file}")

    try:
        await finished.wait()
    finally:
        registry.dispose()
        orchestrator.dispose()
        if discord is not None:
            await discord.drain()

    color = "green" if session.status == "completed" else "red"
    console.print(
        f"Session {session.id}: [bold {color}]{session.status.upper()}[/bold {color}]"
        f" (exit code {session.exit_code})"
    )
    return session


def _print_event(event: SessionEvent) -> None:
    if event.type == "progress":
        if event.data.get("type") == "tool_use":
            console.print(f"  [dim]tool[/dim] {event.data.get('tool', 'unknown')}")
        elif event.data.get("type") == "agent_stopped":
            console.print(f"  [dim]stopped[/dim] {event.data.get('reason', 'unknown')}")
    elif event.type == "watchdogAlert":
        console.print(
            f"  [yellow]No progress for {event.data.get('silentSeconds')}s[/yellow]"
        )
    elif event.type == "planReady":
        console.print("  [green]Plan ready[/green]")
    elif event.type == "error":
        console.print(f"  [red]{event.data.get('message', 'Agent failed')}[/red]")


@cli.command()
@click.argument("project_path", type=click.Path(exists=True, file_okay=False))
@click.argument("task_id")
@click.argument("description")
@click.option(
    "--mode",
    type=click.Choice(["quiet", "full"]),
    default="quiet",
    help="QA depth (default: quiet)",
)
@click.option("--changed-file", "-f", "changed_files", multiple=True, help="Changed file (repeatable)")
@click.option("--plan-file", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--notify/--no-notify", default=False, help="Send desktop notifications")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
def qa(
    project_path: str,
    task_id: str,
    description: str,
    mode: str,
    changed_files: tuple[str, ...],
    plan_file: str | None,
    notify: bool,
    as_json: bool,
) -> None:
    """Run a QA agent for a task and print its report."""
    context = QaContext(
        project_path=project_path,
        task_description=description,
        changed_files=list(changed_files),
        plan_content=Path(plan_file).read_text() if plan_file else None,
    )
    report = asyncio.run(_run_qa(task_id, mode, context, notify))

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _print_report(report)
    sys.exit(1 if report.result == "fail" else 0)


async def _run_qa(task_id: str, mode: str, context: QaContext, notify: bool) -> QaReport:
    config = SupervisorConfig.from_env()
    discord = _setup(config)
    orchestrator = AgentOrchestrator(config=config)
    registry = _start_health(config, orchestrator, discord)
    registry.register(
        f"agent:qa-{task_id}",
        expected_interval_ms=config.watchdog_timeout_seconds * 1000,
    )

    managers: list[NotificationManager] = []
    if notify:
        managers.append(DesktopNotificationManager())
    if discord is not None:
        managers.append(discord)

    runner = QaRunner(
        orchestrator,
        notification_manager=FanOutNotificationManager(managers) if managers else None,
        config=config,
    )

    def on_qa_event(event: QaSessionEvent) -> None:
        if event.step:
            console.print(f"[{event.current}/{event.total}] {event.step}")

    runner.on_session_event(on_qa_event)

    try:
        if mode == "full":
            session = await runner.start_full(task_id, context)
        else:
            session = await runner.start_quiet(task_id, context)
    finally:
        registry.dispose()
        runner.dispose()
        orchestrator.dispose()
        if discord is not None:
            await discord.drain()

    return session.report or create_fallback_report(0, "QA produced no report")


def _print_report(report: QaReport) -> None:
    color = RESULT_COLORS[report.result]
    console.print(
        f"\n[bold {color}]QA {report.result.upper()}[/bold {color}] "
        f"({report.checks_passed}/{report.checks_run} checks passed, "
        f"{report.duration / 1000:.0f}s)"
    )

    suite = "  ".join(
        f"{name}: [{'green' if value == 'pass' else 'red'}]{value}[/]"
        for name, value in report.verification_suite.to_dict().items()
    )
    console.print(f"  {suite}")

    if report.issues:
        table = Table(title="Issues")
        table.add_column("Severity")
        table.add_column("Category")
        table.add_column("Description")
        table.add_column("Location")
        for issue in report.issues:
            style = SEVERITY_COLORS.get(issue.severity, "")
            table.add_row(
                f"[{style}]{issue.severity}[/]",
                issue.category,
                issue.description,
                issue.location or "",
            )
        console.print(table)

    for shot in report.screenshots:
        console.print(f"  [dim]screenshot[/dim] {shot.label}: {shot.path}")


@cli.command("parse-report")
@click.argument("log_file", type=click.Path(exists=True, dir_okay=False))
def parse_report(log_file: str) -> None:
    """Parse a QA report out of an agent log and print it as JSON."""
    output = Path(log_file).read_text(encoding="utf-8", errors="replace")
    report = parse_qa_report(output, 0) or create_fallback_report(
        0, "Could not parse QA agent output"
    )
    click.echo(json.dumps(report.to_dict(), indent=2))
    sys.exit(1 if report.result == "fail" else 0)


def main() -> None:
    """Main entry point for the agent supervisor CLI."""
    cli()


if __name__ == "__main__":
    main()
