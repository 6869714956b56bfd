"""Shared fixtures for agent supervisor tests."""

import asyncio
import itertools
from pathlib import Path

import pytest
import pytest_asyncio

from agent_supervisor.config import SupervisorConfig
from agent_supervisor.errors import SpawnError
from agent_supervisor.orchestrator import AgentOrchestrator

_pids = itertools.count(40000)


class FakeProcess:
    """Agent process whose exit is controlled by the test."""

    def __init__(self) -> None:
        self.pid = next(_pids)
        self.terminated = False
        self._exit: asyncio.Future[int] = asyncio.get_running_loop().create_future()

    def exit(self, code: int) -> None:
        if not self._exit.done():
            self._exit.set_result(code)

    async def wait(self) -> int:
        return await self._exit

    def terminate(self) -> None:
        self.terminated = True
        self.exit(-15)


class FakeLauncher:
    """ProcessLauncher that records launches instead of starting processes."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.launches: list[dict] = []
        self.processes: list[FakeProcess] = []
        self.log_output: str = ""

    async def launch(self, prompt: str, cwd: str, env: dict, log_file: Path) -> FakeProcess:
        if self.fail_with is not None:
            raise self.fail_with
        self.launches.append({"prompt": prompt, "cwd": cwd, "env": env, "log_file": log_file})
        log_file.write_text(self.log_output, encoding="utf-8")
        process = FakeProcess()
        self.processes.append(process)
        return process


@pytest.fixture
def config(tmp_path: Path) -> SupervisorConfig:
    """Config with short intervals and paths under tmp_path."""
    return SupervisorConfig(
        data_dir=tmp_path / "data",
        qa_base_dir=tmp_path / "qa-base",
        monitor_interval_seconds=0.01,
        watchdog_timeout_seconds=0.05,
        qa_poll_interval_seconds=0.01,
        qa_poll_initial_delay_seconds=0.01,
        otlp_endpoint="",
        discord_webhook_url="",
    )


@pytest.fixture
def project(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def failing_launcher() -> FakeLauncher:
    return FakeLauncher(fail_with=SpawnError("claude not found"))


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds, failing after a timeout."""
    return _wait_until


@pytest_asyncio.fixture
async def orchestrator(launcher: FakeLauncher, config: SupervisorConfig):
    orchestrator = AgentOrchestrator(launcher=launcher, config=config)
    yield orchestrator
    orchestrator.dispose()
    # Let cancelled monitors and watchers unwind
    await asyncio.sleep(0.01)
