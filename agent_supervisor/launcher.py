"""Process launching for Claude Code agents.

The orchestrator only talks to a ProcessLauncher; ClaudeCodeLauncher is the
real implementation, tests substitute their own.
"""

import asyncio
import os
from pathlib import Path
from typing import Protocol

import structlog

from agent_supervisor.config import SupervisorConfig
from agent_supervisor.errors import SpawnError

logger = structlog.get_logger(__name__)


class AgentProcess(Protocol):
    """A launched agent process."""

    @property
    def pid(self) -> int | None: ...

    async def wait(self) -> int:
        """Wait for exit and return the exit code."""
        ...

    def terminate(self) -> None:
        """Ask the process to stop. Returns without waiting."""
        ...


class ProcessLauncher(Protocol):
    """Protocol for starting agent processes."""

    async def launch(
        self,
        prompt: str,
        cwd: str,
        env: dict[str, str],
        log_file: Path,
    ) -> AgentProcess:
        """Start an agent.

        Raises:
            SpawnError: If the process could not be started
        """
        ...


class SubprocessAgent:
    """AgentProcess backed by an asyncio subprocess."""

    def __init__(self, process: asyncio.subprocess.Process):
        self._process = process

    @property
    def pid(self) -> int | None:
        return self._process.pid

    async def wait(self) -> int:
        return await self._process.wait()

    def terminate(self) -> None:
        try:
            self._process.terminate()
        except ProcessLookupError:
            # Already exited
            pass


class ClaudeCodeLauncher:
    """Launches the Claude Code CLI in non-interactive mode.

    stdout and stderr go to the session log file, which the QA runner later
    reads back as the agent's output.
    """

    def __init__(self, config: SupervisorConfig | None = None):
        self.config = config or SupervisorConfig.from_env()

    def build_args(self, prompt: str) -> list[str]:
        """Build the CLI argument list for a prompt."""
        return [
            self.config.claude_path,
            "-p",
            prompt,
            "--dangerously-skip-permissions",
            "--max-turns",
            str(self.config.max_turns),
        ]

    async def launch(
        self,
        prompt: str,
        cwd: str,
        env: dict[str, str],
        log_file: Path,
    ) -> SubprocessAgent:
        args = self.build_args(prompt)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        logger.info(
            "Launching Claude Code",
            cwd=cwd,
            max_turns=self.config.max_turns,
            log_file=str(log_file),
        )

        try:
            with log_file.open("ab") as log:
                process = await asyncio.create_subprocess_exec(
                    *args,
                    cwd=cwd,
                    env={**os.environ, **env},
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=log,
                    stderr=asyncio.subprocess.STDOUT,
                )
        except OSError as e:
            logger.error("Failed to start Claude Code process", error=str(e))
            raise SpawnError(f"Failed to launch {self.config.claude_path}: {e}") from e

        return SubprocessAgent(process)
