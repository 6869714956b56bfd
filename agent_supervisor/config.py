"""Configuration for the agent supervisor.

Provides centralized configuration with sensible defaults and environment
variable overrides for agent launching, session supervision, QA polling,
health sweeps and telemetry.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_VERIFICATION_COMMAND = (
    "npm run lint && npm run typecheck && npm run test && npm run build "
    "&& npm run check:docs"
)


@dataclass
class SupervisorConfig:
    """Configuration for agent supervision.

    All settings have sensible defaults but can be overridden via environment
    variables using the from_env() factory method. Every interval is a field
    rather than a constant so tests can shrink them.
    """

    # Claude Code settings
    claude_path: str = "claude"
    max_turns: int = 50

    # Where log and progress files live
    data_dir: Path = field(default_factory=lambda: Path(".agent-supervisor"))

    # Session supervision
    watchdog_timeout_seconds: float = 300.0
    monitor_interval_seconds: float = 2.0
    session_retention_seconds: float = 3600.0

    # QA settings
    qa_base_dir: Path = field(default_factory=lambda: Path(".agent-supervisor"))
    qa_poll_interval_seconds: float = 2.0
    qa_poll_initial_delay_seconds: float = 3.0
    qa_plan_excerpt_chars: int = 4000
    qa_verification_command: str = DEFAULT_VERIFICATION_COMMAND

    # Health registry
    health_sweep_interval_seconds: float = 30.0

    # Telemetry settings
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTLP_ENDPOINT", "http://localhost:4317")
    )
    service_name: str = "agent-supervisor"

    # Discord notifications
    discord_webhook_url: str = field(
        default_factory=lambda: os.getenv("DISCORD_WEBHOOK_URL", "")
    )

    @property
    def discord_enabled(self) -> bool:
        """Discord notifications are on when a webhook URL is configured."""
        return bool(self.discord_webhook_url)

    @classmethod
    def from_env(cls) -> "SupervisorConfig":
        """Load config with environment variable overrides.

        Environment variables:
            SUPERVISOR_CLAUDE_PATH: Claude CLI executable (default: claude)
            SUPERVISOR_MAX_TURNS: Override max_turns (default: 50)
            SUPERVISOR_DATA_DIR: Log/progress directory (default: .agent-supervisor)
            SUPERVISOR_WATCHDOG_TIMEOUT: Seconds without heartbeat before alerting (default: 300)
            SUPERVISOR_MONITOR_INTERVAL: Progress file poll interval (default: 2)
            SUPERVISOR_SESSION_RETENTION: Seconds terminal sessions are kept (default: 3600)
            SUPERVISOR_QA_DIR: QA output base directory (default: data dir)
            SUPERVISOR_QA_POLL_INTERVAL: QA completion poll interval (default: 2)
            SUPERVISOR_QA_POLL_INITIAL_DELAY: Delay before first QA poll (default: 3)
            SUPERVISOR_QA_VERIFICATION_COMMAND: Verification suite command
            SUPERVISOR_HEALTH_SWEEP_INTERVAL: Health sweep interval (default: 30)
            OTLP_ENDPOINT: Override otlp_endpoint (default: http://localhost:4317)
            DISCORD_WEBHOOK_URL: Discord webhook for alerts (default: disabled)
        """
        data_dir = Path(os.getenv("SUPERVISOR_DATA_DIR", ".agent-supervisor"))
        return cls(
            claude_path=os.getenv("SUPERVISOR_CLAUDE_PATH", "claude"),
            max_turns=int(os.getenv("SUPERVISOR_MAX_TURNS", "50")),
            data_dir=data_dir,
            watchdog_timeout_seconds=float(
                os.getenv("SUPERVISOR_WATCHDOG_TIMEOUT", "300")
            ),
            monitor_interval_seconds=float(
                os.getenv("SUPERVISOR_MONITOR_INTERVAL", "2")
            ),
            session_retention_seconds=float(
                os.getenv("SUPERVISOR_SESSION_RETENTION", "3600")
            ),
            qa_base_dir=Path(os.getenv("SUPERVISOR_QA_DIR", str(data_dir))),
            qa_poll_interval_seconds=float(
                os.getenv("SUPERVISOR_QA_POLL_INTERVAL", "2")
            ),
            qa_poll_initial_delay_seconds=float(
                os.getenv("SUPERVISOR_QA_POLL_INITIAL_DELAY", "3")
            ),
            qa_verification_command=os.getenv(
                "SUPERVISOR_QA_VERIFICATION_COMMAND", DEFAULT_VERIFICATION_COMMAND
            ),
            health_sweep_interval_seconds=float(
                os.getenv("SUPERVISOR_HEALTH_SWEEP_INTERVAL", "30")
            ),
            otlp_endpoint=os.getenv("OTLP_ENDPOINT", "http://localhost:4317"),
            discord_webhook_url=os.getenv("DISCORD_WEBHOOK_URL", ""),
        )
