"""Tests for SupervisorConfig."""

from pathlib import Path

from agent_supervisor.config import DEFAULT_VERIFICATION_COMMAND, SupervisorConfig


class TestDefaults:
    def test_defaults(self, monkeypatch) -> None:
        monkeypatch.delenv("DISCORD_WEBHOOK_URL", raising=False)
        config = SupervisorConfig()

        assert config.claude_path == "claude"
        assert config.max_turns == 50
        assert config.watchdog_timeout_seconds == 300.0
        assert config.session_retention_seconds == 3600.0
        assert config.health_sweep_interval_seconds == 30.0
        assert config.qa_verification_command == DEFAULT_VERIFICATION_COMMAND
        assert config.discord_enabled is False


class TestFromEnv:
    def test_env_overrides(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setenv("SUPERVISOR_CLAUDE_PATH", "/opt/claude")
        monkeypatch.setenv("SUPERVISOR_MAX_TURNS", "7")
        monkeypatch.setenv("SUPERVISOR_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("SUPERVISOR_WATCHDOG_TIMEOUT", "60")
        monkeypatch.setenv("SUPERVISOR_QA_POLL_INTERVAL", "0.5")
        monkeypatch.setenv("SUPERVISOR_HEALTH_SWEEP_INTERVAL", "5")
        monkeypatch.setenv("DISCORD_WEBHOOK_URL", "https://discord.example/webhook")

        config = SupervisorConfig.from_env()

        assert config.claude_path == "/opt/claude"
        assert config.max_turns == 7
        assert config.data_dir == tmp_path
        assert config.watchdog_timeout_seconds == 60.0
        assert config.qa_poll_interval_seconds == 0.5
        assert config.health_sweep_interval_seconds == 5.0
        assert config.discord_enabled is True

    def test_qa_dir_defaults_to_data_dir(self, monkeypatch) -> None:
        monkeypatch.setenv("SUPERVISOR_DATA_DIR", "/var/supervisor")
        monkeypatch.delenv("SUPERVISOR_QA_DIR", raising=False)

        config = SupervisorConfig.from_env()

        assert config.qa_base_dir == Path("/var/supervisor")
