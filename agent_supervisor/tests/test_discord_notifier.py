"""Tests for the Discord notifier.

Tests cover:
- send_discord_message() posts the embed to the webhook URL
- Webhook failures are logged, not raised
- Embed formatters for QA failures, watchdog alerts and unhealthy services
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from agent_supervisor.discord_notifier import (
    COLORS,
    MAX_DESCRIPTION_LENGTH,
    DiscordEmbed,
    _format_duration,
    format_notification,
    format_qa_failed,
    format_service_unhealthy,
    format_watchdog_alert,
    send_discord_message,
)
from agent_supervisor.qa_models import QaIssue, QaReport, VerificationSuite


def mock_client_for(mock_client_class, post_result=None, post_error=None) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.__aenter__.return_value = mock_client
    mock_client.__aexit__.return_value = None
    if post_error is not None:
        mock_client.post.side_effect = post_error
    else:
        mock_client.post.return_value = post_result or MagicMock(status_code=204)
    mock_client_class.return_value = mock_client
    return mock_client


class TestDiscordEmbed:
    def test_to_dict_omits_unset_optionals(self):
        embed = DiscordEmbed(title="Test", description="Desc", color=0x3498DB)

        embed_dict = embed.to_dict()

        assert embed_dict == {"title": "Test", "description": "Desc", "color": 0x3498DB}

    def test_to_dict_with_all_fields(self):
        embed = DiscordEmbed(
            title="Test",
            description="Desc",
            color=0x3498DB,
            fields=[{"name": "F", "value": "V", "inline": False}],
            timestamp="2026-01-01T00:00:00Z",
        )

        embed_dict = embed.to_dict()

        assert embed_dict["fields"] == [{"name": "F", "value": "V", "inline": False}]
        assert embed_dict["timestamp"] == "2026-01-01T00:00:00Z"


class TestSendDiscordMessage:
    @pytest.mark.asyncio
    async def test_posts_embed_to_webhook(self):
        embed = DiscordEmbed(title="My Title", description="My Description", color=0x2ECC71)

        with patch("agent_supervisor.discord_notifier.httpx.AsyncClient") as mock_client_class:
            mock_client = mock_client_for(mock_client_class)

            await send_discord_message("https://discord.com/api/webhooks/test", embed)

        mock_client.post.assert_called_once()
        call_args = mock_client.post.call_args
        assert call_args[0][0] == "https://discord.com/api/webhooks/test"
        assert call_args[1]["json"] == {"embeds": [embed.to_dict()]}
        mock_client_class.assert_called_once_with(timeout=5.0)

    @pytest.mark.asyncio
    async def test_http_error_status_logged(self):
        embed = DiscordEmbed(title="T", description="D", color=0)

        with patch("agent_supervisor.discord_notifier.httpx.AsyncClient") as mock_client_class:
            mock_client_for(mock_client_class, post_result=MagicMock(status_code=400, text="bad"))
            with patch("agent_supervisor.discord_notifier.logger") as mock_logger:
                await send_discord_message("https://discord.com/api/webhooks/test", embed)

        mock_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            httpx.TimeoutException("slow"),
            httpx.ConnectError("refused"),
            RuntimeError("unexpected"),
        ],
    )
    async def test_failures_logged_not_raised(self, error):
        embed = DiscordEmbed(title="T", description="D", color=0)

        with patch("agent_supervisor.discord_notifier.httpx.AsyncClient") as mock_client_class:
            mock_client_for(mock_client_class, post_error=error)
            with patch("agent_supervisor.discord_notifier.logger") as mock_logger:
                await send_discord_message("https://discord.com/api/webhooks/test", embed)

        mock_logger.warning.assert_called_once()


class TestFormatters:
    def test_format_qa_failed(self):
        report = QaReport(
            result="fail",
            checks_run=6,
            checks_passed=4,
            issues=[
                QaIssue(
                    severity="major",
                    category="console",
                    description="Uncaught TypeError",
                    location="src/App.tsx:10",
                )
            ],
            verification_suite=VerificationSuite(lint="pass", typecheck="pass", docs="pass"),
            duration=150_000,
        )

        embed = format_qa_failed("task-7", report)

        assert embed.title == "❌ QA Failed: Task task-7"
        assert embed.color == COLORS["failed"]
        assert "1 issue(s) found" in embed.description
        assert "**major** [console] Uncaught TypeError (src/App.tsx:10)" in embed.description
        fields = {f["name"]: f["value"] for f in embed.fields}
        assert fields == {"Checks": "4/6", "Duration": "2m 30s", "Failed steps": "test, build"}

    def test_format_qa_failed_summarizes_many_issues(self):
        issues = [
            QaIssue(severity="minor", category="ui", description=f"issue {i}")
            for i in range(13)
        ]
        report = QaReport(result="fail", checks_run=13, checks_passed=0, issues=issues)

        embed = format_qa_failed("task-1", report)

        assert "issue 9" in embed.description
        assert "issue 10" not in embed.description
        assert "and 3 more" in embed.description

    def test_format_watchdog_alert(self):
        embed = format_watchdog_alert("task-1", "agent-abc", 300)

        assert "task-1" in embed.title
        assert "agent-abc" in embed.description
        assert "5m" in embed.description
        assert embed.color == COLORS["warning"]

    def test_format_service_unhealthy(self):
        embed = format_service_unhealthy("agent:task-1", 3)

        assert embed.title == "🚨 Service Unhealthy: agent:task-1"
        assert "3" in embed.description

    def test_format_notification_truncates(self):
        embed = format_notification("Title", "x" * 5000, failure=True)

        assert len(embed.description) == MAX_DESCRIPTION_LENGTH
        assert embed.description.endswith("... [truncated]")
        assert embed.color == COLORS["failed"]

    @pytest.mark.parametrize(
        "seconds,expected",
        [(45, "45s"), (120, "2m"), (150, "2m 30s"), (3600, "1h"), (4500, "1h 15m")],
    )
    def test_format_duration(self, seconds, expected):
        assert _format_duration(seconds) == expected
