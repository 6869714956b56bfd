"""Tests for notification managers."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agent_supervisor.discord_notifier import DiscordEmbed
from agent_supervisor.notifications import (
    DesktopNotificationManager,
    DiscordNotificationManager,
    FanOutNotificationManager,
    Notification,
    send_notification,
)
from agent_supervisor.qa_models import QaIssue, QaReport


def make_notification(**overrides) -> Notification:
    values = {
        "id": "qa-fail-task-1-1",
        "source": "qa",
        "type": "ci_status",
        "title": "QA Failed: Task task-1",
        "body": "1 issue(s) found",
        "metadata": {"ciStatus": "failure"},
    }
    values.update(overrides)
    return Notification(**values)


class TestNotification:
    def test_defaults(self):
        notification = make_notification()

        assert notification.read is False
        assert notification.url == ""
        assert notification.timestamp
        assert notification.is_failure

    def test_not_failure_without_ci_status(self):
        assert not make_notification(metadata={}).is_failure


class TestSendNotification:
    def test_macos_runs_osascript(self):
        with patch("agent_supervisor.notifications.platform.system", return_value="Darwin"):
            with patch("agent_supervisor.notifications.subprocess.run") as mock_run:
                send_notification('Say "hi"', "Body")

        args = mock_run.call_args.args[0]
        assert args[:2] == ["osascript", "-e"]
        assert "with title \"Say 'hi'\"" in args[2]
        assert 'sound name "default"' in args[2]

    def test_other_platforms_do_nothing(self):
        with patch("agent_supervisor.notifications.platform.system", return_value="Linux"):
            with patch("agent_supervisor.notifications.subprocess.run") as mock_run:
                send_notification("Title", "Body")

        mock_run.assert_not_called()

    def test_desktop_manager_forwards_title_and_body(self):
        with patch("agent_supervisor.notifications.send_notification") as mock_send:
            DesktopNotificationManager(sound=False).on_notification(make_notification())

        mock_send.assert_called_once_with("QA Failed: Task task-1", "1 issue(s) found", sound=False)


class TestDiscordNotificationManager:
    @pytest.mark.asyncio
    async def test_qa_report_uses_detailed_embed(self):
        report = QaReport(
            result="fail",
            checks_run=1,
            checks_passed=0,
            issues=[QaIssue(severity="critical", category="build", description="Build broke")],
        )
        notification = make_notification(
            metadata={"ciStatus": "failure", "taskId": "task-1", "report": report}
        )
        manager = DiscordNotificationManager("https://discord.com/api/webhooks/test")

        with patch(
            "agent_supervisor.notifications.send_discord_message", new=AsyncMock()
        ) as mock_send:
            manager.on_notification(notification)
            await manager.drain()

        url, embed = mock_send.call_args.args
        assert url == "https://discord.com/api/webhooks/test"
        assert embed.title == "❌ QA Failed: Task task-1"
        assert "Build broke" in embed.description

    @pytest.mark.asyncio
    async def test_plain_notification_uses_generic_embed(self):
        manager = DiscordNotificationManager("https://discord.com/api/webhooks/test")

        with patch(
            "agent_supervisor.notifications.send_discord_message", new=AsyncMock()
        ) as mock_send:
            manager.on_notification(make_notification(metadata={}))
            await manager.drain()

        embed = mock_send.call_args.args[1]
        assert embed.title == "QA Failed: Task task-1"
        assert embed.description == "1 issue(s) found"

    def test_post_without_running_loop_is_dropped(self):
        manager = DiscordNotificationManager("https://discord.com/api/webhooks/test")

        with patch("agent_supervisor.notifications.send_discord_message") as mock_send:
            manager.post(DiscordEmbed(title="T", description="D", color=0))

        mock_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_pending_tasks_cleared_after_delivery(self):
        manager = DiscordNotificationManager("https://discord.com/api/webhooks/test")

        with patch("agent_supervisor.notifications.send_discord_message", new=AsyncMock()):
            manager.post(DiscordEmbed(title="T", description="D", color=0))
            await manager.drain()
            await asyncio.sleep(0)

        assert manager._pending == set()


class TestFanOutNotificationManager:
    def test_delivers_to_all_managers(self):
        first, second = MagicMock(), MagicMock()
        notification = make_notification()

        FanOutNotificationManager([first, second]).on_notification(notification)

        first.on_notification.assert_called_once_with(notification)
        second.on_notification.assert_called_once_with(notification)

    def test_failing_manager_does_not_block_others(self):
        broken = MagicMock()
        broken.on_notification.side_effect = RuntimeError("boom")
        working = MagicMock()

        FanOutNotificationManager([broken, working]).on_notification(make_notification())

        working.on_notification.assert_called_once()
