"""Notification delivery for supervisor events.

A NotificationManager receives Notification objects (QA failures today).
Implementations here deliver to the macOS notification center, to a Discord
webhook, or to several managers at once.
"""

import asyncio
import platform
import subprocess
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from agent_supervisor.discord_notifier import (
    DiscordEmbed,
    format_notification,
    format_qa_failed,
    send_discord_message,
)
from agent_supervisor.models import utc_now_iso
from agent_supervisor.qa_models import QaReport

logger = structlog.get_logger(__name__)


@dataclass
class Notification:
    """A user-facing notification.

    Attributes:
        id: Unique notification id
        source: Subsystem that raised it, e.g. "qa"
        type: Notification kind, e.g. "ci_status"
        title: Short headline
        body: Detail text
        url: Link to more information, empty if none
        timestamp: ISO timestamp
        read: Whether the user has seen it
        metadata: Kind-specific extras, e.g. {"ciStatus": "failure"}
    """

    id: str
    source: str
    type: str
    title: str
    body: str
    url: str = ""
    timestamp: str = field(default_factory=utc_now_iso)
    read: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_failure(self) -> bool:
        return self.metadata.get("ciStatus") == "failure"


class NotificationManager(Protocol):
    """Protocol for anything that accepts notifications."""

    def on_notification(self, notification: Notification) -> None: ...


def send_notification(title: str, message: str, sound: bool = True) -> None:
    """Send a macOS notification via osascript.

    Silently does nothing on non-macOS platforms.
    """
    if platform.system() != "Darwin":
        return

    # AppleScript string literals cannot contain raw double quotes
    title = title.replace('"', "'")
    message = message.replace('"', "'")
    script = f'display notification "{message}" with title "{title}"'
    if sound:
        script += ' sound name "default"'

    subprocess.run(["osascript", "-e", script], check=False)


class DesktopNotificationManager:
    """Shows notifications in the desktop notification center."""

    def __init__(self, sound: bool = True):
        self.sound = sound

    def on_notification(self, notification: Notification) -> None:
        send_notification(notification.title, notification.body, sound=self.sound)


class DiscordNotificationManager:
    """Forwards notifications to a Discord webhook.

    Delivery is fire-and-forget on the running event loop; failures are
    logged by send_discord_message. A notification whose metadata carries a
    QaReport under "report" is rendered with the detailed QA embed.
    """

    def __init__(self, webhook_url: str):
        self.webhook_url = webhook_url
        self._pending: set[asyncio.Task] = set()

    def on_notification(self, notification: Notification) -> None:
        report = notification.metadata.get("report")
        task_id = notification.metadata.get("taskId")
        if isinstance(report, QaReport) and task_id:
            embed = format_qa_failed(task_id, report)
        else:
            embed = format_notification(
                notification.title, notification.body, failure=notification.is_failure
            )
        self.post(embed, notification_id=notification.id)

    def post(self, embed: DiscordEmbed, notification_id: str | None = None) -> None:
        """Schedule delivery of an embed."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop, dropping Discord notification",
                notification_id=notification_id,
            )
            return
        task = loop.create_task(send_discord_message(self.webhook_url, embed))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for notifications still being delivered."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


class FanOutNotificationManager:
    """Delivers each notification to several managers.

    A failing manager is logged and does not stop delivery to the others.
    """

    def __init__(self, managers: list[NotificationManager]):
        self.managers = managers

    def on_notification(self, notification: Notification) -> None:
        for manager in self.managers:
            try:
                manager.on_notification(notification)
            except Exception as e:
                logger.error(
                    "Notification delivery failed",
                    manager=type(manager).__name__,
                    error=str(e),
                )
