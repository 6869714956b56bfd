"""Discord webhook notifier for supervisor events.

Sends rich embed messages to a Discord webhook. Webhook failures are logged
but never raised, so a broken webhook cannot interrupt a QA run or a sweep.
"""

from dataclasses import dataclass

import httpx
import structlog

from agent_supervisor.qa_models import QaReport

logger = structlog.get_logger(__name__)

# Color scheme for Discord embeds
COLORS = {
    "info": 0x3498DB,  # Blue
    "passed": 0x2ECC71,  # Green
    "failed": 0xE74C3C,  # Red
    "warning": 0xF39C12,  # Orange
}

# Maximum description length for Discord embeds
MAX_DESCRIPTION_LENGTH = 4096
TRUNCATION_SUFFIX = "... [truncated]"
# Issues listed in a QA failure embed before summarizing the rest
MAX_LISTED_ISSUES = 10


@dataclass
class DiscordEmbed:
    """Embed portion of a Discord webhook message.

    Attributes:
        title: Bold title text at the top of the embed
        description: Main body text (max 4096 chars)
        color: Integer color value, e.g. 0x2ECC71
        fields: Optional list of {"name", "value", "inline"} dicts
        timestamp: Optional ISO timestamp
    """

    title: str
    description: str
    color: int
    fields: list[dict] | None = None
    timestamp: str | None = None

    def to_dict(self) -> dict:
        result = {
            "title": self.title,
            "description": self.description,
            "color": self.color,
        }
        if self.fields is not None:
            result["fields"] = self.fields
        if self.timestamp is not None:
            result["timestamp"] = self.timestamp
        return result


async def send_discord_message(webhook_url: str, embed: DiscordEmbed) -> None:
    """Post one embed to a Discord webhook.

    Uses a 5 second timeout. Network errors, timeouts and HTTP error
    statuses are logged as warnings. Discord answers 204 on success.
    """
    payload = {"embeds": [embed.to_dict()]}

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.post(webhook_url, json=payload)

            if response.status_code >= 400:
                logger.warning(
                    "Discord webhook rejected message",
                    status_code=response.status_code,
                    body=response.text,
                )
    except httpx.TimeoutException:
        logger.warning("Discord webhook request timed out")
    except httpx.ConnectError:
        logger.warning("Failed to connect to Discord webhook")
    except Exception as e:
        logger.warning("Discord webhook error", error=str(e))


def _truncate_text(text: str, max_length: int = MAX_DESCRIPTION_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - len(TRUNCATION_SUFFIX)] + TRUNCATION_SUFFIX


def _format_duration(seconds: float) -> str:
    """Format a duration like "45s", "2m 30s" or "1h 15m"."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"


def format_qa_failed(task_id: str, report: QaReport) -> DiscordEmbed:
    """Format a failed QA run, listing the issues found.

    Args:
        task_id: Task that was reviewed
        report: The failing QA report

    Returns:
        DiscordEmbed ready to send
    """
    lines = [f"{len(report.issues)} issue(s) found", ""]
    for issue in report.issues[:MAX_LISTED_ISSUES]:
        location = f" ({issue.location})" if issue.location else ""
        lines.append(f"• **{issue.severity}** [{issue.category}] {issue.description}{location}")
    if len(report.issues) > MAX_LISTED_ISSUES:
        lines.append(f"… and {len(report.issues) - MAX_LISTED_ISSUES} more")

    failed_steps = [
        name
        for name, value in report.verification_suite.to_dict().items()
        if value == "fail"
    ]

    return DiscordEmbed(
        title=f"❌ QA Failed: Task {task_id}",
        description=_truncate_text("\n".join(lines)),
        color=COLORS["failed"],
        fields=[
            {
                "name": "Checks",
                "value": f"{report.checks_passed}/{report.checks_run}",
                "inline": True,
            },
            {
                "name": "Duration",
                "value": _format_duration(report.duration / 1000),
                "inline": True,
            },
            {
                "name": "Failed steps",
                "value": ", ".join(failed_steps) or "none",
                "inline": True,
            },
        ],
    )


def format_watchdog_alert(
    task_id: str, session_id: str, silent_seconds: float
) -> DiscordEmbed:
    """Format a watchdog alert for an agent that stopped reporting progress."""
    return DiscordEmbed(
        title=f"⏱️ Agent Silent: Task {task_id}",
        description=(
            f"Session {session_id} has not reported progress for "
            f"{_format_duration(silent_seconds)}."
        ),
        color=COLORS["warning"],
    )


def format_service_unhealthy(name: str, missed_count: int) -> DiscordEmbed:
    """Format a service that missed too many heartbeats."""
    return DiscordEmbed(
        title=f"🚨 Service Unhealthy: {name}",
        description=f"Missed {missed_count} consecutive heartbeats.",
        color=COLORS["failed"],
    )


def format_notification(title: str, body: str, failure: bool = False) -> DiscordEmbed:
    """Format a generic notification."""
    return DiscordEmbed(
        title=title,
        description=_truncate_text(body),
        color=COLORS["failed"] if failure else COLORS["info"],
    )
