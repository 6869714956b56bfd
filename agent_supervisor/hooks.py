"""Claude Code hook settings for progress tracking.

An agent launched by the supervisor reports liveness through hooks: after
every tool call (PostToolUse) and when it stops (Stop), a short Python
script appends one JSON line to the task's progress file. The hooks are
merged into the project's .claude/settings.local.json for the lifetime of
the session. The file content from before the first session is snapshotted
and restored when the last session in that project finishes; sessions that
finish earlier only take their own hook groups back out.
"""

import json
import shlex
import sys
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

SETTINGS_RELATIVE_PATH = Path(".claude") / "settings.local.json"

# Hook timeouts are in seconds
POST_TOOL_USE_TIMEOUT = 5
STOP_TIMEOUT = 10

_HOOK_SCRIPT = """\
import datetime, json, sys
try:
    payload = json.load(sys.stdin)
except Exception:
    payload = {{}}
entry = {{"type": {entry_type!r}, {field!r}: payload.get({source!r}) or "unknown",
    "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat()}}
with open({progress_file!r}, "a", encoding="utf-8") as f:
    f.write(json.dumps(entry) + "\\n")
"""


def progress_file_for(task_id: str, progress_dir: str | Path) -> Path:
    """Path of the JSONL progress file for a task."""
    return Path(progress_dir) / f"{task_id}.jsonl"


def _hook_command(entry_type: str, field: str, source: str, progress_file: Path) -> str:
    script = _HOOK_SCRIPT.format(
        entry_type=entry_type,
        field=field,
        source=source,
        progress_file=progress_file.as_posix(),
    )
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(script)}"


def generate_hooks_config(task_id: str, progress_dir: str | Path) -> dict[str, Any]:
    """Generate hook settings that write progress entries for a task.

    Entries written to <progress_dir>/<task_id>.jsonl:
        {"type": "tool_use", "tool": <tool name>, "timestamp": <iso>}
        {"type": "agent_stopped", "reason": <reason>, "timestamp": <iso>}

    Args:
        task_id: Task whose progress file the hooks append to
        progress_dir: Directory holding progress files

    Returns:
        Settings dict with a "hooks" key in Claude Code's format
    """
    progress_file = progress_file_for(task_id, progress_dir)

    return {
        "hooks": {
            "PostToolUse": [
                {
                    "matcher": "*",
                    "hooks": [
                        {
                            "type": "command",
                            "command": _hook_command(
                                "tool_use", "tool", "tool_name", progress_file
                            ),
                            "timeout": POST_TOOL_USE_TIMEOUT,
                        }
                    ],
                }
            ],
            "Stop": [
                {
                    "hooks": [
                        {
                            "type": "command",
                            "command": _hook_command(
                                "agent_stopped", "reason", "reason", progress_file
                            ),
                            "timeout": STOP_TIMEOUT,
                        }
                    ],
                }
            ],
        }
    }


def install_hooks(
    project_path: str | Path, hooks_config: dict[str, Any]
) -> tuple[Path, str | None]:
    """Merge hook settings into the project's local Claude settings.

    Existing settings and hooks are preserved; our hook groups are appended
    per event. An unreadable settings file is replaced, but its text is still
    returned so restore_settings() can put it back.

    Args:
        project_path: Project the agent runs in
        hooks_config: Output of generate_hooks_config()

    Returns:
        Tuple of (settings file path, original content or None if absent)
    """
    settings_path = Path(project_path) / SETTINGS_RELATIVE_PATH
    original_content: str | None = None
    settings: dict[str, Any] = {}

    if settings_path.exists():
        original_content = settings_path.read_text(encoding="utf-8")
        try:
            loaded = json.loads(original_content)
            if isinstance(loaded, dict):
                settings = loaded
        except json.JSONDecodeError:
            logger.warning(
                "Existing settings are not valid JSON, replacing",
                path=str(settings_path),
            )

    merged_hooks = dict(settings.get("hooks") or {})
    for event, groups in hooks_config.get("hooks", {}).items():
        merged_hooks[event] = list(merged_hooks.get(event) or []) + list(groups)
    settings["hooks"] = merged_hooks

    settings_path.parent.mkdir(parents=True, exist_ok=True)
    settings_path.write_text(json.dumps(settings, indent=2), encoding="utf-8")

    logger.debug("Hooks installed", path=str(settings_path))
    return settings_path, original_content


def remove_hooks(settings_path: str | Path, hooks_config: dict[str, Any]) -> None:
    """Take one session's hook groups back out of the settings file.

    Groups installed by other sessions, and anything else in the file, are
    left in place. Events left without groups are dropped. A file that is
    missing or no longer valid JSON is not touched.

    Args:
        settings_path: Settings file returned by install_hooks()
        hooks_config: The same config that was passed to install_hooks()
    """
    path = Path(settings_path)
    try:
        settings = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Settings are not valid JSON, leaving hooks in place", path=str(path))
        return
    if not isinstance(settings, dict) or not isinstance(settings.get("hooks"), dict):
        return

    hooks = settings["hooks"]
    for event, groups in hooks_config.get("hooks", {}).items():
        current = list(hooks.get(event) or [])
        for group in groups:
            # One instance per group; a second session for the same task owns the other
            if group in current:
                current.remove(group)
        if current:
            hooks[event] = current
        else:
            hooks.pop(event, None)

    path.write_text(json.dumps(settings, indent=2), encoding="utf-8")
    logger.debug("Hooks removed", path=str(path))


def restore_settings(settings_path: str | Path, original_content: str | None) -> None:
    """Put the settings file back the way install_hooks() found it.

    When there was no file before, the file is removed.
    """
    path = Path(settings_path)
    if original_content is None:
        path.unlink(missing_ok=True)
    else:
        path.write_text(original_content, encoding="utf-8")
    logger.debug("Settings restored", path=str(path))
