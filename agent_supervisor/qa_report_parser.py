"""QA report parser.

Parses QA agent output into structured QaReport objects. The QA agent is
asked to emit one fenced JSON block; this module extracts, validates and
coerces it. Parsing is fail-closed: anything missing reads as a failure, and
a "pass" verdict only comes from a block that explicitly asserts it.
"""

import json
import math
import re
from datetime import datetime, timezone
from typing import Any

from agent_supervisor.qa_models import (
    QaIssue,
    QaReport,
    QaScreenshot,
    VerificationSuite,
)

VALID_RESULTS = {"pass", "fail", "warnings"}
VALID_SEVERITIES = {"critical", "major", "minor", "cosmetic"}
VALID_VERIFICATION = {"pass", "fail"}
VERIFICATION_STEPS = ("lint", "typecheck", "test", "build", "docs")

_FENCED_JSON = re.compile(r"```json\s*\n(.*?)\n\s*```", re.DOTALL)
# Non-greedy: mis-delimits objects with nested braces before "result".
_RAW_OBJECT = re.compile(r"\{.*?\"result\".*?\}", re.DOTALL)


def _is_number(value: Any) -> bool:
    """True for finite JSON numbers. json.loads accepts NaN and Infinity."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _is_one_of(value: Any, allowed: set[str]) -> bool:
    # Lists and dicts are unhashable, so check the type before membership
    return isinstance(value, str) and value in allowed


def _parse_verification_suite(raw: Any) -> VerificationSuite:
    if not isinstance(raw, dict):
        return VerificationSuite()
    values = {}
    for step in VERIFICATION_STEPS:
        value = raw.get(step)
        values[step] = value if _is_one_of(value, VALID_VERIFICATION) else "fail"
    return VerificationSuite(**values)


def _parse_issue(raw: dict[str, Any]) -> QaIssue | None:
    description = raw.get("description")
    if not description or not isinstance(description, str):
        return None

    severity = raw.get("severity")
    category = raw.get("category")
    screenshot = raw.get("screenshot")
    location = raw.get("location")

    return QaIssue(
        severity=severity if _is_one_of(severity, VALID_SEVERITIES) else "minor",
        category=category if isinstance(category, str) else "unknown",
        description=description,
        screenshot=screenshot if isinstance(screenshot, str) else None,
        location=location if isinstance(location, str) else None,
    )


def _parse_screenshot(raw: dict[str, Any]) -> QaScreenshot | None:
    path = raw.get("path")
    if not path or not isinstance(path, str):
        return None

    label = raw.get("label")
    timestamp = raw.get("timestamp")

    return QaScreenshot(
        label=label if isinstance(label, str) else "Screenshot",
        path=path,
        timestamp=(
            timestamp
            if isinstance(timestamp, str)
            else datetime.now(timezone.utc).isoformat()
        ),
        annotated=raw.get("annotated") is True,
    )


def _parse_issues(raw_issues: Any) -> list[QaIssue]:
    if not isinstance(raw_issues, list):
        return []
    issues = (_parse_issue(item) for item in raw_issues if isinstance(item, dict))
    return [issue for issue in issues if issue is not None]


def _parse_screenshots(raw_screenshots: Any) -> list[QaScreenshot]:
    if not isinstance(raw_screenshots, list):
        return []
    shots = (
        _parse_screenshot(item) for item in raw_screenshots if isinstance(item, dict)
    )
    return [shot for shot in shots if shot is not None]


def extract_json_blocks(text: str) -> list[Any]:
    """Extract candidate JSON values from agent output, in order of appearance.

    Fenced ```json blocks are preferred. Only when none of them parse does the
    raw-object heuristic run over the text.

    Args:
        text: Raw agent output

    Returns:
        Parsed JSON values; blocks that fail to parse are skipped
    """
    blocks: list[Any] = []

    for match in _FENCED_JSON.finditer(text):
        try:
            blocks.append(json.loads(match.group(1)))
        except json.JSONDecodeError:
            continue

    if not blocks:
        for match in _RAW_OBJECT.finditer(text):
            try:
                blocks.append(json.loads(match.group(0)))
            except json.JSONDecodeError:
                continue

    return blocks


def _try_parse_block(block: Any, duration_ms: int) -> QaReport | None:
    """Convert one candidate block into a report, or None if it isn't one."""
    if not isinstance(block, dict):
        return None

    result = block.get("result")
    if not _is_one_of(result, VALID_RESULTS):
        return None

    issues = _parse_issues(block.get("issues"))
    screenshots = _parse_screenshots(block.get("screenshots"))
    suite = _parse_verification_suite(block.get("verificationSuite"))
    suite_checks = suite.values()
    suite_passed = sum(1 for value in suite_checks if value == "pass")

    checks_run = block.get("checksRun")
    checks_passed = block.get("checksPassed")
    duration = block.get("duration")

    return QaReport(
        result=result,
        checks_run=(
            int(checks_run)
            if _is_number(checks_run)
            else len(suite_checks) + len(issues)
        ),
        checks_passed=(
            int(checks_passed)
            if _is_number(checks_passed)
            else suite_passed + len(issues)
        ),
        issues=issues,
        verification_suite=suite,
        screenshots=screenshots,
        duration=int(duration) if _is_number(duration) else duration_ms,
    )


def parse_qa_report(agent_output: str, duration_ms: int) -> QaReport | None:
    """Parse agent output text into a structured QA report.

    The first block with a valid "result" wins. Never raises.

    Args:
        agent_output: Full text output of the QA agent
        duration_ms: Elapsed run time, used when the block has no duration

    Returns:
        QaReport, or None if no valid report could be parsed
    """
    for block in extract_json_blocks(agent_output or ""):
        report = _try_parse_block(block, duration_ms)
        if report is not None:
            return report
    return None


def create_fallback_report(duration_ms: int, error: str | None = None) -> QaReport:
    """Create a failing report for when no real report is available.

    Args:
        duration_ms: Elapsed run time in milliseconds
        error: Optional reason, surfaced as a critical parse_error issue

    Returns:
        QaReport that always reads as a failure
    """
    issues = (
        [QaIssue(severity="critical", category="parse_error", description=error)]
        if error
        else []
    )
    return QaReport(
        result="fail",
        checks_run=0,
        checks_passed=0,
        issues=issues,
        verification_suite=VerificationSuite(),
        screenshots=[],
        duration=duration_ms,
    )
