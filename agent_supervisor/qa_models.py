"""Data models for the two-tier QA system.

Quiet QA runs in the background with a scoped check; full QA is an
exhaustive interactive walkthrough. Reports serialize to the same camelCase
JSON schema the QA agent is asked to emit.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

QaMode = Literal["quiet", "full"]
# "launching" is reserved: no transition sets it yet.
QaSessionStatus = Literal["building", "launching", "testing", "completed", "error"]
QaResult = Literal["pass", "fail", "warnings"]
VerificationResult = Literal["pass", "fail"]
QaIssueSeverity = Literal["critical", "major", "minor", "cosmetic"]
QaSessionEventType = Literal["started", "progress", "completed", "error"]

ACTIVE_QA_STATUSES: frozenset[str] = frozenset({"building", "launching", "testing"})


@dataclass
class VerificationSuite:
    """Outcome of each verification step. Anything not reported is a fail."""

    lint: VerificationResult = "fail"
    typecheck: VerificationResult = "fail"
    test: VerificationResult = "fail"
    build: VerificationResult = "fail"
    docs: VerificationResult = "fail"

    def values(self) -> list[VerificationResult]:
        return [self.lint, self.typecheck, self.test, self.build, self.docs]

    def to_dict(self) -> dict[str, str]:
        return {
            "lint": self.lint,
            "typecheck": self.typecheck,
            "test": self.test,
            "build": self.build,
            "docs": self.docs,
        }


@dataclass
class QaIssue:
    severity: QaIssueSeverity
    category: str
    description: str
    screenshot: str | None = None
    location: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "severity": self.severity,
            "category": self.category,
            "description": self.description,
        }
        if self.screenshot is not None:
            result["screenshot"] = self.screenshot
        if self.location is not None:
            result["location"] = self.location
        return result


@dataclass
class QaScreenshot:
    label: str
    path: str
    timestamp: str
    annotated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "path": self.path,
            "timestamp": self.timestamp,
            "annotated": self.annotated,
        }


@dataclass
class QaReport:
    """Structured verdict parsed from QA agent output.

    Attributes:
        result: Overall verdict - "pass", "fail" or "warnings"
        checks_run: Number of checks the agent ran
        checks_passed: Number of checks that passed
        issues: Problems found, most severe first if the agent ordered them
        verification_suite: Lint/typecheck/test/build/docs outcomes
        screenshots: Screenshots captured during the run
        duration: Run duration in milliseconds
    """

    result: QaResult
    checks_run: int
    checks_passed: int
    issues: list[QaIssue] = field(default_factory=list)
    verification_suite: VerificationSuite = field(default_factory=VerificationSuite)
    screenshots: list[QaScreenshot] = field(default_factory=list)
    duration: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": self.result,
            "checksRun": self.checks_run,
            "checksPassed": self.checks_passed,
            "issues": [issue.to_dict() for issue in self.issues],
            "verificationSuite": self.verification_suite.to_dict(),
            "screenshots": [shot.to_dict() for shot in self.screenshots],
            "duration": self.duration,
        }


@dataclass
class QaContext:
    """What the QA agent needs to know about the change under review."""

    project_path: str
    task_description: str
    changed_files: list[str] = field(default_factory=list)
    plan_content: str | None = None


@dataclass
class QaSession:
    """One QA evaluation run for a task, mutated in place as it progresses."""

    id: str
    task_id: str
    mode: QaMode
    status: QaSessionStatus
    started_at: str
    completed_at: str | None = None
    report: QaReport | None = None
    screenshots: list[str] = field(default_factory=list)
    agent_session_id: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_QA_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "mode": self.mode,
            "status": self.status,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "report": self.report.to_dict() if self.report else None,
            "screenshots": list(self.screenshots),
            "agentSessionId": self.agent_session_id,
        }


@dataclass
class QaSessionEvent:
    type: QaSessionEventType
    session: QaSession
    timestamp: str
    step: str | None = None
    total: int | None = None
    current: int | None = None
