# contentflow/health/notifier.py
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

ISSUE_CRITICAL = "critical"
ISSUE_WARNING = "warning"
ISSUE_INFO = "info"

SEVERITIES = [ISSUE_CRITICAL, ISSUE_WARNING, ISSUE_INFO]


@dataclass(frozen=True)
class Issue:
    type: str
    component: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "component": self.component, "message": self.message}


def group_issues(issues: List[Issue]) -> Dict[str, List[Issue]]:
    grouped: Dict[str, List[Issue]] = {severity: [] for severity in SEVERITIES}
    for issue in issues:
        grouped.setdefault(issue.type, []).append(issue)
    return grouped


def format_issues(issues: List[Issue]) -> str:
    """Plain-text rendering, one section per severity, most severe first."""
    sections = []
    for severity, group in group_issues(issues).items():
        if not group:
            continue
        lines = [f"{severity.upper()} ISSUES:"]
        lines.extend(f"- [{issue.component}] {issue.message}" for issue in group)
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


class Notifier(ABC):
    """Delivery channel for critical health findings."""

    @abstractmethod
    def notify_critical(self, issues: List[Issue]) -> None: ...


class LogNotifier(Notifier):
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def notify_critical(self, issues: List[Issue]) -> None:
        self.logger.critical(
            "Critical System Issues Detected\n\n" + format_issues(issues),
            extra={"issues": [issue.to_dict() for issue in issues]},
        )
