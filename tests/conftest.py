"""Shared test fixtures and configuration."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from pr_review_guard.config import LimitsConfig, QualityGateConfig
from pr_review_guard.execution.degradation import (
    ServiceAvailabilityMonitor,
    ServiceHealth,
    ServiceName,
)
from pr_review_guard.models import FileDescriptor, ReviewContext

VALID_REVIEW = {
    "issues": [
        {
            "severity": "HIGH",
            "category": "Security",
            "description": "SQL built from user input",
            "file": "app/db.py",
            "line": 12,
            "recommendation": "Use parameterized queries",
        },
        {
            "severity": "LOW",
            "category": "Formatting",
            "description": "Trailing whitespace",
            "file": "app/db.py",
            "line": 30,
        },
    ],
    "summary": {
        "total_issues": 2,
        "high_severity_count": 1,
        "medium_severity_count": 0,
        "low_severity_count": 1,
    },
}


def make_file(path: str = "src/app.py", size: int = 100, content: str | None = None) -> FileDescriptor:
    """File descriptor whose content length matches its size unless given."""
    if content is None:
        content = "x" * size
    return FileDescriptor(path=path, size_bytes=size, content=content)


def health_map(**available: bool) -> dict[ServiceName, ServiceHealth]:
    """Health entries keyed by ServiceName, e.g. health_map(language_model=True)."""
    return {
        ServiceName[name.upper()]: ServiceHealth(available=value)
        for name, value in available.items()
    }


@pytest.fixture
def limits():
    """Default size limits."""
    return LimitsConfig()


@pytest.fixture
def context():
    """Review context targeting main."""
    return ReviewContext(
        repository="acme/shop",
        target_branch="main",
        commit_sha="abc123",
        author="alice",
        session_id="session-1",
    )


@pytest.fixture
def gate_policy():
    """Default quality gate policy."""
    return QualityGateConfig()


@pytest.fixture
def fixed_today():
    """Clock pinned to a single calendar date."""
    return lambda: date(2024, 1, 1)


@pytest.fixture
def healthy_monitor():
    """Monitor with every service available."""
    return ServiceAvailabilityMonitor(
        health=health_map(
            language_model=True, source_host=True, email=True, storage=True
        )
    )


@pytest.fixture
def mock_audit():
    """Audit sink recording every call."""
    return MagicMock()


@pytest.fixture
def mock_invoker():
    """Review invoker returning a valid review."""
    invoker = MagicMock()
    invoker.invoke.return_value = VALID_REVIEW
    return invoker
