import os
import sys
import pytest
from rich.console import Console
from rich.table import Table
from types import SimpleNamespace

# Add the project root directory to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.job_store import JobStore
from tests.fakes import FakeBrowser, FakeExecutor

CATEGORIES = ("unit", "integration", "api")

def pytest_configure(config):
    """Add custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")

class TestProgress:
    """Per-category pass/fail counts, printed as a rich table at the end of the run."""
    __test__ = False

    def __init__(self):
        self.stats = {c: {"total": 0, "passed": 0, "failed": 0, "duration": 0.0} for c in CATEGORIES}

    def update_stats(self, category, passed, duration):
        stats = self.stats[category]
        stats["total"] += 1
        stats["passed" if passed else "failed"] += 1
        stats["duration"] += duration

    def render(self) -> Table:
        table = Table(show_header=True, header_style="bold magenta")
        for column in ("Category", "Total", "Passed", "Failed", "Duration"):
            table.add_column(column)
        for category, stats in self.stats.items():
            if not stats["total"]:
                continue
            table.add_row(
                category,
                str(stats["total"]),
                f"[green]{stats['passed']}[/]",
                f"[red]{stats['failed']}[/]",
                f"{stats['duration']:.2f}s",
            )
        return table

test_progress = TestProgress()

def _category(nodeid: str) -> str:
    # Categories follow the test directory layout
    for category in CATEGORIES:
        if f"/{category}/" in nodeid or nodeid.startswith(f"{category}/"):
            return category
    return "unit"

def pytest_runtest_logreport(report):
    """Update progress after each test"""
    if report.when == "call":
        test_progress.update_stats(_category(report.nodeid), report.passed, report.duration)

def pytest_terminal_summary(terminalreporter):
    if any(stats["total"] for stats in test_progress.stats.values()):
        Console().print(test_progress.render())

@pytest.fixture
def store():
    """A fresh job registry per test."""
    return JobStore(maxsize=100, ttl=3600)

@pytest.fixture
def executor():
    return FakeExecutor()

@pytest.fixture
def browser(executor):
    return FakeBrowser(executor)

@pytest.fixture
def run_settings():
    """Agent loop settings without retry delays."""
    return SimpleNamespace(
        BROWSER_HEADLESS=True,
        HISTORY_MAX_EXCHANGES=10,
        PROVIDER_RETRY_BUDGET=3,
        RETRY_BACKOFF_SECONDS=0,
        JOB_TIMEOUT_SECONDS=30,
    )
