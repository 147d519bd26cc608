"""
Pytest configuration and shared fixtures for the ingestion engine tests.
"""
import sys
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import Settings
from core.ingestion.progress import ProgressSink
from core.ingestion.run_state import BatchStats
from core.ingestion.slice_executor import ProcessingTarget, SliceResult


# ============================================================================
# Test doubles
# ============================================================================

class RecordingSleep:
    """Awaitable stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)

    @property
    def ms(self):
        return [round(s * 1000) for s in self.calls]


class RecordingSink(ProgressSink):
    """Sink keeping every notification in arrival order."""

    def __init__(self):
        self.events = []

    async def on_progress(self, state):
        self.events.append(("progress", state))

    async def on_complete(self, final_state):
        self.events.append(("complete", final_state))

    async def on_error(self, message, state):
        self.events.append(("error", message))

    def of(self, kind):
        return [payload for k, payload in self.events if k == kind]


class PagedExecutor:
    """
    Well-behaved remote over ``total`` units.

    ``failures`` maps a cursor to a list of exceptions raised, in order, on
    successive calls at that cursor before it finally succeeds.
    """

    def __init__(self, total: int, failures=None, remote_run_id: str = "remote-1", on_call=None):
        self.total = total
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.remote_run_id = remote_run_id
        self.on_call = on_call
        self.calls = []

    async def invoke(self, target, cursor, slice_size, run_id=None):
        self.calls.append((cursor, slice_size, run_id))
        if self.on_call:
            self.on_call(cursor)

        pending = self.failures.get(cursor)
        if pending:
            raise pending.pop(0)

        end = min(cursor + slice_size - 1, self.total)
        done = end >= self.total
        stats = BatchStats()
        stats.increment("pages", end - cursor + 1)
        return SliceResult(
            done=done,
            next_cursor=None if done else end + 1,
            processed_this_slice=end - cursor + 1,
            stats_delta=stats,
            total_units=self.total,
            run_id=self.remote_run_id,
        )

    @property
    def cursors(self):
        return [c for c, _, _ in self.calls]


class AlwaysFailingExecutor:
    """Raises the same error on every call."""

    def __init__(self, error: Exception):
        self.error = error
        self.calls = []

    async def invoke(self, target, cursor, slice_size, run_id=None):
        self.calls.append((cursor, slice_size, run_id))
        raise self.error


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def paged_executor():
    """Factory: paged_executor(total, failures=None, ...)."""
    return PagedExecutor


@pytest.fixture
def failing_executor():
    """Factory: failing_executor(error)."""
    return AlwaysFailingExecutor


@pytest.fixture
def make_target():
    def _make(target_id: str = "doc-1", **kwargs) -> ProcessingTarget:
        kwargs.setdefault("locator", f"uploads/{target_id}.pdf")
        return ProcessingTarget(target_id=target_id, **kwargs)
    return _make


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def temp_db(temp_dir: Path) -> Path:
    """Path of a fresh run-store database."""
    return temp_dir / "runs.db"


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Settings pointing at a throwaway gateway and run store."""
    return Settings(
        remote_base_url="https://gateway.test/functions/v1",
        remote_api_key="test_key",
        rest_base_url="https://gateway.test/rest/v1",
        storage_base_url="https://gateway.test/storage/v1",
        run_store_path=temp_dir / "runs" / "runs.db",
        data_dir=temp_dir / "data",
        logs_dir=temp_dir / "logs",
    )


# ============================================================================
# Session-level Setup
# ============================================================================

def pytest_configure(config):
    """Configure pytest session."""
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: tests spanning several components")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
