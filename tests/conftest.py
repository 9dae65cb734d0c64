"""
Pytest configuration and fixtures for the test suite.
"""
from datetime import datetime

import pytest
from hypothesis import settings

from companion_sync.database import CompanionDatabase
from companion_sync.models import DeadlineOwnership, Priority

# Configure Hypothesis settings for all tests
# Disable deadline to avoid flaky failures during parallel execution
settings.register_profile("default", deadline=None)
settings.load_profile("default")


@pytest.fixture
def db(tmp_path):
    """Open a temporary DuckDB store."""
    with CompanionDatabase(tmp_path / "test.duckdb") as database:
        yield database


@pytest.fixture
def seeded_db(db):
    """Store with one manual deadline and one Canvas-owned deadline for user-1."""
    db.create_deadline("user-1", {
        "course": "Personal",
        "task": "Read chapter 3",
        "due_date": datetime(2026, 3, 1, 12, 0),
        "priority": Priority.LOW,
    })
    db.create_deadline("user-1", {
        "course": "Algorithms",
        "task": "Problem set 1",
        "due_date": datetime(2026, 3, 5, 23, 59),
        "source_due_date": datetime(2026, 3, 5, 23, 59),
        "priority": Priority.MEDIUM,
        "ownership": DeadlineOwnership("canvas", "101"),
    })
    return db
