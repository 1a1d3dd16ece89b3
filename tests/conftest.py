"""Pytest configuration and shared fixtures.

This module provides fixtures for testing the circulation engine,
including an in-memory database, engine managers and sample catalog data.
"""

import os
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from circulation.availability import AvailabilityTracker
from circulation.config import Config, reset_config
from circulation.db import BookCreate, Database, MemberCreate, reset_db
from circulation.db.models import Book, Member
from circulation.loans import LoanManager
from circulation.reservations import ReservationManager


# ============================================================================
# Configuration and Database Fixtures
# ============================================================================


@pytest.fixture
def config() -> Config:
    """Default engine configuration."""
    return Config(
        db_path=Path(":memory:"),
        loan_period_days=14,
        max_active_loans=5,
        pickup_window_hours=24,
        borrow_retry_max=3,
        borrow_retry_delay=0.2,
        reminder_start_days=1,
        reminder_end_days=2,
    )


@pytest.fixture
def db() -> Database:
    """Create an in-memory database for testing."""
    database = Database(":memory:")
    database.create_tables()
    return database


@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    # Cleanup
    if db_path.exists():
        db_path.unlink()


# ============================================================================
# Manager Fixtures
# ============================================================================


@pytest.fixture
def tracker(db: Database) -> AvailabilityTracker:
    """Create an AvailabilityTracker with test database."""
    return AvailabilityTracker(db)


@pytest.fixture
def reservations(db: Database, config: Config) -> ReservationManager:
    """Create a ReservationManager with test database."""
    return ReservationManager(db, config)


@pytest.fixture
def loans(
    db: Database,
    config: Config,
    tracker: AvailabilityTracker,
    reservations: ReservationManager,
) -> LoanManager:
    """Create a LoanManager sharing the test tracker and queue manager."""
    return LoanManager(db, config, tracker=tracker, reservations=reservations)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def make_member(db: Database) -> Callable[[str], Member]:
    """Factory registering members by username."""

    def _make(username: str) -> Member:
        return db.create_member(
            MemberCreate(
                username=username,
                full_name=username.title(),
                email=f"{username}@example.com",
            )
        )

    return _make


@pytest.fixture
def make_book(db: Database) -> Callable[..., Book]:
    """Factory adding books with generated ISBNs."""
    counter = {"n": 0}

    def _make(title: str = "Test Book") -> Book:
        counter["n"] += 1
        return db.create_book(
            BookCreate(
                isbn=f"978000000{counter['n']:04d}",
                title=title,
                author="Test Author",
            )
        )

    return _make


@pytest.fixture
def member(make_member) -> Member:
    """A single registered member."""
    return make_member("alice")


@pytest.fixture
def book(make_book) -> Book:
    """A single available book."""
    return make_book("The Left Hand of Darkness")


# ============================================================================
# CLI Testing Fixtures
# ============================================================================


@pytest.fixture
def cli_env(temp_db_path: Path) -> Generator[Path, None, None]:
    """Point the global database at a temporary file for CLI tests."""
    reset_db()
    reset_config()
    os.environ["CIRCULATION_DB_PATH"] = str(temp_db_path)

    yield temp_db_path

    reset_db()
    reset_config()
    if "CIRCULATION_DB_PATH" in os.environ:
        del os.environ["CIRCULATION_DB_PATH"]


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
