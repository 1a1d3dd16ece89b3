"""Configuration management for the circulation engine.

Loads configuration from environment variables and provides defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path

    # Loan rules
    loan_period_days: int
    max_active_loans: int

    # Reservations
    pickup_window_hours: int

    # Borrow retry under storage contention
    borrow_retry_max: int
    borrow_retry_delay: float  # seconds, multiplied by attempt number

    # Due-soon reminder window, in days from today
    reminder_start_days: int
    reminder_end_days: int

    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path_str = os.environ.get(
            "CIRCULATION_DB_PATH",
            str(Path.home() / ".circulation" / "library.db"),
        )
        db_path = Path(db_path_str).expanduser()

        return cls(
            db_path=db_path,
            loan_period_days=int(os.environ.get("CIRCULATION_LOAN_PERIOD_DAYS", "14")),
            max_active_loans=int(os.environ.get("CIRCULATION_MAX_ACTIVE_LOANS", "5")),
            pickup_window_hours=int(
                os.environ.get("CIRCULATION_PICKUP_WINDOW_HOURS", "24")
            ),
            borrow_retry_max=int(os.environ.get("CIRCULATION_BORROW_RETRY_MAX", "3")),
            borrow_retry_delay=float(
                os.environ.get("CIRCULATION_BORROW_RETRY_DELAY", "0.2")
            ),
            reminder_start_days=int(
                os.environ.get("CIRCULATION_REMINDER_START_DAYS", "1")
            ),
            reminder_end_days=int(os.environ.get("CIRCULATION_REMINDER_END_DAYS", "2")),
            log_level=os.environ.get("CIRCULATION_LOG_LEVEL", "WARNING").upper(),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.loan_period_days < 1:
            errors.append("Loan period must be at least one day")
        if self.max_active_loans < 1:
            errors.append("Maximum active loans must be at least 1")
        if self.pickup_window_hours < 1:
            errors.append("Pickup window must be at least one hour")
        if self.borrow_retry_max < 1:
            errors.append("Borrow retry budget must allow at least one attempt")
        if self.borrow_retry_delay < 0:
            errors.append("Borrow retry delay cannot be negative")
        if self.reminder_end_days < self.reminder_start_days:
            errors.append("Reminder window ends before it starts")

        # Check database directory is writable
        if str(self.db_path) != ":memory:" and not self.db_path.parent.exists():
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(f"Cannot create database directory: {self.db_path.parent}")

        return errors


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
