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

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path
    db_busy_timeout: float  # seconds

    # Loan policy
    loan_period_days: int
    max_loan_period_days: int
    member_loan_limit: int

    # Logging
    log_level: str

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
            db_busy_timeout=float(os.environ.get("CIRCULATION_DB_BUSY_TIMEOUT", "30")),
            loan_period_days=int(os.environ.get("CIRCULATION_LOAN_PERIOD_DAYS", "14")),
            max_loan_period_days=int(
                os.environ.get("CIRCULATION_MAX_LOAN_PERIOD_DAYS", "90")
            ),
            member_loan_limit=int(os.environ.get("CIRCULATION_MEMBER_LOAN_LIMIT", "3")),
            log_level=os.environ.get("CIRCULATION_LOG_LEVEL", "WARNING").upper(),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.loan_period_days < 1:
            errors.append("Loan period must be at least 1 day")
        if self.max_loan_period_days < self.loan_period_days:
            errors.append("Maximum loan period must not be shorter than the default loan period")
        if self.member_loan_limit < 1:
            errors.append("Member loan limit must be at least 1")
        if self.db_busy_timeout < 0:
            errors.append("Database busy timeout cannot be negative")
        if self.log_level not in LOG_LEVELS:
            errors.append(f"Unknown log level: {self.log_level}")

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
