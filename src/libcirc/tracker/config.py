"""Configuration management for libcirc.

Loads configuration from environment variables and provides defaults.
"""

import os
from dataclasses import dataclass, field
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
    busy_timeout: float  # seconds

    # Borrowing policy overrides (JSON file)
    policy_file: Optional[Path]

    # Logging
    log_level: str

    # Transient storage failures
    retry_max: int
    retry_base_delay: float  # seconds

    # Actors allowed to create and modify items
    librarians: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path_str = os.environ.get(
            "LIBCIRC_DB_PATH",
            str(Path.home() / ".libcirc" / "circulation.db"),
        )
        db_path = Path(db_path_str).expanduser()

        policy_file_str = os.environ.get("LIBCIRC_POLICY_FILE")
        policy_file = Path(policy_file_str).expanduser() if policy_file_str else None

        librarians = frozenset(
            actor.strip()
            for actor in os.environ.get("LIBCIRC_LIBRARIANS", "").split(",")
            if actor.strip()
        )

        return cls(
            db_path=db_path,
            busy_timeout=float(os.environ.get("LIBCIRC_BUSY_TIMEOUT", "5.0")),
            policy_file=policy_file,
            log_level=os.environ.get("LIBCIRC_LOG_LEVEL", "WARNING").upper(),
            retry_max=int(os.environ.get("LIBCIRC_RETRY_MAX", "5")),
            retry_base_delay=float(os.environ.get("LIBCIRC_RETRY_DELAY", "0.05")),
            librarians=librarians,
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if str(self.db_path) != ":memory:" and not self.db_path.parent.exists():
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(f"Cannot create database directory: {self.db_path.parent}")

        if self.policy_file and not self.policy_file.exists():
            errors.append(f"Policy file not found: {self.policy_file}")

        if self.log_level not in LOG_LEVELS:
            errors.append(f"Unknown log level: {self.log_level}")

        if self.retry_max < 1:
            errors.append("LIBCIRC_RETRY_MAX must be at least 1")

        return errors

    def has_librarians(self) -> bool:
        """Check if any privileged actors are configured."""
        return bool(self.librarians)


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
