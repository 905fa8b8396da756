import os
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_FANOUT_CONCURRENCY = 5
DEFAULT_MAX_RESULTS_PER_SOURCE = 10
DEFAULT_DATABASE_URL = "sqlite:///federated_search.db"


class Config:
    """Configuration for the federated search aggregator, read from the environment."""

    def __init__(self):
        """Initialize configuration with environment variables (and a .env file if present)."""
        env_path = Path(__file__).parent.parent / ".env"
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)

        # Fan-out configuration
        self.FANOUT_CONCURRENCY = self._int_env("FANOUT_CONCURRENCY", DEFAULT_FANOUT_CONCURRENCY)
        self.MAX_RESULTS_PER_SOURCE = self._int_env(
            "MAX_RESULTS_PER_SOURCE", DEFAULT_MAX_RESULTS_PER_SOURCE
        )

        # Database configuration
        self.DATABASE_URL = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
        self.DB_POOL_SIZE = self._int_env("DB_POOL_SIZE", 5)
        self.DB_MAX_OVERFLOW = self._int_env("DB_MAX_OVERFLOW", 10)
        self.DB_POOL_TIMEOUT = self._int_env("DB_POOL_TIMEOUT", 30)

        self.errors: list[str] = []

    def _int_env(self, name: str, default: int) -> int:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            return int(raw)
        except ValueError:
            # Kept as the raw string so validate() can report it
            return raw  # type: ignore[return-value]

    def validate(self) -> bool:
        """
        Validate the configuration.

        Returns:
            bool: True if configuration is valid, False otherwise. Problems are
            collected in ``self.errors``.
        """
        self.errors = []
        for name in ("FANOUT_CONCURRENCY", "MAX_RESULTS_PER_SOURCE"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                self.errors.append(f"{name} must be a positive integer, got {value!r}")

        for name in ("DB_POOL_SIZE", "DB_MAX_OVERFLOW", "DB_POOL_TIMEOUT"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                self.errors.append(f"{name} must be a non-negative integer, got {value!r}")

        if not self.DATABASE_URL:
            self.errors.append("DATABASE_URL must not be empty")

        return not self.errors

    def get_fanout_info(self) -> str:
        """Human-readable summary of the fan-out settings."""
        return (
            f"fan-out K={self.FANOUT_CONCURRENCY}, "
            f"M={self.MAX_RESULTS_PER_SOURCE} results per source"
        )
