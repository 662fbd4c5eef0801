# config.py -- Runtime configuration for hvresult.
# Implements DESIGN.md Component 3.10: defaults come from HVRESULT_* environment
# variables (optionally loaded from a .env file) and are overridden by CLI flags.

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{value}'")


@dataclass
class Config:
    """Settings shared by every command."""

    log_level: str = field(default_factory=lambda: os.getenv("HVRESULT_LOG_LEVEL", "INFO"))
    compare_ref: str | None = field(default_factory=lambda: os.getenv("HVRESULT_COMPARE_REF") or None)
    identity_dir: str = field(default_factory=lambda: os.getenv("HVRESULT_IDENTITY_DIR", "auth"))
    policy_dir: str = field(default_factory=lambda: os.getenv("HVRESULT_POLICY_DIR", "sys/policies/acl"))
    workers: int = field(default_factory=lambda: _env_int("HVRESULT_WORKERS", 1))

    def validate(self) -> None:
        """Raise ValueError for settings that cannot work."""
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Invalid log level '{self.log_level}'. Valid levels: {', '.join(LOG_LEVELS)}")
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")


def load_config(env_file: str | None = None) -> Config:
    """Load a .env file (if any) and build a validated Config from the environment."""
    load_dotenv(dotenv_path=env_file)
    config = Config()
    config.validate()
    return config
