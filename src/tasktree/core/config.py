"""
Configuration management for tasktree based on Pydantic Settings.

Supported sources:
- Environment variables (TASKTREE_* prefixes, "__" for nesting)
- .env files
- YAML configuration files
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from tasktree.core.exceptions import ConfigurationError


class DatabaseConfig(BaseSettings):
    """SQLite database configuration."""

    db_path: str = Field(default="./data/tasktree.db", description="Path to the SQLite database")
    max_connections: int = Field(default=5, ge=1, description="Connection pool size")
    wal_mode: bool = Field(default=True, description="Enable WAL journal mode")
    foreign_keys: bool = Field(default=True, description="Enforce foreign key constraints")
    echo: bool = Field(default=False, description="Echo SQL statements (debugging)")
    auto_migrate: bool = Field(default=True, description="Apply pending migrations on open")

    @field_validator("db_path")
    @classmethod
    def ensure_db_directory(cls, v: str) -> str:
        """Create the database directory if missing."""
        if v == ":memory:":
            return v
        db_path = Path(v)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return str(db_path)

    model_config = {"env_prefix": "TASKTREE_DB_"}


class TaskConfig(BaseSettings):
    """Defaults applied to new tasks."""

    default_status: str = Field(default="pending", description="Status for tasks created without one")
    default_priority: int = Field(default=0, ge=0, le=10, description="Priority for tasks created without one")

    @field_validator("default_status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        allowed = {"pending", "in_progress", "completed", "cancelled"}
        if v not in allowed:
            raise ValueError(f"default_status must be one of: {', '.join(sorted(allowed))}")
        return v

    model_config = {"env_prefix": "TASKTREE_TASK_"}


class LoggingConfig(BaseSettings):
    """Structured logging configuration."""

    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Render log events as JSON")
    log_to_console: bool = Field(default=True, description="Log to stderr")
    log_to_file: bool = Field(default=False, description="Log to file")
    log_file_path: str = Field(default="./logs/tasktree.log", description="Log file path")

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    model_config = {"env_prefix": "TASKTREE_LOG_"}


class TaskTreeConfig(BaseSettings):
    """Main tasktree configuration."""

    environment: str = Field(default="development", description="Environment (development/production/testing)")
    debug: bool = Field(default=False, description="Enable debug mode")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    tasks: TaskConfig = Field(default_factory=TaskConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "TaskTreeConfig":
        """Load configuration from a YAML file."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {yaml_path}",
                config_file=str(yaml_path),
            )

        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML configuration: {e}",
                config_file=str(yaml_path),
            ) from e

        if not isinstance(config_data, dict):
            raise ConfigurationError(
                "Configuration root must be a mapping",
                config_file=str(yaml_path),
            )

        return cls(**config_data)

    @classmethod
    def from_env(cls, env_file: Optional[Union[str, Path]] = None) -> "TaskTreeConfig":
        """Load configuration from environment variables and a .env file."""
        env_path = Path(env_file) if env_file else Path(".env")
        if env_path.exists():
            load_dotenv(env_path)
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary."""
        return self.model_dump()

    model_config = {
        "env_prefix": "TASKTREE_",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }
