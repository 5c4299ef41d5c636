"""Runtime settings — env-driven.

Reads from a .env file and AGGON_* environment variables. These settings
describe the process (logging, where to find the config, how to talk to
the network); the desired addon state lives in the declarative config.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class AggonSettings(BaseSettings):
    """Process configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export AGGON_LOG_LEVEL=DEBUG
        export AGGON_CONFIG_PATH=~/wow/aggon-declarative.json
        export AGGON_GITHUB_TOKEN=ghp_...
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="AGGON_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Declarative config location
    config_path: Path = Path("aggon-declarative.json")
    # Overrides both store_path and generations_path from the config file
    state_dir: Path | None = None

    # Fetching
    fetch_timeout_seconds: float = 60.0
    fetch_retries: int = 2
    github_api_url: str = "https://api.github.com"
    github_token: str = ""
    user_agent: str = "aggon"

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level.upper()
