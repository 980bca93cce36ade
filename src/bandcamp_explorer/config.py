from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field


class HttpConfig(BaseModel):
    """HTTP connection configuration."""

    connect_timeout_s: float = Field(default=60.0, gt=0)
    read_timeout_s: float = Field(default=60.0, gt=0)
    max_redirects: int = Field(default=10, ge=0)
    user_agent: str = Field(default="bandcamp-explorer/0.1 (+https://github.com/bandcamp-explorer)")

    # Retry once without certificate verification when the chain is untrusted
    allow_insecure_retry: bool = Field(default=True)


class SearchConfig(BaseModel):
    """Search orchestration configuration."""

    workers: int = Field(default=6, ge=1)
    default_pages: int = Field(default=1, ge=1)

    # Backoff after 429/503 responses
    cooldown_s: float = Field(default=5.0, ge=0)
    max_attempts: int = Field(default=4, ge=1)

    # How often blocked waits wake up to check for cancellation
    poll_interval_s: float = Field(default=0.25, gt=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="WARNING")  # DEBUG, INFO, WARNING, ERROR
    hash_paths: bool = Field(default=False)


class Config(BaseModel):
    """
    Main configuration for bandcamp-explorer.

    Loads from TOML file with optional environment variable overrides.
    """

    http: HttpConfig = Field(default_factory=HttpConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """
        Load configuration from TOML file with environment variable overrides.

        Environment variables take precedence and follow the pattern:
        BANDCAMP_EXPLORER_<SECTION>_<KEY> (e.g., BANDCAMP_EXPLORER_SEARCH_COOLDOWN_S)

        All values are gathered into a single dictionary first, then validated
        by Pydantic to ensure consistent type checking and coercion.
        """
        config_dict: dict[str, object] = {}

        if config_path and config_path.exists():
            config_dict = tomllib.loads(config_path.read_text())

        config_dict = cls._merge_env_overrides(config_dict)
        return cls.model_validate(config_dict)

    @classmethod
    def _merge_env_overrides(cls, config_dict: dict[str, object]) -> dict[str, object]:
        """
        Merge environment variable overrides into config dictionary.

        Returns a new dictionary with env vars applied, ready for Pydantic validation.
        """
        env_prefix = "BANDCAMP_EXPLORER_"

        http = config_dict.setdefault("http", {})
        if not isinstance(http, dict):
            http = {}
            config_dict["http"] = http

        if connect_timeout := os.getenv(f"{env_prefix}HTTP_CONNECT_TIMEOUT_S"):
            http["connect_timeout_s"] = connect_timeout
        if read_timeout := os.getenv(f"{env_prefix}HTTP_READ_TIMEOUT_S"):
            http["read_timeout_s"] = read_timeout
        if max_redirects := os.getenv(f"{env_prefix}HTTP_MAX_REDIRECTS"):
            http["max_redirects"] = max_redirects
        if user_agent := os.getenv(f"{env_prefix}HTTP_USER_AGENT"):
            http["user_agent"] = user_agent
        if insecure_retry := os.getenv(f"{env_prefix}HTTP_ALLOW_INSECURE_RETRY"):
            http["allow_insecure_retry"] = insecure_retry.lower() in ("true", "1", "yes")

        search = config_dict.setdefault("search", {})
        if not isinstance(search, dict):
            search = {}
            config_dict["search"] = search

        if workers := os.getenv(f"{env_prefix}SEARCH_WORKERS"):
            search["workers"] = workers
        if default_pages := os.getenv(f"{env_prefix}SEARCH_DEFAULT_PAGES"):
            search["default_pages"] = default_pages
        if cooldown := os.getenv(f"{env_prefix}SEARCH_COOLDOWN_S"):
            search["cooldown_s"] = cooldown
        if max_attempts := os.getenv(f"{env_prefix}SEARCH_MAX_ATTEMPTS"):
            search["max_attempts"] = max_attempts
        if poll_interval := os.getenv(f"{env_prefix}SEARCH_POLL_INTERVAL_S"):
            search["poll_interval_s"] = poll_interval

        # Logging config
        logging_config = config_dict.setdefault("logging", {})
        if not isinstance(logging_config, dict):
            logging_config = {}
            config_dict["logging"] = logging_config

        if log_level := os.getenv(f"{env_prefix}LOGGING_LEVEL"):
            logging_config["level"] = log_level
        if log_hash_paths := os.getenv(f"{env_prefix}LOGGING_HASH_PATHS"):
            logging_config["hash_paths"] = log_hash_paths.lower() in ("true", "1", "yes")

        return config_dict


## Tests


def test_config_defaults():
    config = Config()
    assert config.http.connect_timeout_s == 60.0
    assert config.http.read_timeout_s == 60.0
    assert config.http.max_redirects == 10
    assert config.search.workers == 6
    assert config.search.cooldown_s == 5.0
    assert config.search.max_attempts == 4


def test_config_from_dict():
    config = Config.model_validate(
        {
            "http": {"max_redirects": 3, "allow_insecure_retry": False},
            "search": {"workers": 2},
        }
    )
    assert config.http.max_redirects == 3
    assert config.http.allow_insecure_retry is False
    assert config.search.workers == 2
    assert config.search.cooldown_s == 5.0


def test_config_env_overrides(
    monkeypatch,  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
):
    monkeypatch.setenv("BANDCAMP_EXPLORER_SEARCH_COOLDOWN_S", "0.5")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("BANDCAMP_EXPLORER_SEARCH_WORKERS", "3")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("BANDCAMP_EXPLORER_HTTP_ALLOW_INSECURE_RETRY", "no")  # pyright: ignore[reportUnknownMemberType]

    config = Config.load()
    assert config.search.cooldown_s == 0.5
    assert config.search.workers == 3
    assert config.http.allow_insecure_retry is False


def test_config_load_toml(tmp_path):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    path = tmp_path / "config.toml"  # pyright: ignore[reportUnknownVariableType]
    path.write_text('[http]\nmax_redirects = 5\n\n[logging]\nlevel = "DEBUG"\n')  # pyright: ignore[reportUnknownMemberType]

    config = Config.load(path)  # pyright: ignore[reportUnknownArgumentType]
    assert config.http.max_redirects == 5
    assert config.logging.level == "DEBUG"


def test_config_load_nonexistent_file():
    config = Config.load(Path("/nonexistent/config.toml"))
    assert config.search.max_attempts == 4
