"""
Central configuration for the extraction pipeline.

Settings come from the process environment; a local .env file is loaded
first so developers can keep keys out of their shell profile.

Environment variables:
  - ANTHROPIC_API_KEY / CLAUDE_API_KEY
  - CLAUDE_MODEL (default: claude-3-7-sonnet-20250219)
  - MAX_CONCURRENT_EXTRACTIONS (default: 3)
  - USE_BATCH_PROCESSING (default: false)
  - BATCH_SIZE (default: 50)
  - BATCH_CHECK_INTERVAL_MINUTES (default: 15)
  - ESG_DATA_DIR / ESG_OUTPUT_DIR / ESG_DB_PATH / ESG_CRITERIA_CSV
  - MAX_RETRIES / INITIAL_RETRY_DELAY_MS
  - REQUEST_TIMEOUT_SECONDS / MAX_OUTPUT_TOKENS / TEMPERATURE
  - LOG_LEVEL
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .constants import (
    DEFAULT_BATCH_CHECK_INTERVAL_MINUTES,
    DEFAULT_BATCH_SIZE,
    DEFAULT_INITIAL_DELAY_MS,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_TEMPERATURE,
)

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def get_data_dir() -> Path:
    """
    Get the data directory holding input CSVs and the status database.

    Uses ESG_DATA_DIR environment variable if set, otherwise ./data

    Returns:
        Path to data directory
    """
    env_path = os.environ.get("ESG_DATA_DIR")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.cwd() / "data"


def get_output_dir() -> Path:
    """Get the directory for raw responses, extracted records and exports."""
    env_path = os.environ.get("ESG_OUTPUT_DIR")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.cwd() / "output"


def get_db_path() -> Path:
    """Get the SQLite status database path."""
    env_path = os.environ.get("ESG_DB_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return get_data_dir() / "esg_database.sqlite"


def get_criteria_csv_path() -> Path:
    """Get the industry criteria CSV path."""
    env_path = os.environ.get("ESG_CRITERIA_CSV")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return get_data_dir() / "IndustryCriteriaSimple.csv"


@dataclass(frozen=True)
class Settings:
    """Resolved runtime settings for one pipeline process."""

    api_key: Optional[str]
    model: str
    max_concurrency: int
    use_batch: bool
    batch_size: int
    batch_check_interval_minutes: int
    max_retries: int
    initial_delay_ms: int
    request_timeout_seconds: float
    max_tokens: int
    temperature: float
    log_level: str
    data_dir: Path
    output_dir: Path
    db_path: Path
    criteria_csv: Path


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Load settings from the environment (after reading .env).

    Args:
        env_file: Optional explicit .env path; default search otherwise

    Returns:
        Settings instance
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    return Settings(
        api_key=os.environ.get("ANTHROPIC_API_KEY") or os.environ.get("CLAUDE_API_KEY"),
        model=os.environ.get("CLAUDE_MODEL", DEFAULT_MODEL),
        max_concurrency=max(1, _env_int("MAX_CONCURRENT_EXTRACTIONS", DEFAULT_MAX_CONCURRENCY)),
        use_batch=_env_bool("USE_BATCH_PROCESSING"),
        batch_size=max(1, _env_int("BATCH_SIZE", DEFAULT_BATCH_SIZE)),
        batch_check_interval_minutes=_env_int("BATCH_CHECK_INTERVAL_MINUTES", DEFAULT_BATCH_CHECK_INTERVAL_MINUTES),
        max_retries=_env_int("MAX_RETRIES", DEFAULT_MAX_RETRIES),
        initial_delay_ms=_env_int("INITIAL_RETRY_DELAY_MS", DEFAULT_INITIAL_DELAY_MS),
        request_timeout_seconds=_env_float("REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS),
        max_tokens=_env_int("MAX_OUTPUT_TOKENS", DEFAULT_MAX_TOKENS),
        temperature=_env_float("TEMPERATURE", DEFAULT_TEMPERATURE),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        data_dir=get_data_dir(),
        output_dir=get_output_dir(),
        db_path=get_db_path(),
        criteria_csv=get_criteria_csv_path(),
    )


def ensure_dirs(settings: Settings) -> None:
    """Ensure the data and output directories exist."""
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.output_dir.mkdir(parents=True, exist_ok=True)
