"""
Utility functions for the UPI Watcher pipeline.

This module provides:
- Central logging configuration
- Environment variable helpers and the run configuration
- The base exception shared by every pipeline stage
- Shared helper utilities used across modules
"""

import logging
import os
import re
import sys
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlparse


# Required environment variables, in the order they are reported when missing
REQUIRED_ENV_VARS = ["SITE_URL", "USER_TOKEN", "GIST_ID", "WEBHOOK_URL"]

DEFAULT_GIST_FILENAME = "psp-banks.json"
DEFAULT_FETCH_MAX_RETRIES = 3
DEFAULT_FETCH_RETRY_DELAY = 1.0  # seconds
DEFAULT_NOTIFY_DELAY = 1.0  # seconds
DEFAULT_REQUEST_TIMEOUT = 30  # seconds


class WatcherError(Exception):
    """Base class for failures that abort a pipeline run."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class Config:
    """
    Run configuration, built once at process start.

    Attributes:
        site_url: Page containing the TPAP/PSP bank table.
        user_token: GitHub token with gist scope.
        gist_id: Identifier of the gist holding the snapshot.
        webhook_url: Webhook receiving one message per new entry.
        gist_filename: Name of the snapshot file inside the gist.
        fetch_max_retries: Retries after the first failed page fetch.
        fetch_retry_delay: Seconds to wait between fetch attempts.
        notify_delay: Seconds to wait between webhook messages.
        request_timeout: Timeout in seconds for every HTTP request.
        dry_run: If True, skip webhook posts and the snapshot write.
    """
    site_url: str
    user_token: str
    gist_id: str
    webhook_url: str
    gist_filename: str = DEFAULT_GIST_FILENAME
    fetch_max_retries: int = DEFAULT_FETCH_MAX_RETRIES
    fetch_retry_delay: float = DEFAULT_FETCH_RETRY_DELAY
    notify_delay: float = DEFAULT_NOTIFY_DELAY
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT
    dry_run: bool = False

    def __repr__(self) -> str:
        return (
            f"Config(site_url={self.site_url}, gist_id={self.gist_id}, "
            f"gist_filename={self.gist_filename}, dry_run={self.dry_run})"
        )


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure and return the root logger for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to INFO.

    Returns:
        Configured logger instance.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger = logging.getLogger("upi_watcher")
    logger.setLevel(log_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name for the logger, typically the module name.

    Returns:
        Logger instance configured as a child of the main application logger.
    """
    return logging.getLogger(f"upi_watcher.{name}")


def get_env_var(name: str, required: bool = True, default: Optional[str] = None) -> Optional[str]:
    """
    Get an environment variable with optional requirement enforcement.

    Args:
        name: Name of the environment variable.
        required: If True, raises ValueError when variable is not set.
                  Defaults to True.
        default: Default value if variable is not set and not required.

    Returns:
        Value of the environment variable or default.

    Raises:
        ValueError: If required=True and the variable is not set.
    """
    value = os.environ.get(name)

    if value is None or value.strip() == "":
        if required:
            raise ValueError(f"Required environment variable '{name}' is not set")
        return default

    return value.strip()


def get_missing_env_vars(names: List[str]) -> List[str]:
    """Return the names from ``names`` that are unset or blank."""
    return [
        name for name in names
        if not os.environ.get(name) or os.environ[name].strip() == ""
    ]


def _get_number(name: str, default, cast):
    raw = get_env_var(name, required=False)
    if raw is None:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a valid {cast.__name__}, got: {raw}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got: {raw}")
    return value


def is_truthy(value: Optional[str]) -> bool:
    """Interpret an environment flag such as DRY_RUN."""
    return (value or "").strip().lower() in ("true", "1", "yes")


def load_config() -> Config:
    """
    Build the run configuration from environment variables.

    All of SITE_URL, USER_TOKEN, GIST_ID and WEBHOOK_URL must be set;
    the remaining settings fall back to their defaults.

    Returns:
        Populated Config instance.

    Raises:
        ValueError: If a required variable is missing, a numeric setting
                    does not parse, or a URL is malformed.
    """
    missing = get_missing_env_vars(REQUIRED_ENV_VARS)
    if missing:
        raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

    site_url = get_env_var("SITE_URL")
    webhook_url = get_env_var("WEBHOOK_URL")

    for name, url in (("SITE_URL", site_url), ("WEBHOOK_URL", webhook_url)):
        if not validate_url(url):
            raise ValueError(f"{name} is not a valid http(s) URL: {url}")

    return Config(
        site_url=site_url,
        user_token=get_env_var("USER_TOKEN"),
        gist_id=get_env_var("GIST_ID"),
        webhook_url=webhook_url,
        gist_filename=get_env_var("GIST_FILENAME", required=False, default=DEFAULT_GIST_FILENAME),
        fetch_max_retries=_get_number("FETCH_MAX_RETRIES", DEFAULT_FETCH_MAX_RETRIES, int),
        fetch_retry_delay=_get_number("FETCH_RETRY_DELAY", DEFAULT_FETCH_RETRY_DELAY, float),
        notify_delay=_get_number("NOTIFY_DELAY", DEFAULT_NOTIFY_DELAY, float),
        request_timeout=_get_number("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT, int),
        dry_run=is_truthy(os.environ.get("DRY_RUN")),
    )


def validate_url(url: Optional[str]) -> bool:
    """
    Validate that a URL is well-formed and uses HTTP/HTTPS.

    Args:
        url: URL string to validate.

    Returns:
        True if URL is valid, False otherwise.
    """
    if not url:
        return False
    try:
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
    except ValueError:
        return False


def sanitize_text(text: Optional[str]) -> str:
    """
    Clean and normalize text content.

    Removes extra whitespace, newlines, and normalizes spacing.

    Args:
        text: Raw text to sanitize.

    Returns:
        Cleaned text string.
    """
    if not text:
        return ""

    cleaned = re.sub(r"\s+", " ", text)
    return cleaned.strip()
