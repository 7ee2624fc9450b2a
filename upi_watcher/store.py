"""
Store module for the UPI Watcher pipeline.

This module keeps the last-known snapshot in a GitHub Gist. The gist
holds one named file whose content is the canonical JSON document written
by the compare module.

Uses the GitHub REST API. Failures are raised to the caller without
retrying.
"""

import time
from typing import Any, Dict, Optional

import requests

from upi_watcher.utils import (
    DEFAULT_GIST_FILENAME,
    DEFAULT_REQUEST_TIMEOUT,
    WatcherError,
    get_logger,
)


# Module logger
logger = get_logger("store")

# GitHub API configuration
GITHUB_API_BASE = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"

DEFAULT_DESCRIPTION = "Updated PSP Banks list"


class StoreReadError(WatcherError):
    """Raised when the snapshot cannot be read from the gist."""


class StoreWriteError(WatcherError):
    """Raised when the snapshot cannot be written to the gist."""


def create_github_session(token: str) -> requests.Session:
    """
    Create a requests session configured for GitHub API.

    Args:
        token: GitHub personal access token.

    Returns:
        Configured requests.Session instance.
    """
    session = requests.Session()
    session.headers.update({
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
        "User-Agent": "UPIWatcher/1.0"
    })
    return session


def check_rate_limit(response: requests.Response) -> bool:
    """
    Check if response indicates rate limiting.

    Args:
        response: Response object from GitHub API.

    Returns:
        True if the request was rejected because of the rate limit.
    """
    if response.status_code not in (403, 429):
        return False

    if response.headers.get("X-RateLimit-Remaining") == "0":
        return True

    try:
        data = response.json()
    except ValueError:
        return False

    return "rate limit" in str(data.get("message", "")).lower()


def describe_error(response: requests.Response, gist_id: str) -> str:
    """
    Build a readable message for a failed GitHub API response.

    Args:
        response: Response object from GitHub API.
        gist_id: Gist the request was made for.

    Returns:
        Error message naming the most likely cause.
    """
    if check_rate_limit(response):
        reset = response.headers.get("X-RateLimit-Reset")
        if reset and reset.isdigit():
            wait_seconds = max(0, int(reset) - int(time.time()))
            return f"GitHub API rate limit exceeded, resets in {wait_seconds}s"
        return "GitHub API rate limit exceeded"

    if response.status_code == 401:
        return "GitHub authentication failed. Check USER_TOKEN."

    if response.status_code == 403:
        return "GitHub permission denied. Token may lack 'gist' scope."

    if response.status_code == 404:
        return f"Gist {gist_id} not found or not accessible."

    if response.status_code == 422:
        try:
            message = response.json().get("message", "Validation failed")
        except ValueError:
            message = "Validation failed"
        return f"GitHub validation error: {message}"

    return f"GitHub API error: HTTP {response.status_code}"


class GistStore:
    """Snapshot store backed by a single file in a GitHub Gist."""

    def __init__(
        self,
        token: str,
        gist_id: str,
        filename: str = DEFAULT_GIST_FILENAME,
        description: str = DEFAULT_DESCRIPTION,
        session: Optional[requests.Session] = None,
        timeout: int = DEFAULT_REQUEST_TIMEOUT
    ):
        self.gist_id = gist_id
        self.filename = filename
        self.description = description
        self.timeout = timeout
        self.session = session or create_github_session(token)

    def __repr__(self) -> str:
        return f"GistStore(gist_id={self.gist_id}, filename={self.filename})"

    @property
    def url(self) -> str:
        return f"{GITHUB_API_BASE}/gists/{self.gist_id}"

    def _get_gist(self) -> Dict[str, Any]:
        try:
            response = self.session.get(self.url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise StoreReadError(f"Error fetching gist: {e}") from e

        if response.status_code != 200:
            raise StoreReadError(
                describe_error(response, self.gist_id),
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise StoreReadError(f"Gist response is not valid JSON: {e}") from e

    def _get_raw_content(self, raw_url: str) -> str:
        try:
            response = self.session.get(raw_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise StoreReadError(f"Error fetching truncated gist file: {e}") from e
        return response.text

    def read_snapshot(self) -> str:
        """
        Read the stored snapshot document.

        Returns:
            Content of the snapshot file.

        Raises:
            StoreReadError: If the gist or its snapshot file is unavailable.
        """
        logger.debug(f"Reading snapshot from gist {self.gist_id}")

        gist = self._get_gist()
        file_data = (gist.get("files") or {}).get(self.filename)

        if not file_data:
            raise StoreReadError(
                f"Gist {self.gist_id} has no file named '{self.filename}'"
            )

        # GitHub truncates file content above 1 MB in the gist response
        if file_data.get("truncated") and file_data.get("raw_url"):
            logger.debug(f"Snapshot file is truncated, fetching {file_data['raw_url']}")
            content = self._get_raw_content(file_data["raw_url"])
        else:
            content = file_data.get("content")

        if content is None:
            raise StoreReadError(f"Gist file '{self.filename}' has no content")

        logger.info(f"Read snapshot from gist {self.gist_id} ({len(content)} bytes)")
        return content

    def write_snapshot(self, content: str) -> None:
        """
        Replace the stored snapshot document.

        Args:
            content: New content of the snapshot file.

        Raises:
            StoreWriteError: If the update is rejected or the request fails.
        """
        payload = {
            "description": self.description,
            "files": {
                self.filename: {
                    "content": content,
                    "filename": self.filename,
                }
            }
        }

        logger.debug(f"Writing snapshot to gist {self.gist_id} ({len(content)} bytes)")

        try:
            response = self.session.patch(self.url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise StoreWriteError(f"Error updating gist: {e}") from e

        if response.status_code != 200:
            raise StoreWriteError(
                describe_error(response, self.gist_id),
                status_code=response.status_code
            )

        logger.info("Gist updated successfully")

    def close(self) -> None:
        self.session.close()
