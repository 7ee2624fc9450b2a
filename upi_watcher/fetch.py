"""
Fetch module for the UPI Watcher pipeline.

This module handles fetching the TPAP listing page with proper error
handling and a bounded number of retries at a fixed delay, driven by
tenacity.
"""

import time
from typing import Callable, Optional

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from upi_watcher.utils import (
    DEFAULT_FETCH_MAX_RETRIES,
    DEFAULT_FETCH_RETRY_DELAY,
    DEFAULT_REQUEST_TIMEOUT,
    WatcherError,
    get_logger,
    validate_url,
)


# Module logger
logger = get_logger("fetch")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class FetchError(WatcherError):
    """Raised when the page cannot be fetched after all retries."""


# Failures that count against the retry budget
RETRYABLE_ERRORS = (requests.exceptions.RequestException, ValueError)


def create_session(user_agent: str = DEFAULT_USER_AGENT) -> requests.Session:
    """
    Create a requests session with browser-like default headers.

    Args:
        user_agent: User-Agent header sent with every request.

    Returns:
        Configured requests.Session instance.
    """
    session = requests.Session()

    session.headers.update({
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
    })

    return session


def fetch_once(url: str, session: requests.Session, timeout: int = DEFAULT_REQUEST_TIMEOUT) -> str:
    """
    Perform a single GET request and return the response body.

    Args:
        url: URL to fetch.
        session: Configured requests session.
        timeout: Request timeout in seconds.

    Returns:
        The response body as text.

    Raises:
        requests.exceptions.RequestException: On transport failure or a
            non-2xx status.
        ValueError: If the response body is empty.
    """
    response = session.get(url, timeout=timeout)
    response.raise_for_status()

    if not response.text or not response.text.strip():
        raise ValueError("No HTML content received")

    logger.info(f"Successfully fetched {url} ({len(response.text)} bytes)")
    return response.text


def fetch_page(
    url: str,
    session: Optional[requests.Session] = None,
    max_retries: int = DEFAULT_FETCH_MAX_RETRIES,
    retry_delay: float = DEFAULT_FETCH_RETRY_DELAY,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
    sleep: Callable[[float], None] = time.sleep
) -> str:
    """
    Fetch the listing page, retrying on any transport failure.

    Makes one initial attempt plus up to ``max_retries`` retries, waiting
    ``retry_delay`` seconds between attempts.

    Args:
        url: URL of the listing page.
        session: Optional requests session. A new one is created (and
                 closed afterwards) if not provided.
        max_retries: Number of retries after the first failed attempt.
        retry_delay: Seconds to wait between attempts.
        timeout: Request timeout in seconds per attempt.
        sleep: Function used to wait between attempts.

    Returns:
        The raw page content.

    Raises:
        FetchError: If the URL is invalid or every attempt failed.
    """
    if not validate_url(url):
        raise FetchError(f"Invalid URL format: {url}")

    total_attempts = max_retries + 1

    def log_retry(retry_state: RetryCallState) -> None:
        retries_left = total_attempts - retry_state.attempt_number
        error = retry_state.outcome.exception()
        logger.warning(f"Fetch of {url} failed ({error}). Retrying... {retries_left} attempts left")

    def pause(seconds: float) -> None:
        if seconds > 0:
            sleep(seconds)

    retrying = Retrying(
        stop=stop_after_attempt(total_attempts),
        wait=wait_fixed(retry_delay),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=log_retry,
        sleep=pause,
        reraise=True
    )

    owns_session = session is None
    if owns_session:
        session = create_session()

    try:
        return retrying(fetch_once, url, session, timeout)
    except RETRYABLE_ERRORS as e:
        status_code = getattr(getattr(e, "response", None), "status_code", None)
        logger.error(f"Giving up on {url}: {e}")
        raise FetchError(
            f"Failed to fetch page after multiple attempts: {e}",
            status_code=status_code
        ) from e
    finally:
        if owns_session:
            session.close()
