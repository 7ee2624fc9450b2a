"""
Notify module for the UPI Watcher pipeline.

This module announces newly listed third-party UPI apps to a
Discord-compatible webhook, one embed message per app. Messages are sent
sequentially with a fixed pause between them to stay under the webhook's
rate limit. The first failed delivery aborts the remaining announcements.
"""

import time
from typing import Any, Callable, Dict, List, Optional

import requests

from upi_watcher.parse import Entry
from upi_watcher.utils import (
    DEFAULT_NOTIFY_DELAY,
    DEFAULT_REQUEST_TIMEOUT,
    WatcherError,
    get_logger,
)


# Module logger
logger = get_logger("notify")

EMBED_TITLE = "New 3rd party UPI app added!"
SECURE_LINK_PREFIX = "https://"
MISSING_VALUE = "Unknown"


class NotifyError(WatcherError):
    """Raised when a webhook message cannot be delivered."""


def format_description(entry: Entry) -> str:
    """
    Format the embed description for a new entry.

    The link line is included only for https links; the link column
    sometimes holds plain text instead of a URL.

    Args:
        entry: Newly listed entry.

    Returns:
        Multi-line markdown description.
    """
    lines = [
        f"Name: **{entry.app_name or MISSING_VALUE}**",
        f"Went live: **{entry.go_live_date or MISSING_VALUE}**",
    ]

    link = entry.reference_link or ""
    if link.startswith(SECURE_LINK_PREFIX):
        lines.append(f"Link: {link}")

    lines.extend(["", "**Partner Bank(s):**"])

    return "\n".join(lines)


def build_payload(entry: Entry) -> Dict[str, Any]:
    """
    Build the webhook payload announcing a new entry.

    Args:
        entry: Newly listed entry.

    Returns:
        JSON-serialisable payload with a single embed, one inline field
        per partner bank.
    """
    return {
        "content": None,
        "embeds": [
            {
                "title": EMBED_TITLE,
                "description": format_description(entry),
                "color": None,
                "fields": [
                    {
                        "name": bank.bank_name or MISSING_VALUE,
                        "value": bank.handle_name or MISSING_VALUE,
                        "inline": True,
                    }
                    for bank in entry.partner_banks
                ],
            }
        ],
    }


def send_webhook(
    session: requests.Session,
    webhook_url: str,
    payload: Dict[str, Any],
    timeout: int = DEFAULT_REQUEST_TIMEOUT
) -> None:
    """
    POST a payload to the webhook.

    Args:
        session: Requests session used for the call.
        webhook_url: Webhook endpoint.
        payload: JSON payload to send.
        timeout: Request timeout in seconds.

    Raises:
        NotifyError: On transport failure or a non-2xx response.
    """
    try:
        response = session.post(webhook_url, json=payload, timeout=timeout)
    except requests.exceptions.Timeout as e:
        raise NotifyError("Webhook request timeout") from e
    except requests.exceptions.RequestException as e:
        raise NotifyError(f"Webhook request failed: {e}") from e

    if 200 <= response.status_code < 300:
        return

    if response.status_code == 429:
        retry_after = response.headers.get("Retry-After", "unknown")
        raise NotifyError(
            f"Webhook rate limited (retry after {retry_after}s)",
            status_code=429
        )

    raise NotifyError(
        f"Webhook returned HTTP {response.status_code}",
        status_code=response.status_code
    )


def announce(
    entry: Entry,
    webhook_url: str,
    session: Optional[requests.Session] = None,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
    dry_run: bool = False
) -> None:
    """
    Announce a single new entry.

    Args:
        entry: Newly listed entry.
        webhook_url: Webhook endpoint.
        session: Optional requests session. A new one is created (and
                 closed afterwards) if not provided.
        timeout: Request timeout in seconds.
        dry_run: If True, log the announcement instead of sending it.

    Raises:
        NotifyError: If delivery fails.
    """
    payload = build_payload(entry)

    if dry_run:
        logger.info(f"[DRY RUN] Would announce #{entry.serial_number} {entry.app_name}")
        logger.debug(f"[DRY RUN] Payload: {payload}")
        return

    owns_session = session is None
    if owns_session:
        session = requests.Session()

    try:
        send_webhook(session, webhook_url, payload, timeout)
        logger.info(f"Announced #{entry.serial_number} {entry.app_name}")
    except NotifyError as e:
        logger.error(f"Failed to announce #{entry.serial_number} {entry.app_name}: {e}")
        raise
    finally:
        if owns_session:
            session.close()


def announce_entries(
    entries: List[Entry],
    webhook_url: str,
    delay: float = DEFAULT_NOTIFY_DELAY,
    sleep: Callable[[float], None] = time.sleep,
    session: Optional[requests.Session] = None,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
    dry_run: bool = False
) -> int:
    """
    Announce new entries one at a time.

    Waits ``delay`` seconds between consecutive messages. The first
    failure propagates and the remaining entries are not announced.

    Args:
        entries: Newly listed entries, in announcement order.
        webhook_url: Webhook endpoint.
        delay: Seconds to wait between messages.
        sleep: Function used to wait between messages.
        session: Optional requests session shared by all messages.
        timeout: Request timeout in seconds per message.
        dry_run: If True, log the announcements instead of sending them.

    Returns:
        Number of entries announced.

    Raises:
        NotifyError: If any delivery fails.
    """
    if not entries:
        logger.info("No new entries to announce")
        return 0

    logger.info(f"Announcing {len(entries)} new entr{'y' if len(entries) == 1 else 'ies'}")

    owns_session = session is None and not dry_run
    if owns_session:
        session = requests.Session()

    sent = 0
    try:
        for i, entry in enumerate(entries):
            if i > 0 and delay > 0 and not dry_run:
                sleep(delay)
            announce(entry, webhook_url, session=session, timeout=timeout, dry_run=dry_run)
            sent += 1
    finally:
        if owns_session:
            session.close()

    return sent
