#!/usr/bin/env python3
"""
Main orchestration module for the UPI Watcher pipeline.

This module coordinates the complete pipeline:
fetch → extract → parse → compare → notify → store

It handles configuration loading, logging setup, and error handling
for the entire workflow. New entries are announced before the snapshot
is written, so a failure between the two re-announces them on the next
run instead of dropping them.
"""

import os
import sys
import time
from typing import Callable, Optional

import requests
from dotenv import load_dotenv

from upi_watcher.compare import compare_snapshot
from upi_watcher.fetch import create_session, fetch_page
from upi_watcher.notify import announce_entries
from upi_watcher.parse import extract_table, parse_table
from upi_watcher.store import GistStore
from upi_watcher.utils import Config, WatcherError, get_logger, load_config, setup_logging


# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ENV_ERROR = 2


def run_pipeline(
    config: Config,
    session: Optional[requests.Session] = None,
    store: Optional[GistStore] = None,
    sleep: Callable[[float], None] = time.sleep
) -> int:
    """
    Execute the complete UPI watcher pipeline.

    Pipeline stages:
    1. Fetch the listing page
    2. Extract the data table
    3. Parse table rows into entries
    4. Read the stored snapshot and compare
    5. Announce new entries
    6. Write the updated snapshot

    Stages 5 and 6 only run when the table content changed.

    Args:
        config: Run configuration.
        session: Optional requests session for the page fetch.
        store: Optional snapshot store. Built from ``config`` if not provided.
        sleep: Function used for retry and rate-limit pauses.

    Returns:
        Exit code (0 for success).

    Raises:
        WatcherError: If any stage fails. Nothing is retried except the
                      page fetch.
    """
    logger = get_logger("main")

    logger.info("=" * 60)
    logger.info("UPI Watcher Pipeline - Starting")
    logger.info("=" * 60)

    owns_session = session is None
    if owns_session:
        session = create_session()
    owns_store = store is None
    if owns_store:
        store = GistStore(
            token=config.user_token,
            gist_id=config.gist_id,
            filename=config.gist_filename,
            timeout=config.request_timeout
        )

    try:
        logger.info("[Stage 1/6] Fetching listing page...")
        html = fetch_page(
            config.site_url,
            session=session,
            max_retries=config.fetch_max_retries,
            retry_delay=config.fetch_retry_delay,
            timeout=config.request_timeout,
            sleep=sleep
        )

        logger.info("[Stage 2/6] Extracting table...")
        markup = extract_table(html)

        logger.info("[Stage 3/6] Parsing table rows...")
        entries = parse_table(markup)

        logger.info("[Stage 4/6] Comparing with stored snapshot...")
        previous_raw = store.read_snapshot()
        comparison = compare_snapshot(entries, previous_raw)

        if not comparison.changed:
            logger.info("Snapshot is up to date, nothing to announce or store")
            return EXIT_SUCCESS

        logger.info("[Stage 5/6] Announcing new entries...")
        announced = announce_entries(
            comparison.new_entries,
            config.webhook_url,
            delay=config.notify_delay,
            sleep=sleep,
            timeout=config.request_timeout,
            dry_run=config.dry_run
        )

        logger.info("[Stage 6/6] Writing updated snapshot...")
        if config.dry_run:
            logger.info("[DRY RUN] Snapshot write skipped")
        else:
            store.write_snapshot(comparison.serialized)

    finally:
        if owns_session:
            session.close()
        if owns_store:
            store.close()

    logger.info("=" * 60)
    logger.info("UPI Watcher Pipeline - Complete")
    logger.info(f"Summary: {len(entries)} total, {announced} announced")
    logger.info("=" * 60)

    return EXIT_SUCCESS


def main() -> int:
    """
    Main entry point for the UPI Watcher pipeline.

    Loads a .env file if present, sets up logging and runs the pipeline
    once with proper error handling.

    Returns:
        Exit code for the process.
    """
    load_dotenv()

    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    setup_logging(log_level)
    logger = get_logger("main")

    try:
        config = load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_ENV_ERROR

    if config.dry_run:
        logger.info("Running in DRY RUN mode - notifications and snapshot write will be skipped")

    try:
        exit_code = run_pipeline(config)
        logger.info("Program ran successfully")
        return exit_code

    except WatcherError as e:
        logger.error(f"An error occurred while running the pipeline: {e}")
        return EXIT_FAILURE

    except KeyboardInterrupt:
        logger.warning("Pipeline interrupted by user")
        return EXIT_FAILURE

    except Exception as e:
        logger.exception(f"Unexpected error in pipeline: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
