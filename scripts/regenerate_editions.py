#!/usr/bin/env python3
"""Regenerate the most recent newsletter editions, or just their subject lines.

Usage:
    python scripts/regenerate_editions.py                  # last 3 editions
    python scripts/regenerate_editions.py --count 5
    python scripts/regenerate_editions.py --subject-lines 10
"""

import argparse
import dataclasses
import logging
import sys
from pathlib import Path

# Ensure project root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import LAST_N_EDITION_COUNT, config_summary, load_edition_worker_config, settings
from src import database, edition_workflow
from src.exceptions import NewsletterError

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger("regenerate_editions")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Regenerate recent newsletter editions in place.")
    parser.add_argument(
        "--count", type=int, default=LAST_N_EDITION_COUNT,
        help=f"Number of most recent editions to regenerate, 1-10 (default: {LAST_N_EDITION_COUNT})",
    )
    parser.add_argument(
        "--subject-lines", type=int, metavar="N",
        help="Only regenerate subject lines for the N most recent generated editions (1-100)",
    )
    parser.add_argument(
        "--no-delay", action="store_true",
        help="Skip the pause between editions",
    )
    args = parser.parse_args(argv)

    # Same ranges as EDITION_WORKER_L10_COUNT and SUBJ_LINE_TEST_COUNT
    if not 1 <= args.count <= 10:
        parser.error("--count must be between 1 and 10")
    if args.subject_lines is not None and not 1 <= args.subject_lines <= 100:
        parser.error("--subject-lines must be between 1 and 100")
    return args


def main():
    args = parse_args()

    try:
        config = load_edition_worker_config()
    except NewsletterError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    if args.subject_lines:
        config = dataclasses.replace(
            config, last10_mode=False, subj_line_test=True, subj_line_test_count=args.subject_lines
        )
    else:
        config = dataclasses.replace(
            config, last10_mode=True, subj_line_test=False, last10_count=args.count
        )
    if args.no_delay:
        config = dataclasses.replace(config, inter_user_delay_seconds=0.0)

    logger.info("Configuration: %s", config_summary(config))

    try:
        client = database.create_supabase_client(settings)
        if config.subj_line_test:
            result = edition_workflow.execute_subject_line_test_workflow(client, config)
            for r in result.results:
                status = "OK " if r.success else "ERR"
                logger.info("  %s %s %s: %s", status, r.edition_id, r.user_email, r.subject_line or r.error)
            logger.info("Done: %d/%d subject lines updated", result.successful, result.total_editions)
        else:
            result = edition_workflow.execute_edition_workflow(client, config)
            for r in result.results:
                logger.info("  %s %s: %s", r.user_email, r.status, r.newsletter_edition_id or r.error)
            logger.info(
                "Done: %d/%d editions regenerated", result.successful_newsletters, result.processed_users
            )
    except NewsletterError as e:
        logger.error("Regeneration failed: %s", e)
        sys.exit(2)


if __name__ == "__main__":
    main()
