"""Edition worker entry point: generate today's newsletter editions."""

import logging
import sys

from config import config_summary, load_edition_worker_config, settings
from src import database, edition_workflow
from src.exceptions import ConfigError, DatabaseError, NewsletterError

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_DATABASE_ERROR = 2
EXIT_UNEXPECTED_ERROR = 3


def run_edition_worker() -> None:
    """Run one pass of the edition worker.

    Steps:
        1. Load and validate the worker configuration
        2. Connect to Supabase
        3. Run the subject line test, or generate editions (normal or last-N mode)
    """
    if not settings.edition_worker_enabled:
        logger.info("Edition worker disabled (EDITION_WORKER_ENABLED=false). Skipping.")
        return

    config = load_edition_worker_config()
    logger.info("Edition worker configuration: %s", config_summary(config))

    client = database.create_supabase_client(settings)

    if config.subj_line_test:
        result = edition_workflow.execute_subject_line_test_workflow(client, config)
        logger.info(
            "Subject line test finished: %d/%d editions updated",
            result.successful, result.total_editions,
        )
        return

    result = edition_workflow.execute_edition_workflow(client, config)
    logger.info(
        "Edition worker finished: %d generated, %d errors, %d without content (%.1f%% success)",
        result.successful_newsletters, result.error_count,
        result.no_content_count, result.success_rate,
    )


def main() -> None:
    """Entry point. Exit code 1 for configuration, 2 for database, 3 for anything else."""
    try:
        run_edition_worker()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(EXIT_CONFIG_ERROR)
    except DatabaseError as e:
        logger.error("Database error: %s", e)
        sys.exit(EXIT_DATABASE_ERROR)
    except NewsletterError as e:
        logger.error("Edition worker failed: %s", e)
        sys.exit(EXIT_UNEXPECTED_ERROR)
    except KeyboardInterrupt:
        logger.info("Edition worker interrupted.")
        sys.exit(EXIT_OK)
    except Exception:
        logger.exception("Unexpected error in edition worker")
        sys.exit(EXIT_UNEXPECTED_ERROR)


if __name__ == "__main__":
    main()
