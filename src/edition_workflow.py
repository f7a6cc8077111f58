"""Batch orchestration: pick users, run each through the edition pipeline, summarize."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from supabase import Client

from config import EditionWorkerConfig
from src import edition_processor, edition_queries
from src.edition_aggregator import (
    ContentStats,
    EpisodeStats,
    RetryStats,
    aggregate_user_processing_results,
)
from src.models import (
    EditionToUpdate,
    ProcessingMetadata,
    ProcessingStatus,
    ProcessingTiming,
    SubjectLineProcessingResult,
    UserProcessingResult,
    UserWithSubscriptions,
)

logger = logging.getLogger(__name__)


@dataclass
class PrepareUsersResult:
    candidates: list[UserWithSubscriptions]
    existing_editions_to_update: list[EditionToUpdate]
    was_last10_mode: bool
    elapsed_ms: float


@dataclass
class LastNModeValidation:
    is_valid: bool
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass
class EditionWorkflowResult:
    total_candidates: int = 0
    processed_users: int = 0
    successful_newsletters: int = 0
    error_count: int = 0
    no_content_count: int = 0
    total_elapsed_ms: float = 0.0
    average_processing_time_ms: float = 0.0
    success_rate: float = 0.0
    average_timing: ProcessingTiming = field(default_factory=ProcessingTiming)
    retry_stats: RetryStats = field(default_factory=RetryStats)
    error_breakdown: dict[str, int] = field(default_factory=dict)
    content_stats: ContentStats = field(default_factory=ContentStats)
    episode_stats: EpisodeStats = field(default_factory=EpisodeStats)
    results: list[UserProcessingResult] = field(default_factory=list)


@dataclass
class SubjectLineWorkflowResult:
    total_editions: int = 0
    successful: int = 0
    failed: int = 0
    total_elapsed_ms: float = 0.0
    results: list[SubjectLineProcessingResult] = field(default_factory=list)


def prepare_users_for_newsletters(client: Client, config: EditionWorkerConfig) -> PrepareUsersResult:
    """Load the users to process and, in last-N mode, the editions to regenerate.

    Read-only: existing edition content is left in place and overwritten by
    the upsert when the edition is regenerated.
    """
    start = time.monotonic()
    candidates = edition_queries.query_users_with_active_subscriptions(client)

    existing: list[EditionToUpdate] = []
    if config.last10_mode:
        existing = edition_queries.query_last_newsletter_editions_for_update(
            client, config.last10_count
        )
        logger.info(
            "Last-N mode: %d of the last %d editions will be regenerated in place",
            len(existing), config.last10_count,
        )

    return PrepareUsersResult(
        candidates=candidates,
        existing_editions_to_update=existing,
        was_last10_mode=config.last10_mode,
        elapsed_ms=(time.monotonic() - start) * 1000,
    )


def validate_last_n_mode(prep: PrepareUsersResult, config: EditionWorkerConfig) -> LastNModeValidation:
    """Sanity checks for a last-N run. Always valid outside last-N mode."""
    if not config.last10_mode:
        return LastNModeValidation(is_valid=True)

    validation = LastNModeValidation(is_valid=bool(prep.existing_editions_to_update))

    if not prep.existing_editions_to_update:
        validation.warnings.append("Last-N mode is active but no existing editions were found")
        validation.recommendations.append("Run the worker in normal mode first to create editions")
    elif len(prep.existing_editions_to_update) < config.last10_count:
        validation.warnings.append(
            f"Last-N mode is active but only {len(prep.existing_editions_to_update)} of "
            f"{config.last10_count} editions found - limited test coverage"
        )
        validation.recommendations.append("Consider generating more editions for better test coverage")

    if not prep.candidates:
        validation.warnings.append("Last-N mode is active but no users with active subscriptions found")
        validation.recommendations.append("Ensure there are users with active podcast subscriptions")

    return validation


def log_last_n_mode_summary(prep: PrepareUsersResult, validation: LastNModeValidation) -> None:
    logger.info(
        "Last-N mode summary: %d candidates, %d editions to update, valid=%s",
        len(prep.candidates), len(prep.existing_editions_to_update), validation.is_valid,
    )
    for warning in validation.warnings:
        logger.warning("Last-N mode: %s", warning)
    for recommendation in validation.recommendations:
        logger.info("Last-N mode recommendation: %s", recommendation)


def _pseudo_user(edition: EditionToUpdate) -> UserWithSubscriptions:
    """A user stand-in for regenerating an existing edition. Needs no subscriptions."""
    return UserWithSubscriptions(id=edition.user_id, email=edition.user_email, subscriptions=[])


def _crash_result(user: UserWithSubscriptions, error: Exception, started: float) -> UserProcessingResult:
    return UserProcessingResult(
        user_id=user.id,
        user_email=user.email,
        status=ProcessingStatus.ERROR,
        elapsed_ms=(time.monotonic() - started) * 1000,
        timing=ProcessingTiming(),
        metadata=ProcessingMetadata(subscribed_shows_count=len(user.subscriptions)),
        error=f"Unexpected error processing user: {error}",
    )


def execute_edition_workflow(
    client: Client,
    config: EditionWorkerConfig,
    now_override: datetime | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> EditionWorkflowResult:
    """Run the edition pipeline for every candidate and aggregate the results.

    Normal mode processes every user with active subscriptions. Last-N mode
    processes one pseudo-user per existing edition and stops once
    ``config.last10_count`` editions were regenerated. Users are processed
    one at a time with ``config.inter_user_delay_seconds`` between them.

    Raises:
        DatabaseError: If the candidate queries fail.
    """
    start = time.monotonic()
    logger.info(
        "Starting newsletter edition workflow (mode=%s, lookback=%dh)",
        config.mode, config.lookback_hours,
    )

    prep = prepare_users_for_newsletters(client, config)

    if config.last10_mode:
        log_last_n_mode_summary(prep, validate_last_n_mode(prep, config))

    if not prep.candidates and not config.last10_mode:
        logger.info("No users with active subscriptions; nothing to do")
        return EditionWorkflowResult(total_elapsed_ms=(time.monotonic() - start) * 1000)

    if config.last10_mode:
        users = [_pseudo_user(e) for e in prep.existing_editions_to_update]
    else:
        users = prep.candidates

    results: list[UserProcessingResult] = []
    successes = 0

    for i, user in enumerate(users):
        existing = [prep.existing_editions_to_update[i]] if config.last10_mode else None
        user_start = time.monotonic()
        try:
            result = edition_processor.process_user_for_newsletter(
                client, user, config, now_override, existing
            )
        except Exception as e:
            logger.exception("Unexpected error processing user %s", user.email)
            result = _crash_result(user, e, user_start)

        results.append(result)
        logger.info(
            "[%d/%d] %s: %s in %.0fms",
            i + 1, len(users), user.email, result.status, result.elapsed_ms,
        )

        if result.status == ProcessingStatus.DONE:
            successes += 1
        if config.last10_mode and successes >= config.last10_count:
            logger.info("Last-N mode: regenerated %d editions, stopping", successes)
            break

        if i < len(users) - 1 and config.pacing_enabled:
            logger.debug("Waiting %.1fs before next user", config.inter_user_delay_seconds)
            sleep(config.inter_user_delay_seconds)

    stats = aggregate_user_processing_results(results)
    workflow_result = EditionWorkflowResult(
        total_candidates=len(users),
        processed_users=stats.total_users,
        successful_newsletters=stats.successful_newsletters,
        error_count=stats.error_count,
        no_content_count=stats.no_content_count,
        total_elapsed_ms=(time.monotonic() - start) * 1000,
        average_processing_time_ms=stats.average_processing_time_ms,
        success_rate=stats.success_rate,
        average_timing=stats.average_timing,
        retry_stats=stats.retry_stats,
        error_breakdown=stats.error_breakdown,
        content_stats=stats.content_stats,
        episode_stats=stats.episode_stats,
        results=results,
    )

    logger.info(
        "Workflow complete: %d/%d succeeded (%.1f%%), %d errors, %d without content in %.1fs",
        workflow_result.successful_newsletters, workflow_result.processed_users,
        workflow_result.success_rate, workflow_result.error_count,
        workflow_result.no_content_count, workflow_result.total_elapsed_ms / 1000,
    )
    if workflow_result.error_breakdown:
        logger.info("Error breakdown: %s", workflow_result.error_breakdown)
    return workflow_result


def execute_subject_line_test_workflow(
    client: Client,
    config: EditionWorkerConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> SubjectLineWorkflowResult:
    """Regenerate subject lines for the most recent generated editions."""
    start = time.monotonic()
    editions = edition_queries.query_newsletter_editions_for_subject_line_test(
        client, config.subj_line_test_count
    )
    logger.info("Subject line test: %d editions to process", len(editions))

    results: list[SubjectLineProcessingResult] = []
    for i, edition in enumerate(editions):
        results.append(edition_processor.process_edition_for_subject_line_only(client, edition))
        if i < len(editions) - 1 and config.pacing_enabled:
            sleep(config.inter_user_delay_seconds)

    successful = sum(1 for r in results if r.success)
    workflow_result = SubjectLineWorkflowResult(
        total_editions=len(editions),
        successful=successful,
        failed=len(results) - successful,
        total_elapsed_ms=(time.monotonic() - start) * 1000,
        results=results,
    )
    logger.info(
        "Subject line test complete: %d succeeded, %d failed",
        workflow_result.successful, workflow_result.failed,
    )
    return workflow_result
