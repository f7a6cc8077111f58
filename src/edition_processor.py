"""Per-user newsletter edition pipeline.

Each user runs through four phases in order: query episode notes, generate the
newsletter (with retry), persist the edition and its episode links, report.
Every failure becomes an ``error`` result; nothing raises out of
``process_user_for_newsletter``.
"""

import logging
import time
from dataclasses import replace
from datetime import datetime

from supabase import Client

from config import EditionWorkerConfig
from src import database, edition_queries, llm_client
from src.exceptions import DatabaseError, EditionValidationError
from src.models import (
    EditionForSubjectLine,
    EditionStatus,
    EditionToUpdate,
    EpisodeMetadata,
    NewsletterGenerationResult,
    ProcessingMetadata,
    ProcessingStatus,
    ProcessingTiming,
    RetryInfo,
    SubjectLineProcessingResult,
    UserProcessingResult,
    UserWithSubscriptions,
)
from src.prompt_builder import count_words, sanitize_newsletter_content
from src.retry import DEFAULT_NEWSLETTER_RETRY_OPTIONS, RetryOptions, retry_with_backoff

logger = logging.getLogger(__name__)


def _ms_since(start: float) -> float:
    return (time.monotonic() - start) * 1000


def _episode_metadata(note) -> EpisodeMetadata:
    show = note.episode.podcast_shows if note.episode else None
    return EpisodeMetadata(
        show_title=(show.title if show else "") or "Unknown Show",
        spotify_url=(show.spotify_url if show else "") or "",
    )


def _generate_subject_line(html: str, user_email: str) -> str | None:
    """Best-effort subject line. Returns None on any failure."""
    try:
        result = llm_client.generate_newsletter_subject_line(html)
    except Exception as e:
        logger.warning("Subject line generation raised for %s: %s", user_email, e)
        return None

    if not result.success:
        logger.warning("Subject line generation failed for %s: %s", user_email, result.error)
        return None

    logger.info("Subject line for %s (%d words): %s", user_email, result.word_count, result.subject_line)
    return result.subject_line


def _find_existing_edition(
    user_id: str,
    config: EditionWorkerConfig,
    existing_editions: list[EditionToUpdate] | None,
) -> EditionToUpdate | None:
    if not config.last10_mode or not existing_editions:
        return None
    return next((e for e in existing_editions if e.user_id == user_id), None)


def process_user_for_newsletter(
    client: Client,
    user: UserWithSubscriptions,
    config: EditionWorkerConfig,
    now_override: datetime | None = None,
    existing_editions_to_update: list[EditionToUpdate] | None = None,
    retry_options: RetryOptions = DEFAULT_NEWSLETTER_RETRY_OPTIONS,
) -> UserProcessingResult:
    """Generate and store one user's newsletter edition.

    Args:
        client: Supabase client.
        user: The user and their subscriptions.
        config: Worker configuration (lookback window, last-N mode, prompt).
        now_override: Fixed "now" for the lookback window and edition date.
        existing_editions_to_update: In last-N mode, editions to overwrite in
            place. A match on ``user_id`` reuses that edition's id and date
            and skips re-linking episodes.
        retry_options: Backoff for the generation call.

    Returns:
        UserProcessingResult with status ``done``, ``no_content_found`` or
        ``error``. Timing for phases never reached stays at zero.
    """
    start = time.monotonic()
    timing = ProcessingTiming()
    metadata = ProcessingMetadata(subscribed_shows_count=len(user.subscriptions))

    def finish(status: ProcessingStatus, **fields) -> UserProcessingResult:
        return UserProcessingResult(
            user_id=user.id,
            user_email=user.email,
            status=status,
            elapsed_ms=_ms_since(start),
            timing=timing,
            metadata=metadata,
            **fields,
        )

    logger.info(
        "Processing user %s (%d subscriptions, %dh lookback)",
        user.email, len(user.subscriptions), config.lookback_hours,
    )

    try:
        # Phase 1: episode notes
        query_start = time.monotonic()
        try:
            notes = edition_queries.query_episode_notes_for_user(
                client, user.id, config.lookback_hours, now_override
            )
        except Exception as e:
            timing.query_ms = _ms_since(query_start)
            error = f"Failed to query episode notes: {e}"
            logger.error("User %s: %s", user.email, error)
            return finish(ProcessingStatus.ERROR, error=error)
        timing.query_ms = _ms_since(query_start)

        if not notes:
            logger.info(
                "No episode notes for %s in the last %dh", user.email, config.lookback_hours
            )
            return finish(ProcessingStatus.NO_CONTENT_FOUND)

        notes_texts = [n.notes for n in notes]
        episode_metadata = [_episode_metadata(n) for n in notes]
        total_words = sum(count_words(t) for t in notes_texts)
        metadata.episode_notes_count = len(notes)
        metadata.total_word_count = total_words
        metadata.average_word_count = total_words / len(notes)

        # Phase 2: generation
        edition_date = edition_queries.utc_now(now_override).date().isoformat()

        def generate() -> NewsletterGenerationResult:
            result = llm_client.generate_newsletter_edition(
                notes_texts,
                user.email,
                edition_date,
                episode_metadata,
                None,
                config.prompt_path,
            )
            if result.success and not result.sanitized_content:
                return replace(result, success=False, error="No HTML content found in generation result")
            return result

        generation_start = time.monotonic()
        retry = retry_with_backoff(
            generate,
            retry_options,
            context=f"newsletter generation for user {user.email}",
        )
        retry_info = RetryInfo(
            attempts_used=retry.attempts_used,
            total_retry_time_ms=retry.total_elapsed_ms,
            was_retried=retry.was_retried,
        )

        if not retry.succeeded:
            timing.generation_ms = _ms_since(generation_start)
            error = f"Newsletter generation failed: {retry.error}"
            logger.error(
                "User %s: %s (%d attempts)", user.email, error, retry.attempts_used
            )
            return finish(ProcessingStatus.ERROR, error=error, retry_info=retry_info)

        generation = retry.value
        content = generation.sanitized_content
        timing.generation_ms = _ms_since(generation_start)
        subject_line = _generate_subject_line(generation.html_content or content, user.email)
        logger.info(
            "Generated %d chars for %s using %s (attempts: %d)",
            len(content), user.email, generation.model, retry.attempts_used,
        )

        # Phase 3: persistence
        database_start = time.monotonic()
        existing = _find_existing_edition(user.id, config, existing_editions_to_update)
        target_date = existing.edition_date if existing else edition_date
        episode_ids = [n.episode_id for n in notes]
        try:
            edition = database.upsert_newsletter_edition(
                client,
                user_id=user.id,
                edition_date=target_date,
                status=EditionStatus.GENERATED,
                content=content,
                model=generation.model,
                error_message=None,
                subject_line=subject_line,
                edition_id=existing.id if existing else None,
            )
            if edition is None:
                raise DatabaseError("upsert_newsletter_edition returned no row")

            if existing:
                logger.info(
                    "Updated existing edition %s (%s) for %s, keeping its episode links",
                    edition.id, target_date, user.email,
                )
                episode_count = len(set(episode_ids))
            else:
                links = database.insert_newsletter_edition_episodes(client, edition.id, episode_ids)
                if links is None:
                    logger.error(
                        "Edition %s saved for %s but its episode links were not written",
                        edition.id, user.email,
                    )
                    raise DatabaseError("insert_newsletter_edition_episodes returned no rows")
                episode_count = len(links)
        except EditionValidationError as e:
            timing.database_ms = _ms_since(database_start)
            error = f"Edition validation failed: {e}"
            logger.error("User %s: %s", user.email, error)
            return finish(ProcessingStatus.ERROR, error=error, retry_info=retry_info)
        except DatabaseError as e:
            timing.database_ms = _ms_since(database_start)
            error = f"Database save failed: {e}"
            logger.error("User %s: %s", user.email, error)
            return finish(ProcessingStatus.ERROR, error=error, retry_info=retry_info)
        timing.database_ms = _ms_since(database_start)

        # Phase 4: done
        result = finish(
            ProcessingStatus.DONE,
            newsletter_content=content,
            newsletter_edition_id=edition.id,
            episode_ids=episode_ids,
            subject_line=subject_line,
            retry_info=retry_info,
            html_content=content,
            sanitized_content=sanitize_newsletter_content(content),
            episode_count=episode_count,
        )
        logger.info(
            "User %s done in %.0fms: edition %s, %d episodes",
            user.email, result.elapsed_ms, edition.id, episode_count,
        )
        return result

    except Exception as e:
        error = f"Unexpected error processing user: {e}"
        logger.exception("User %s: %s", user.email, error)
        return finish(ProcessingStatus.ERROR, error=error)


def process_edition_for_subject_line_only(
    client: Client, edition: EditionForSubjectLine
) -> SubjectLineProcessingResult:
    """Regenerate and overwrite the subject line of a stored edition."""
    start = time.monotonic()

    def finish(success: bool, **fields) -> SubjectLineProcessingResult:
        return SubjectLineProcessingResult(
            edition_id=edition.id,
            user_id=edition.user_id,
            user_email=edition.user_email,
            success=success,
            elapsed_ms=_ms_since(start),
            previous_subject_line=edition.subject_line,
            **fields,
        )

    try:
        result = llm_client.generate_newsletter_subject_line(edition.content)
        if not result.success:
            logger.warning("Subject line failed for edition %s: %s", edition.id, result.error)
            return finish(False, error=result.error or "Subject line generation failed")

        database.update_subject_line(client, edition.id, result.subject_line)
    except (DatabaseError, EditionValidationError) as e:
        logger.error("Failed to save subject line for edition %s: %s", edition.id, e)
        return finish(False, error=f"Database save failed: {e}")
    except Exception as e:
        logger.exception("Unexpected error regenerating subject line for edition %s", edition.id)
        return finish(False, error=f"Unexpected error processing edition: {e}")

    logger.info(
        "Edition %s (%s): %r -> %r",
        edition.id, edition.user_email, edition.subject_line, result.subject_line,
    )
    return finish(True, subject_line=result.subject_line)
