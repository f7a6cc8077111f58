"""Read queries feeding the edition worker: users, episode notes, editions to redo."""

import logging
from datetime import UTC, datetime, timedelta

from postgrest.exceptions import APIError
from supabase import Client

from src.exceptions import DatabaseError, EpisodeNotesQueryError
from src.models import (
    EditionForSubjectLine,
    EditionToUpdate,
    EpisodeInfo,
    EpisodeNoteWithEpisode,
    PodcastShow,
    Subscription,
    UserWithSubscriptions,
)

logger = logging.getLogger(__name__)

SHOW_COLUMNS = "id, title, rss_url, spotify_url"


def utc_now(now_override: datetime | None = None) -> datetime:
    """The override (or the current time) as an aware UTC datetime. Naive values are taken as UTC."""
    now = now_override or datetime.now(UTC)
    if now.tzinfo is None:
        return now.replace(tzinfo=UTC)
    return now.astimezone(UTC)


def _one(join: dict | list | None) -> dict | None:
    """PostgREST returns embedded to-one relations as a dict or a one-item list."""
    if isinstance(join, list):
        return join[0] if join else None
    return join


def _show_from_join(join: dict | list | None) -> PodcastShow | None:
    row = _one(join)
    if not row:
        return None
    return PodcastShow(
        id=row["id"],
        title=row.get("title") or "",
        rss_url=row.get("rss_url") or "",
        spotify_url=row.get("spotify_url") or "",
    )


def query_users_with_active_subscriptions(client: Client) -> list[UserWithSubscriptions]:
    """All users with at least one active, non-deleted subscription, ordered by id."""
    try:
        result = (
            client.table("users")
            .select(
                "id, email, "
                "user_podcast_subscriptions!inner (id, show_id, status, "
                f"podcast_shows!inner ({SHOW_COLUMNS}))"
            )
            .eq("user_podcast_subscriptions.status", "active")
            .is_("user_podcast_subscriptions.deleted_at", "null")
            .order("id")
            .execute()
        )
    except APIError as e:
        raise DatabaseError(f"Failed to query users with subscriptions: {e.message}") from e

    users = []
    for row in result.data or []:
        subs_join = row.get("user_podcast_subscriptions") or []
        if isinstance(subs_join, dict):
            subs_join = [subs_join]
        subscriptions = [
            Subscription(
                id=sub["id"],
                show_id=sub["show_id"],
                status=sub["status"],
                podcast_shows=_show_from_join(sub.get("podcast_shows")),
            )
            for sub in subs_join
        ]
        users.append(UserWithSubscriptions(
            id=row["id"],
            email=row.get("email") or "",
            subscriptions=subscriptions,
        ))

    logger.info("Found %d users with active subscriptions", len(users))
    return users


def query_episode_notes_for_user(
    client: Client,
    user_id: str,
    lookback_hours: int,
    now_override: datetime | None = None,
) -> list[EpisodeNoteWithEpisode]:
    """Finished episode notes from the user's subscribed shows, newest first.

    Only notes created within ``lookback_hours`` of ``now_override`` (or the
    current time) are returned.

    Raises:
        EpisodeNotesQueryError: If either lookup fails.
    """
    try:
        subs = (
            client.table("user_podcast_subscriptions")
            .select("show_id")
            .eq("user_id", user_id)
            .eq("status", "active")
            .is_("deleted_at", "null")
            .execute()
        )
    except APIError as e:
        raise EpisodeNotesQueryError(f"Failed to query user subscriptions: {e.message}") from e

    show_ids = [row["show_id"] for row in subs.data or []]
    if not show_ids:
        logger.debug("User %s has no active subscriptions", user_id)
        return []

    now = utc_now(now_override)
    cutoff = (now - timedelta(hours=lookback_hours)).isoformat()

    try:
        result = (
            client.table("episode_transcript_notes")
            .select(
                "id, episode_id, notes, status, created_at, "
                "podcast_episodes!inner (id, show_id, title, description, pub_date, "
                f"podcast_shows!inner ({SHOW_COLUMNS}))"
            )
            .in_("podcast_episodes.show_id", show_ids)
            .gte("created_at", cutoff)
            .eq("status", "done")
            .is_("deleted_at", "null")
            .order("created_at", desc=True)
            .execute()
        )
    except APIError as e:
        raise EpisodeNotesQueryError(f"Failed to query episode notes: {e.message}") from e

    notes = []
    for row in result.data or []:
        ep = _one(row.get("podcast_episodes"))
        episode = None
        if ep:
            episode = EpisodeInfo(
                id=ep["id"],
                show_id=ep["show_id"],
                title=ep.get("title") or "",
                description=ep.get("description") or "",
                pub_date=ep.get("pub_date"),
                podcast_shows=_show_from_join(ep.get("podcast_shows")),
            )
        notes.append(EpisodeNoteWithEpisode(
            id=row["id"],
            episode_id=row["episode_id"],
            notes=row.get("notes") or "",
            status=row.get("status") or "done",
            created_at=row.get("created_at") or "",
            episode=episode,
        ))

    logger.debug(
        "Found %d episode notes for user %s across %d shows since %s",
        len(notes), user_id, len(show_ids), cutoff,
    )
    return notes


def query_last_newsletter_editions_for_update(client: Client, count: int) -> list[EditionToUpdate]:
    """The ``count`` most recently created editions, for regeneration."""
    try:
        result = (
            client.table("newsletter_editions")
            .select("id, user_id, edition_date, user_email")
            .order("created_at", desc=True)
            .limit(count)
            .execute()
        )
    except APIError as e:
        raise DatabaseError(f"Failed to query last newsletter editions: {e.message}") from e

    return [
        EditionToUpdate(
            id=row["id"],
            user_id=row["user_id"],
            edition_date=row["edition_date"],
            user_email=row.get("user_email") or "",
        )
        for row in result.data or []
    ]


def query_newsletter_editions_for_subject_line_test(
    client: Client, count: int
) -> list[EditionForSubjectLine]:
    """Recent ``generated`` editions that have content."""
    try:
        result = (
            client.table("newsletter_editions")
            .select("id, user_id, edition_date, user_email, content, subject_line")
            .not_.is_("content", "null")
            .eq("status", "generated")
            .order("created_at", desc=True)
            .limit(count)
            .execute()
        )
    except APIError as e:
        raise DatabaseError(f"Failed to query editions for subject line test: {e.message}") from e

    return [
        EditionForSubjectLine(
            id=row["id"],
            user_id=row["user_id"],
            edition_date=row["edition_date"],
            user_email=row.get("user_email") or "",
            content=row["content"],
            subject_line=row.get("subject_line"),
        )
        for row in result.data or []
    ]
