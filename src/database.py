"""Supabase access for newsletter editions and their episode links.

Every helper takes the Supabase client as its first argument. PostgREST
failures are raised as DatabaseError, malformed ids or dates as
EditionValidationError.
"""

import logging
import re
import uuid
from datetime import UTC, datetime

from postgrest.exceptions import APIError
from supabase import Client, create_client

from config import Settings
from src.exceptions import ConfigError, DatabaseError, EditionValidationError
from src.models import NewsletterEdition, NewsletterEditionEpisode

logger = logging.getLogger(__name__)

EDITIONS_TABLE = "newsletter_editions"
EDITION_EPISODES_TABLE = "newsletter_edition_episodes"
NOTES_TABLE = "episode_transcript_notes"

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# PostgREST code for .single() matching zero (or several) rows
NO_ROWS_CODE = "PGRST116"


def create_supabase_client(source: Settings) -> Client:
    """Create a service-role Supabase client from settings."""
    if not source.supabase_url or not source.supabase_service_role_key:
        raise ConfigError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
    return create_client(source.supabase_url, source.supabase_service_role_key)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _require_id(value: str | None, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise EditionValidationError(f"{name} is required and must be a non-empty string")


def _require_date(value: str | None) -> None:
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise EditionValidationError("edition_date must be a valid YYYY-MM-DD string")


def _fetch_user_email(client: Client, user_id: str) -> str:
    try:
        result = client.table("users").select("email").eq("id", user_id).single().execute()
    except APIError as e:
        if e.code == NO_ROWS_CODE:
            raise DatabaseError(f"No user found with id: {user_id}") from e
        raise DatabaseError(f"Failed to fetch user: {e.message}") from e
    if not result.data or not result.data.get("email"):
        raise DatabaseError(f"No user found with id: {user_id}")
    return result.data["email"]


# --- Newsletter editions ---

def insert_newsletter_edition(
    client: Client,
    user_id: str,
    edition_date: str,
    status: str,
    content: str | None = None,
    model: str | None = None,
    error_message: str | None = None,
    episode_ids: list[str] | None = None,
) -> NewsletterEdition:
    """Insert a new edition row, optionally linking episodes to it.

    If linking fails the freshly inserted edition is deleted again so the
    pair is created all-or-nothing.
    """
    _require_id(user_id, "user_id")
    _require_date(edition_date)
    user_email = _fetch_user_email(client, user_id)

    row = {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "edition_date": edition_date,
        "status": status,
        "user_email": user_email,
        "content": content,
        "model": model,
        "error_message": error_message,
        "deleted_at": None,
    }
    try:
        result = client.table(EDITIONS_TABLE).insert(row).execute()
    except APIError as e:
        raise DatabaseError(f"Failed to insert newsletter edition: {e.message}") from e
    if not result.data:
        raise DatabaseError("No data returned from newsletter edition insertion")

    edition = NewsletterEdition.from_row(result.data[0])

    if episode_ids:
        try:
            insert_newsletter_edition_episodes(client, edition.id, episode_ids)
        except (DatabaseError, EditionValidationError) as e:
            client.table(EDITIONS_TABLE).delete().eq("id", edition.id).execute()
            raise DatabaseError(f"Failed to link episodes to newsletter edition: {e}") from e

    return edition


def upsert_newsletter_edition(
    client: Client,
    user_id: str,
    edition_date: str,
    status: str,
    content: str | None = None,
    model: str | None = None,
    error_message: str | None = None,
    subject_line: str | None = None,
    edition_id: str | None = None,
) -> NewsletterEdition:
    """Insert or overwrite the edition for ``(user_id, edition_date)``.

    The row id is ``edition_id`` when given, otherwise a fresh uuid, so a
    plain re-run replaces the id of an existing row. A soft-deleted row is
    revived.
    """
    _require_id(user_id, "user_id")
    _require_date(edition_date)
    user_email = _fetch_user_email(client, user_id)

    row = {
        "id": edition_id or str(uuid.uuid4()),
        "user_id": user_id,
        "edition_date": edition_date,
        "status": status,
        "user_email": user_email,
        "content": content,
        "model": model,
        "error_message": error_message,
        "subject_line": subject_line,
        "deleted_at": None,
        "updated_at": _now_iso(),
    }
    try:
        result = (
            client.table(EDITIONS_TABLE)
            .upsert(row, on_conflict="user_id,edition_date")
            .execute()
        )
    except APIError as e:
        raise DatabaseError(f"Failed to upsert newsletter edition: {e.message}") from e
    if not result.data:
        raise DatabaseError("No data returned from newsletter edition upsert")

    return NewsletterEdition.from_row(result.data[0])


def get_by_user_and_date(client: Client, user_id: str, edition_date: str) -> NewsletterEdition | None:
    """The non-deleted edition for a user and date, or None."""
    _require_id(user_id, "user_id")
    _require_date(edition_date)
    try:
        result = (
            client.table(EDITIONS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("edition_date", edition_date)
            .is_("deleted_at", "null")
            .single()
            .execute()
        )
    except APIError as e:
        if e.code == NO_ROWS_CODE:
            return None
        raise DatabaseError(
            f"Failed to get newsletter edition by user_id and edition_date: {e.message}"
        ) from e
    return NewsletterEdition.from_row(result.data) if result.data else None


def _update_edition(client: Client, edition_id: str, values: dict, action: str) -> NewsletterEdition:
    values = {**values, "updated_at": _now_iso()}
    try:
        result = client.table(EDITIONS_TABLE).update(values).eq("id", edition_id).execute()
    except APIError as e:
        raise DatabaseError(f"Failed to {action}: {e.message}") from e
    if not result.data:
        raise DatabaseError(f"No newsletter edition found with id: {edition_id}")
    return NewsletterEdition.from_row(result.data[0])


def update_newsletter_edition_status(
    client: Client,
    edition_id: str,
    status: str,
    error_message: str | None = None,
) -> NewsletterEdition:
    _require_id(edition_id, "id")
    if not isinstance(status, str) or not status.strip():
        raise EditionValidationError("status is required and must be a non-empty string")
    values = {"status": status}
    if error_message is not None:
        values["error_message"] = error_message
    return _update_edition(client, edition_id, values, "update newsletter edition status")


def update_subject_line(client: Client, edition_id: str, subject_line: str) -> NewsletterEdition:
    _require_id(edition_id, "id")
    return _update_edition(
        client, edition_id, {"subject_line": subject_line}, "update newsletter subject line"
    )


def soft_delete(client: Client, edition_id: str) -> NewsletterEdition:
    """Mark an edition deleted by setting ``deleted_at``."""
    _require_id(edition_id, "id")
    return _update_edition(
        client, edition_id, {"deleted_at": _now_iso()}, "soft delete newsletter edition"
    )


def get_newsletter_edition_with_episodes(client: Client, edition_id: str) -> dict | None:
    """Edition plus its episode links and link count, or None if not found."""
    _require_id(edition_id, "newsletter_edition_id")
    try:
        result = (
            client.table(EDITIONS_TABLE)
            .select("*")
            .eq("id", edition_id)
            .is_("deleted_at", "null")
            .single()
            .execute()
        )
    except APIError as e:
        if e.code == NO_ROWS_CODE:
            return None
        raise DatabaseError(f"Failed to get newsletter edition: {e.message}") from e

    episodes = get_episodes_by_newsletter_id(client, edition_id)
    return {
        "edition": NewsletterEdition.from_row(result.data),
        "episodes": episodes,
        "episode_count": len(episodes),
    }


def delete_newsletter_edition_with_episodes(client: Client, edition_id: str) -> int:
    """Soft delete an edition after removing its episode links.

    Returns the number of links removed.
    """
    _require_id(edition_id, "newsletter_edition_id")
    removed = delete_newsletter_edition_episodes(client, edition_id)
    soft_delete(client, edition_id)
    logger.info("Deleted newsletter edition %s and %d episode links", edition_id, removed)
    return removed


# --- Edition to episode links ---

def _edition_exists(client: Client, edition_id: str) -> bool:
    try:
        result = client.table(EDITIONS_TABLE).select("id").eq("id", edition_id).limit(1).execute()
    except APIError as e:
        raise DatabaseError(f"Failed to look up newsletter edition: {e.message}") from e
    return bool(result.data)


def _episode_note_exists(client: Client, episode_id: str) -> bool:
    try:
        result = (
            client.table(NOTES_TABLE)
            .select("episode_id")
            .eq("episode_id", episode_id)
            .limit(1)
            .execute()
        )
    except APIError as e:
        raise DatabaseError(f"Failed to look up episode transcript note: {e.message}") from e
    return bool(result.data)


def insert_newsletter_edition_episode(
    client: Client, edition_id: str, episode_id: str
) -> NewsletterEditionEpisode:
    """Link one episode to an edition."""
    _require_id(edition_id, "newsletter_edition_id")
    _require_id(episode_id, "episode_id")
    if not _edition_exists(client, edition_id):
        raise EditionValidationError(f"Newsletter edition with id {edition_id} does not exist")
    if not _episode_note_exists(client, episode_id):
        raise EditionValidationError(
            f"Episode transcript note with episode_id {episode_id} does not exist"
        )

    row = {"newsletter_edition_id": edition_id, "episode_id": episode_id}
    try:
        result = client.table(EDITION_EPISODES_TABLE).insert(row).execute()
    except APIError as e:
        raise DatabaseError(f"Failed to insert newsletter edition episode: {e.message}") from e
    if not result.data:
        raise DatabaseError("No data returned from newsletter edition episode insertion")
    return NewsletterEditionEpisode.from_row(result.data[0])


def insert_newsletter_edition_episodes(
    client: Client, edition_id: str, episode_ids: list[str]
) -> list[NewsletterEditionEpisode]:
    """Link several episodes to an edition in one insert.

    Duplicate ids are collapsed first, so the result has one row per unique
    episode id, in first-seen order.
    """
    _require_id(edition_id, "newsletter_edition_id")
    if not episode_ids:
        raise EditionValidationError(
            "episode_ids array is required and must contain at least one episode_id"
        )
    for i, episode_id in enumerate(episode_ids):
        if not isinstance(episode_id, str) or not episode_id.strip():
            raise EditionValidationError(f"episode_ids[{i}] must be a non-empty string")

    if not _edition_exists(client, edition_id):
        raise EditionValidationError(f"Newsletter edition with id {edition_id} does not exist")

    unique_ids = list(dict.fromkeys(episode_ids))
    for episode_id in unique_ids:
        if not _episode_note_exists(client, episode_id):
            raise EditionValidationError(
                f"Episode transcript note with episode_id {episode_id} does not exist"
            )

    rows = [{"newsletter_edition_id": edition_id, "episode_id": e} for e in unique_ids]
    try:
        result = client.table(EDITION_EPISODES_TABLE).insert(rows).execute()
    except APIError as e:
        raise DatabaseError(f"Failed to insert newsletter edition episodes: {e.message}") from e
    if not result.data:
        raise DatabaseError("No data returned from newsletter edition episodes insertion")

    return [NewsletterEditionEpisode.from_row(r) for r in result.data]


def get_episodes_by_newsletter_id(client: Client, edition_id: str) -> list[dict]:
    """Link rows for an edition, oldest first, each with its ``podcast_episodes`` row under ``episode``."""
    _require_id(edition_id, "newsletter_edition_id")
    try:
        links = (
            client.table(EDITION_EPISODES_TABLE)
            .select("*")
            .eq("newsletter_edition_id", edition_id)
            .order("created_at")
            .execute()
        )
    except APIError as e:
        raise DatabaseError(f"Failed to get episodes by newsletter ID: {e.message}") from e
    if not links.data:
        return []

    episode_ids = [row["episode_id"] for row in links.data]
    try:
        episodes = client.table("podcast_episodes").select("*").in_("id", episode_ids).execute()
    except APIError as e:
        raise DatabaseError(f"Failed to fetch episodes: {e.message}") from e

    by_id = {e["id"]: e for e in episodes.data or []}
    return [{**row, "episode": by_id.get(row["episode_id"])} for row in links.data]


def get_newsletters_by_episode_id(client: Client, episode_id: str) -> list[dict]:
    """Link rows for an episode, oldest first, each with its edition under ``edition``."""
    _require_id(episode_id, "episode_id")
    try:
        links = (
            client.table(EDITION_EPISODES_TABLE)
            .select("*")
            .eq("episode_id", episode_id)
            .order("created_at")
            .execute()
        )
    except APIError as e:
        raise DatabaseError(f"Failed to get newsletters by episode ID: {e.message}") from e
    if not links.data:
        return []

    edition_ids = [row["newsletter_edition_id"] for row in links.data]
    try:
        editions = client.table(EDITIONS_TABLE).select("*").in_("id", edition_ids).execute()
    except APIError as e:
        raise DatabaseError(f"Failed to fetch newsletter editions: {e.message}") from e

    by_id = {e["id"]: e for e in editions.data or []}
    return [{**row, "edition": by_id.get(row["newsletter_edition_id"])} for row in links.data]


def delete_newsletter_edition_episodes(client: Client, edition_id: str) -> int:
    """Remove every episode link of an edition. Returns the number removed."""
    _require_id(edition_id, "newsletter_edition_id")
    try:
        result = (
            client.table(EDITION_EPISODES_TABLE)
            .delete()
            .eq("newsletter_edition_id", edition_id)
            .execute()
        )
    except APIError as e:
        raise DatabaseError(f"Failed to delete newsletter edition episodes: {e.message}") from e
    return len(result.data or [])


def is_episode_linked_to_newsletter(client: Client, edition_id: str, episode_id: str) -> bool:
    _require_id(edition_id, "newsletter_edition_id")
    _require_id(episode_id, "episode_id")
    try:
        result = (
            client.table(EDITION_EPISODES_TABLE)
            .select("id")
            .eq("newsletter_edition_id", edition_id)
            .eq("episode_id", episode_id)
            .limit(1)
            .execute()
        )
    except APIError as e:
        raise DatabaseError(f"Failed to check episode link: {e.message}") from e
    return bool(result.data)


def get_episode_count_by_newsletter_id(client: Client, edition_id: str) -> int:
    _require_id(edition_id, "newsletter_edition_id")
    try:
        result = (
            client.table(EDITION_EPISODES_TABLE)
            .select("id", count="exact")
            .eq("newsletter_edition_id", edition_id)
            .execute()
        )
    except APIError as e:
        raise DatabaseError(f"Failed to get episode count: {e.message}") from e
    return result.count or 0
