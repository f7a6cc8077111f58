"""Tests for edition_queries module."""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from src import edition_queries
from src.exceptions import DatabaseError, EpisodeNotesQueryError

NOW = datetime(2026, 1, 2, 0, 0, tzinfo=UTC)


def test_users_with_active_subscriptions(fake_db):
    fake_db.add_user("user-b", "b@example.com", ["show-1", "show-2"])
    fake_db.add_user("user-a", "a@example.com", ["show-1"])
    fake_db.add_user("user-c", "c@example.com", [])

    users = edition_queries.query_users_with_active_subscriptions(fake_db)

    assert [u.id for u in users] == ["user-a", "user-b"]
    assert len(users[1].subscriptions) == 2
    assert users[1].subscriptions[0].podcast_shows.title == "Show show-1"


def test_users_inactive_subscriptions_excluded(fake_db):
    fake_db.add_user("user-a", "a@example.com", ["show-1", "show-2"])
    fake_db.rows("users")[0]["user_podcast_subscriptions"][0]["status"] = "inactive"

    users = edition_queries.query_users_with_active_subscriptions(fake_db)

    assert [s.show_id for s in users[0].subscriptions] == ["show-2"]


def test_users_query_failure(fake_db):
    fake_db.fail("users", "select")
    with pytest.raises(DatabaseError, match="Failed to query users"):
        edition_queries.query_users_with_active_subscriptions(fake_db)


def test_episode_notes_within_lookback(fake_db):
    fake_db.add_user("user-a", "a@example.com", ["show-1"])
    fake_db.add_note("ep-old", "show-1", created_at="2025-12-30T00:00:00+00:00")
    fake_db.add_note("ep-1", "show-1", created_at="2026-01-01T06:00:00+00:00")
    fake_db.add_note("ep-2", "show-1", created_at="2026-01-01T12:00:00+00:00")
    fake_db.add_note("ep-other", "show-9", created_at="2026-01-01T12:00:00+00:00")
    fake_db.add_note("ep-pending", "show-1", created_at="2026-01-01T12:00:00+00:00", status="pending")

    notes = edition_queries.query_episode_notes_for_user(fake_db, "user-a", 24, now_override=NOW)

    assert [n.episode_id for n in notes] == ["ep-2", "ep-1"]
    assert notes[0].episode.podcast_shows.spotify_url == "https://open.spotify.com/show/show-1"


def test_lookback_window_uses_utc(fake_db):
    fake_db.add_user("user-a", "a@example.com", ["show-1"])
    fake_db.add_note("ep-edge", "show-1", created_at="2026-01-01T00:30:00+00:00")
    # 19:00 at UTC-5 is midnight UTC, so the 24h window starts 2026-01-01T00:00 UTC
    local_now = datetime(2026, 1, 1, 19, 0, tzinfo=timezone(timedelta(hours=-5)))

    notes = edition_queries.query_episode_notes_for_user(fake_db, "user-a", 24, now_override=local_now)

    assert [n.episode_id for n in notes] == ["ep-edge"]


def test_utc_now_normalizes_overrides():
    assert edition_queries.utc_now(datetime(2026, 1, 1, 12, 0)) == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    shifted = edition_queries.utc_now(datetime(2026, 1, 1, 22, 0, tzinfo=timezone(timedelta(hours=-5))))
    assert shifted.tzinfo is UTC
    assert shifted.date().isoformat() == "2026-01-02"


def test_episode_notes_without_subscriptions(fake_db):
    fake_db.add_note("ep-1", "show-1")
    assert edition_queries.query_episode_notes_for_user(fake_db, "nobody", 24, now_override=NOW) == []
    assert ("episode_transcript_notes", "select") not in fake_db.calls


def test_episode_notes_query_failure(fake_db):
    fake_db.add_user("user-a", "a@example.com", ["show-1"])
    fake_db.fail("episode_transcript_notes", "select", "timeout")
    with pytest.raises(EpisodeNotesQueryError, match="timeout"):
        edition_queries.query_episode_notes_for_user(fake_db, "user-a", 24, now_override=NOW)


def test_last_editions_for_update(fake_db):
    for i in range(5):
        fake_db.add_edition(f"ed-{i}", f"user-{i}", f"u{i}@example.com", f"2026-01-0{i + 1}")

    editions = edition_queries.query_last_newsletter_editions_for_update(fake_db, 3)

    assert [e.id for e in editions] == ["ed-4", "ed-3", "ed-2"]
    assert editions[0].user_email == "u4@example.com"


def test_editions_for_subject_line_test(fake_db):
    fake_db.add_edition("ed-1", "user-1", "a@example.com", "2026-01-01")
    fake_db.add_edition("ed-2", "user-2", "b@example.com", "2026-01-01", content=None)
    fake_db.add_edition("ed-3", "user-3", "c@example.com", "2026-01-01", status="error")
    fake_db.add_edition("ed-4", "user-4", "d@example.com", "2026-01-01", subject_line="Old")

    editions = edition_queries.query_newsletter_editions_for_subject_line_test(fake_db, 10)

    assert [e.id for e in editions] == ["ed-4", "ed-1"]
    assert editions[0].subject_line == "Old"
