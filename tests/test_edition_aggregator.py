"""Tests for edition_aggregator module."""

import math

import pytest

from src.edition_aggregator import aggregate_user_processing_results, extract_error_type
from src.models import ProcessingStatus, ProcessingTiming, RetryInfo, UserProcessingResult


def _result(
    status: ProcessingStatus,
    elapsed_ms: float = 100.0,
    error: str | None = None,
    content: str | None = None,
    episode_ids: list[str] | None = None,
    attempts: int | None = None,
    timing: ProcessingTiming | None = None,
) -> UserProcessingResult:
    retry_info = None
    if attempts is not None:
        retry_info = RetryInfo(attempts_used=attempts, total_retry_time_ms=0.0, was_retried=attempts > 1)
    return UserProcessingResult(
        user_id="u",
        user_email="u@example.com",
        status=status,
        elapsed_ms=elapsed_ms,
        timing=timing or ProcessingTiming(),
        error=error,
        newsletter_content=content,
        episode_ids=episode_ids or [],
        retry_info=retry_info,
    )


def test_empty_results_are_all_zero():
    stats = aggregate_user_processing_results([])

    assert stats.total_users == 0
    assert stats.success_rate == 0
    assert stats.average_processing_time_ms == 0
    assert stats.average_timing == ProcessingTiming()
    assert stats.retry_stats.average_attempts_per_user == 0
    assert stats.retry_stats.max_attempts == 0
    assert stats.content_stats.min_length == 0
    assert stats.episode_stats.average_episodes == 0
    assert stats.error_breakdown == {}
    for value in (stats.success_rate, stats.average_processing_time_ms, stats.content_stats.average_length):
        assert not math.isnan(value)


def test_counts_and_success_rate():
    results = [
        _result(ProcessingStatus.DONE, content="abc", episode_ids=["e1"]),
        _result(ProcessingStatus.DONE, content="abcdef", episode_ids=["e1", "e2", "e3"]),
        _result(ProcessingStatus.ERROR, error="Database save failed: x"),
        _result(ProcessingStatus.NO_CONTENT_FOUND),
    ]

    stats = aggregate_user_processing_results(results)

    assert stats.total_users == 4
    assert stats.successful_newsletters == 2
    assert stats.error_count == 1
    assert stats.no_content_count == 1
    assert stats.success_rate == 50.0
    assert stats.total_elapsed_ms == 400.0
    assert stats.average_processing_time_ms == 100.0


@pytest.mark.parametrize("done, total", [(0, 3), (1, 3), (3, 3), (7, 10)])
def test_success_rate_is_a_percentage(done, total):
    results = [_result(ProcessingStatus.DONE) for _ in range(done)]
    results += [_result(ProcessingStatus.ERROR, error="x") for _ in range(total - done)]

    stats = aggregate_user_processing_results(results)

    assert 0 <= stats.success_rate <= 100
    assert stats.success_rate == pytest.approx(100 * done / total)


def test_average_timing():
    results = [
        _result(ProcessingStatus.DONE, timing=ProcessingTiming(10, 100, 20)),
        _result(ProcessingStatus.ERROR, error="x", timing=ProcessingTiming(30, 0, 0)),
    ]

    timing = aggregate_user_processing_results(results).average_timing

    assert timing.query_ms == 20
    assert timing.generation_ms == 50
    assert timing.database_ms == 10


def test_retry_stats():
    results = [
        _result(ProcessingStatus.DONE, attempts=1),
        _result(ProcessingStatus.DONE, attempts=3),
        _result(ProcessingStatus.ERROR, error="Newsletter generation failed: x", attempts=4),
        _result(ProcessingStatus.NO_CONTENT_FOUND),
    ]

    retry = aggregate_user_processing_results(results).retry_stats

    assert retry.users_who_retried == 2
    assert retry.total_retries == 5
    assert retry.average_attempts_per_user == pytest.approx(8 / 3)
    assert retry.max_attempts == 4
    assert retry.retry_success_rate == 50.0


def test_content_and_episode_stats_use_successes_only():
    results = [
        _result(ProcessingStatus.DONE, content="a" * 10, episode_ids=["e1", "e2"]),
        _result(ProcessingStatus.DONE, content="a" * 30, episode_ids=["e1", "e2", "e3", "e4"]),
        _result(ProcessingStatus.DONE, content="", episode_ids=[]),
        _result(ProcessingStatus.ERROR, error="x", content="a" * 1000, episode_ids=["e9"] * 9),
    ]

    stats = aggregate_user_processing_results(results)

    assert stats.content_stats.min_length == 10
    assert stats.content_stats.max_length == 30
    assert stats.content_stats.average_length == 20
    assert stats.content_stats.total_length == 40
    assert stats.episode_stats.min_episodes == 2
    assert stats.episode_stats.max_episodes == 4
    assert stats.episode_stats.average_episodes == 3
    assert stats.episode_stats.total_episodes == 6


def test_error_breakdown():
    results = [
        _result(ProcessingStatus.ERROR, error="Database save failed: timeout"),
        _result(ProcessingStatus.ERROR, error="Newsletter generation failed: Gemini 503"),
        _result(ProcessingStatus.ERROR, error="Failed to query episode notes: boom"),
        _result(ProcessingStatus.ERROR, error="Edition validation failed: bad date"),
        _result(ProcessingStatus.ERROR, error="Unexpected error processing user: boom"),
        _result(ProcessingStatus.ERROR, error="Database save failed: again"),
        _result(ProcessingStatus.ERROR, error=None),
    ]

    breakdown = aggregate_user_processing_results(results).error_breakdown

    assert breakdown == {
        "database_error": 2,
        "generation_error": 1,
        "query_error": 1,
        "validation_error": 1,
        "unknown_error": 1,
    }


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Supabase is down", "database_error"),
        ("DATABASE query failed", "database_error"),
        ("Gemini returned nothing", "generation_error"),
        ("API quota exceeded during query", "generation_error"),
        ("Failed to fetch user", "query_error"),
        ("Invalid edition id", "validation_error"),
        ("something odd", "unknown_error"),
        ("", "unknown_error"),
    ],
)
def test_extract_error_type(message, expected):
    assert extract_error_type(message) == expected
