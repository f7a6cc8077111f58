"""Summary statistics over a batch of per-user processing results."""

from dataclasses import dataclass, field

from src.models import ProcessingStatus, ProcessingTiming, UserProcessingResult

# Checked in order, first match wins
ERROR_KEYWORDS = [
    ("database_error", ("database", "supabase")),
    ("generation_error", ("gemini", "api", "generation")),
    ("query_error", ("query", "fetch")),
    ("validation_error", ("validation", "invalid")),
]


@dataclass
class RetryStats:
    total_retries: int = 0
    users_who_retried: int = 0
    average_attempts_per_user: float = 0.0
    max_attempts: int = 0
    retry_success_rate: float = 0.0


@dataclass
class ContentStats:
    min_length: int = 0
    max_length: int = 0
    average_length: float = 0.0
    total_length: int = 0


@dataclass
class EpisodeStats:
    min_episodes: int = 0
    max_episodes: int = 0
    average_episodes: float = 0.0
    total_episodes: int = 0


@dataclass
class EditionSummaryStats:
    """Batch totals. ``success_rate`` is a percentage in [0, 100]."""

    total_users: int = 0
    successful_newsletters: int = 0
    error_count: int = 0
    no_content_count: int = 0
    success_rate: float = 0.0
    total_elapsed_ms: float = 0.0
    average_processing_time_ms: float = 0.0
    average_timing: ProcessingTiming = field(default_factory=ProcessingTiming)
    retry_stats: RetryStats = field(default_factory=RetryStats)
    error_breakdown: dict[str, int] = field(default_factory=dict)
    content_stats: ContentStats = field(default_factory=ContentStats)
    episode_stats: EpisodeStats = field(default_factory=EpisodeStats)


def extract_error_type(error_message: str | None) -> str:
    """Bucket an error message by keyword, case-insensitively."""
    lowered = (error_message or "").lower()
    for error_type, keywords in ERROR_KEYWORDS:
        if any(k in lowered for k in keywords):
            return error_type
    return "unknown_error"


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def aggregate_user_processing_results(results: list[UserProcessingResult]) -> EditionSummaryStats:
    """Reduce per-user results to summary statistics.

    Safe on an empty list: every figure is zero.
    """
    total = len(results)
    done = [r for r in results if r.status == ProcessingStatus.DONE]
    errors = [r for r in results if r.status == ProcessingStatus.ERROR]
    no_content = [r for r in results if r.status == ProcessingStatus.NO_CONTENT_FOUND]

    total_elapsed = sum(r.elapsed_ms for r in results)

    breakdown: dict[str, int] = {}
    for r in errors:
        if r.error:
            error_type = extract_error_type(r.error)
            breakdown[error_type] = breakdown.get(error_type, 0) + 1

    with_retry = [r for r in results if r.retry_info]
    retried = [r for r in with_retry if r.retry_info.was_retried]
    total_attempts = sum(r.retry_info.attempts_used or 1 for r in with_retry)
    retry_stats = RetryStats(
        total_retries=total_attempts - len(with_retry),
        users_who_retried=len(retried),
        average_attempts_per_user=total_attempts / len(with_retry) if with_retry else 0.0,
        max_attempts=max((r.retry_info.attempts_used for r in with_retry), default=0),
        retry_success_rate=(
            100 * sum(1 for r in retried if r.status == ProcessingStatus.DONE) / len(retried)
            if retried else 0.0
        ),
    )

    lengths = [len(r.newsletter_content or "") for r in done]
    lengths = [n for n in lengths if n > 0]
    content_stats = ContentStats(
        min_length=min(lengths, default=0),
        max_length=max(lengths, default=0),
        average_length=_mean(lengths),
        total_length=sum(lengths),
    )

    counts = [len(r.episode_ids) for r in done]
    counts = [n for n in counts if n > 0]
    episode_stats = EpisodeStats(
        min_episodes=min(counts, default=0),
        max_episodes=max(counts, default=0),
        average_episodes=_mean(counts),
        total_episodes=sum(counts),
    )

    return EditionSummaryStats(
        total_users=total,
        successful_newsletters=len(done),
        error_count=len(errors),
        no_content_count=len(no_content),
        success_rate=100 * len(done) / total if total else 0.0,
        total_elapsed_ms=total_elapsed,
        average_processing_time_ms=total_elapsed / total if total else 0.0,
        average_timing=ProcessingTiming(
            query_ms=_mean([r.timing.query_ms for r in results]),
            generation_ms=_mean([r.timing.generation_ms for r in results]),
            database_ms=_mean([r.timing.database_ms for r in results]),
        ),
        retry_stats=retry_stats,
        error_breakdown=breakdown,
        content_stats=content_stats,
        episode_stats=episode_stats,
    )
