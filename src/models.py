"""Data models for the newsletter edition worker."""

from dataclasses import dataclass, field
from enum import StrEnum


class ProcessingStatus(StrEnum):
    """Outcome of running one user through the edition pipeline."""

    DONE = "done"
    ERROR = "error"
    NO_CONTENT_FOUND = "no_content_found"


class EditionStatus(StrEnum):
    """Values allowed in newsletter_editions.status."""

    GENERATED = "generated"
    ERROR = "error"
    NO_NOTES_FOUND = "no_notes_found"
    CLEARED_FOR_TESTING = "cleared_for_testing"


# --- Users and subscriptions ---

@dataclass
class PodcastShow:
    """A podcast show as joined from podcast_shows."""

    id: str
    title: str
    rss_url: str = ""
    spotify_url: str = ""


@dataclass
class Subscription:
    """An active row from user_podcast_subscriptions."""

    id: str
    show_id: str
    status: str
    podcast_shows: PodcastShow | None = None


@dataclass
class UserWithSubscriptions:
    """A user snapshot taken once per workflow run."""

    id: str
    email: str
    subscriptions: list[Subscription] = field(default_factory=list)


# --- Episode notes ---

@dataclass
class EpisodeInfo:
    """The podcast_episodes row an episode note belongs to."""

    id: str
    show_id: str
    title: str = ""
    description: str = ""
    pub_date: str | None = None
    podcast_shows: PodcastShow | None = None


@dataclass
class EpisodeNoteWithEpisode:
    """A transcript note plus the episode and show it summarizes."""

    id: str
    episode_id: str
    notes: str
    status: str = "done"
    created_at: str = ""
    episode: EpisodeInfo | None = None


@dataclass
class EpisodeMetadata:
    """Per-episode context passed to the newsletter prompt."""

    show_title: str
    spotify_url: str


# --- Persisted entities ---

@dataclass
class NewsletterEdition:
    """A row of newsletter_editions."""

    id: str
    user_id: str
    edition_date: str  # YYYY-MM-DD
    status: str
    user_email: str
    content: str | None = None
    model: str | None = None
    error_message: str | None = None
    subject_line: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None
    sent_at: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "NewsletterEdition":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            edition_date=row["edition_date"],
            status=row["status"],
            user_email=row.get("user_email", ""),
            content=row.get("content"),
            model=row.get("model"),
            error_message=row.get("error_message"),
            subject_line=row.get("subject_line"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            deleted_at=row.get("deleted_at"),
            sent_at=row.get("sent_at"),
        )


@dataclass
class NewsletterEditionEpisode:
    """A row of newsletter_edition_episodes linking an edition to an episode."""

    id: str
    newsletter_edition_id: str
    episode_id: str
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "NewsletterEditionEpisode":
        return cls(
            id=row["id"],
            newsletter_edition_id=row["newsletter_edition_id"],
            episode_id=row["episode_id"],
            created_at=row.get("created_at"),
        )


@dataclass
class EditionToUpdate:
    """An existing edition picked for regeneration in last-N mode."""

    id: str
    user_id: str
    edition_date: str
    user_email: str


@dataclass
class EditionForSubjectLine:
    """An existing edition whose subject line is regenerated in test mode."""

    id: str
    user_id: str
    edition_date: str
    user_email: str
    content: str
    subject_line: str | None = None


# --- LLM results ---

@dataclass
class NewsletterGenerationResult:
    """Result of one newsletter generation call."""

    success: bool
    html_content: str = ""
    sanitized_content: str = ""
    model: str = ""
    error: str | None = None


@dataclass
class SubjectLineResult:
    """Result of one subject line generation call."""

    success: bool
    subject_line: str = ""
    word_count: int = 0
    error: str | None = None


# --- Processing results ---

@dataclass
class ProcessingTiming:
    """Milliseconds spent in each pipeline phase. Unreached phases stay at 0."""

    query_ms: float = 0.0
    generation_ms: float = 0.0
    database_ms: float = 0.0


@dataclass
class ProcessingMetadata:
    episode_notes_count: int = 0
    subscribed_shows_count: int = 0
    total_word_count: int = 0
    average_word_count: float = 0.0


@dataclass
class RetryInfo:
    attempts_used: int
    total_retry_time_ms: float
    was_retried: bool


@dataclass
class UserProcessingResult:
    """In-memory summary of one user's pipeline run. Never persisted."""

    user_id: str
    user_email: str
    status: ProcessingStatus
    elapsed_ms: float
    timing: ProcessingTiming = field(default_factory=ProcessingTiming)
    metadata: ProcessingMetadata = field(default_factory=ProcessingMetadata)
    newsletter_content: str | None = None
    newsletter_edition_id: str | None = None
    episode_ids: list[str] = field(default_factory=list)
    subject_line: str | None = None
    error: str | None = None
    retry_info: RetryInfo | None = None
    html_content: str | None = None
    sanitized_content: str | None = None
    episode_count: int = 0


@dataclass
class SubjectLineProcessingResult:
    """Outcome of regenerating the subject line of one stored edition."""

    edition_id: str
    user_id: str
    user_email: str
    success: bool
    elapsed_ms: float
    subject_line: str | None = None
    previous_subject_line: str | None = None
    error: str | None = None
