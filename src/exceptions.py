"""Custom exception hierarchy for the newsletter edition worker."""


class NewsletterError(Exception):
    """Base exception for all newsletter worker errors."""


class ConfigError(NewsletterError):
    """Raised when the worker configuration is missing or invalid."""


class DatabaseError(NewsletterError):
    """Raised when a Supabase read or write fails or returns no data."""


class EditionValidationError(NewsletterError):
    """Raised when an id, date or payload fails a guard check before hitting the database."""


class EpisodeNotesQueryError(NewsletterError):
    """Raised when looking up a user's episode notes fails."""


class LLMAPIError(NewsletterError):
    """Raised when the Gemini API call fails."""


class GenerationError(NewsletterError):
    """Raised when Gemini returns a response that cannot be used as a newsletter."""


class PromptTemplateError(NewsletterError):
    """Raised when the newsletter prompt template cannot be loaded or built."""
