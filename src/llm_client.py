"""Thin wrapper around the Google Gemini API for newsletter generation."""

import logging
import time
from pathlib import Path

import requests

from config import settings
from src.exceptions import GenerationError, LLMAPIError, PromptTemplateError
from src.models import EpisodeMetadata, NewsletterGenerationResult, SubjectLineResult
from src.prompt_builder import (
    build_newsletter_edition_prompt,
    count_words,
    extract_html_content,
    sanitize_newsletter_content,
)

logger = logging.getLogger(__name__)

API_URL = "https://generativelanguage.googleapis.com/v1beta/models"

SUBJECT_LINE_PROMPT_PATH = "prompts/newsletter-subject-line.md"
SUBJECT_LINE_PLACEHOLDER = "[NEWSLETTER_HTML_CONTENT]"

MAX_RETRIES = 3
RETRY_BACKOFF = [2, 5, 10]  # seconds to wait between retries


def get_model_name() -> str:
    """Configured model id without a leading ``models/`` prefix."""
    return settings.gemini_model_name.removeprefix("models/")


def _call_gemini(
    model: str,
    user_message: str,
    system: str | None = None,
    max_tokens: int = 1024,
    temperature: float = 0.0,
    timeout: int = 30,
) -> str:
    """Make a Gemini API call with retry on 429/5xx errors.

    Args:
        model: Model ID to use.
        user_message: User message content.
        system: Optional system instruction.
        max_tokens: Maximum tokens in the response.
        temperature: Sampling temperature.
        timeout: Request timeout in seconds.

    Returns:
        The generated text.

    Raises:
        LLMAPIError: If the API key is missing or all retries fail.
    """
    if not settings.gemini_api_key:
        raise LLMAPIError("No GEMINI_API_KEY configured")

    url = f"{API_URL}/{model}:generateContent"
    headers = {
        "content-type": "application/json",
        "x-goog-api-key": settings.gemini_api_key,
    }
    payload = {
        "contents": [{"parts": [{"text": user_message}]}],
        "generationConfig": {
            "maxOutputTokens": max_tokens,
            "temperature": temperature,
        },
    }
    if system:
        payload["system_instruction"] = {"parts": [{"text": system}]}

    last_error = None
    for attempt in range(MAX_RETRIES):
        try:
            resp = requests.post(
                url,
                headers=headers,
                json=payload,
                timeout=timeout,
            )
            if resp.status_code == 429 or resp.status_code >= 500:
                wait = RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)]
                last_error = f"{resp.status_code}: {resp.text[:200]}"
                if attempt < MAX_RETRIES - 1:
                    logger.warning(
                        "Gemini API %d (attempt %d/%d), retrying in %ds...",
                        resp.status_code, attempt + 1, MAX_RETRIES, wait,
                    )
                    time.sleep(wait)
                continue

            resp.raise_for_status()
            data = resp.json()
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except requests.exceptions.HTTPError as e:
            raise LLMAPIError(f"Gemini API call failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise LLMAPIError(f"Gemini API returned an unexpected response: {e}") from e
        except requests.exceptions.RequestException as e:
            last_error = str(e)
            if attempt < MAX_RETRIES - 1:
                wait = RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)]
                logger.warning(
                    "Gemini API error (attempt %d/%d): %s, retrying in %ds...",
                    attempt + 1, MAX_RETRIES, e, wait,
                )
                time.sleep(wait)
            continue

    raise LLMAPIError(f"Gemini API failed after {MAX_RETRIES} retries: {last_error}")


def generate_newsletter_edition(
    notes_texts: list[str],
    user_email: str,
    edition_date: str,
    episode_metadata: list[EpisodeMetadata],
    prompt_overrides: dict | None = None,
    prompt_path: str | None = None,
) -> NewsletterGenerationResult:
    """Generate one newsletter edition from a user's episode notes.

    Never raises. Failures come back as ``success=False`` with ``error`` set
    so the caller's retry policy can decide what to do.

    Args:
        notes_texts: Episode note bodies, one per episode.
        user_email: Recipient, substituted into the prompt.
        edition_date: YYYY-MM-DD.
        episode_metadata: Show title and Spotify URL per note.
        prompt_overrides: Optional ``temperature`` and ``max_tokens``.
        prompt_path: Prompt template path, defaults to the configured one.
    """
    overrides = prompt_overrides or {}
    model = get_model_name()

    try:
        prompt = build_newsletter_edition_prompt(
            notes_texts, user_email, edition_date, episode_metadata, prompt_path
        )
        text = _call_gemini(
            model,
            prompt,
            max_tokens=overrides.get("max_tokens", 8192),
            temperature=overrides.get("temperature", 0.4),
            timeout=120,
        )
        html = extract_html_content(text)
        if not html:
            raise GenerationError("No HTML content found in Gemini response")
        sanitized = sanitize_newsletter_content(html)
        if not sanitized:
            raise GenerationError("Newsletter content was empty after sanitization")
    except (PromptTemplateError, LLMAPIError, GenerationError) as e:
        logger.error("Newsletter generation failed for %s (%s): %s", user_email, edition_date, e)
        return NewsletterGenerationResult(success=False, model=model, error=str(e))

    logger.info(
        "Generated newsletter for %s (%s): %d chars from %d notes",
        user_email, edition_date, len(sanitized), len(notes_texts),
    )
    return NewsletterGenerationResult(
        success=True,
        html_content=html,
        sanitized_content=sanitized,
        model=model,
    )


def generate_newsletter_subject_line(
    html_content: str,
    prompt_path: str | None = None,
) -> SubjectLineResult:
    """Generate an email subject line for a rendered newsletter.

    Never raises. The subject line is returned untruncated and trimmed.
    """
    path = Path(prompt_path or SUBJECT_LINE_PROMPT_PATH)
    try:
        template = path.read_text(encoding="utf-8")
    except OSError as e:
        return SubjectLineResult(
            success=False, error=f"Failed to read subject line prompt template: {e}"
        )

    prompt = template.replace(SUBJECT_LINE_PLACEHOLDER, html_content)

    try:
        text = _call_gemini(get_model_name(), prompt, max_tokens=100, temperature=0.7)
    except LLMAPIError as e:
        logger.warning("Subject line generation failed: %s", e)
        return SubjectLineResult(success=False, error=str(e))

    subject_line = (text or "").strip().strip('"').strip()
    if not subject_line:
        return SubjectLineResult(success=False, error="No subject line generated by Gemini")

    return SubjectLineResult(
        success=True,
        subject_line=subject_line,
        word_count=count_words(subject_line),
    )
