"""Newsletter prompt building and HTML clean-up for generated editions."""

import logging
import re
from pathlib import Path

from bs4 import BeautifulSoup, Comment, Doctype

from src.exceptions import PromptTemplateError
from src.models import EpisodeMetadata

logger = logging.getLogger(__name__)

REQUIRED_PLACEHOLDERS = ("[USER_EMAIL]", "[EDITION_DATE]", "[EPISODE_COUNT]")
NOTES_PLACEHOLDER = "[EPISODE_NOTES_CONTENT]"
MIN_TEMPLATE_CHARS = 100

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Tags kept in sanitized newsletters. Anything else is unwrapped (text kept).
ALLOWED_TAGS = {
    "html", "head", "body", "meta", "style",
    "table", "tr", "td",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "p", "br", "hr",
    "ul", "ol", "li",
    "strong", "b", "em", "i", "u",
    "blockquote", "q",
    "div", "span",
    "a", "img",
}

# Tags removed together with their content
DROP_TAGS = ["script", "iframe", "object", "embed", "form", "noscript", "svg", "button", "input"]

GLOBAL_ATTRIBUTES = {"class", "id", "style"}
TAG_ATTRIBUTES = {
    "html": {"lang"},
    "meta": {"charset", "name", "content"},
    "table": {"role", "cellpadding", "cellspacing", "border", "align", "width"},
    "a": {"href", "title", "target", "rel"},
    "img": {"src", "alt", "title", "width", "height"},
}

_COLOR = re.compile(r"^(#(0x)?[0-9a-f]+|rgb\(\s*\d{1,3}\s*,\s*\d{1,3}\s*,\s*\d{1,3}\s*\))$", re.IGNORECASE)
_SIZE = re.compile(r"^\d+(px|em|%)?$")
ALLOWED_STYLES = {
    "color": _COLOR,
    "background-color": _COLOR,
    "background": _COLOR,
    "font-size": re.compile(r"^\d+(px|em|%)$"),
    "font-weight": re.compile(r"^(normal|bold|bolder|lighter|\d{3})$"),
    "font-family": re.compile(r"^[a-zA-Z\s,]+$"),
    "text-align": re.compile(r"^(left|right|center|justify)$"),
    "text-decoration": re.compile(r"^(none|underline|overline|line-through)$"),
    "line-height": re.compile(r"^\d+(\.\d+)?$"),
    "margin": _SIZE, "margin-top": _SIZE, "margin-bottom": _SIZE,
    "margin-left": _SIZE, "margin-right": _SIZE,
    "padding": _SIZE, "padding-top": _SIZE, "padding-bottom": _SIZE,
    "padding-left": _SIZE, "padding-right": _SIZE,
    "width": _SIZE,
}

ALLOWED_SCHEMES = ("http", "https", "mailto")


def count_words(text: str | None) -> int:
    """Count whitespace-delimited, non-empty tokens."""
    if not text:
        return 0
    return len(text.split())


def load_prompt_template(template_path: str | Path | None = None) -> str:
    """Load and validate the newsletter prompt template.

    Raises:
        PromptTemplateError: If the file is missing, too short, or lacks the
            required placeholders.
    """
    from config import DEFAULT_PROMPT_PATH

    path = Path(template_path or DEFAULT_PROMPT_PATH)
    try:
        template = path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise PromptTemplateError(f"Failed to load prompt template from \"{path}\": {e}") from e

    if not template:
        raise PromptTemplateError(f"Prompt template file is empty: {path}")
    if len(template) < MIN_TEMPLATE_CHARS:
        raise PromptTemplateError(
            f"Prompt template seems too short ({len(template)} chars). Expected detailed instructions."
        )
    missing = [p for p in REQUIRED_PLACEHOLDERS if p not in template]
    if missing:
        raise PromptTemplateError(f"Prompt template missing required placeholders: {', '.join(missing)}")

    return template


def _format_notes(notes: list[str], metadata: list[EpisodeMetadata]) -> str:
    if len(notes) == 1:
        meta = metadata[0]
        return (
            "**Episode Notes:**\n\n"
            f"**Show:** {meta.show_title}\n"
            f"**Spotify URL:** {meta.spotify_url}\n\n"
            f"{notes[0].strip()}"
        )

    blocks = []
    for i, (note, meta) in enumerate(zip(notes, metadata), start=1):
        blocks.append(
            f"**Episode {i} Notes:**\n\n"
            f"**Show:** {meta.show_title}\n"
            f"**Spotify URL:** {meta.spotify_url}\n\n"
            f"{note.strip()}"
        )
    return "\n\n---\n\n".join(blocks)


def build_newsletter_edition_prompt(
    episode_notes: list[str],
    user_email: str,
    edition_date: str,
    episode_metadata: list[EpisodeMetadata],
    template_path: str | Path | None = None,
) -> str:
    """Fill the prompt template with the user's episode notes.

    Empty notes are dropped together with their metadata entry.

    Raises:
        PromptTemplateError: On invalid inputs or an unusable template.
    """
    if not episode_notes:
        raise PromptTemplateError("episode_notes cannot be empty - at least one episode note is required")
    if len(episode_metadata) != len(episode_notes):
        raise PromptTemplateError(
            f"episode_metadata length ({len(episode_metadata)}) must match "
            f"episode_notes length ({len(episode_notes)})"
        )
    if not user_email or not user_email.strip():
        raise PromptTemplateError("user_email must be a non-empty string")
    if not DATE_PATTERN.match(edition_date or ""):
        raise PromptTemplateError("edition_date must be a valid YYYY-MM-DD string")

    pairs = [(n, m) for n, m in zip(episode_notes, episode_metadata) if n and n.strip()]
    if not pairs:
        raise PromptTemplateError("All episode notes are empty - at least one valid note is required")
    if len(pairs) < len(episode_notes):
        logger.warning("Dropped %d empty episode notes", len(episode_notes) - len(pairs))

    notes = [n for n, _ in pairs]
    metadata = [m for _, m in pairs]

    template = load_prompt_template(template_path)
    prompt = (
        template.replace("[USER_EMAIL]", user_email)
        .replace("[EDITION_DATE]", edition_date)
        .replace("[EPISODE_COUNT]", str(len(notes)))
        .replace(NOTES_PLACEHOLDER, _format_notes(notes, metadata))
    )
    logger.debug("Built newsletter prompt: %d notes, %d chars", len(notes), len(prompt))
    return prompt.strip()


def validate_episode_notes_for_newsletter(episode_notes: list[str]) -> dict:
    """Quality report for a set of notes: validity, word counts and warnings."""
    warnings: list[str] = []
    if not episode_notes:
        return {
            "is_valid": False,
            "warnings": ["Episode notes array cannot be empty"],
            "total_word_count": 0,
            "average_word_count": 0.0,
            "valid_note_count": 0,
            "original_note_count": 0,
        }

    single = len(episode_notes) == 1
    valid: list[str] = []
    total_words = 0

    for i, note in enumerate(episode_notes, start=1):
        if not isinstance(note, str) or not note.strip():
            warnings.append("Single episode note is empty" if single else f"Episode note {i} is empty")
            continue
        words = count_words(note)
        total_words += words
        valid.append(note)
        short, long = (100, 3000) if single else (50, 2000)
        label = "Single episode note" if single else f"Episode note {i}"
        if words < short:
            warnings.append(f"{label} is very short ({words} words) - newsletter may be limited")
        if words > long:
            warnings.append(f"{label} is very long ({words} words) - may be too detailed for synthesis")

    if len(valid) < len(episode_notes):
        warnings.append(f"Only {len(valid)} of {len(episode_notes)} episode notes are valid")
    if not single:
        if total_words < 200:
            warnings.append(f"Total content is very short ({total_words} words) - newsletter may be limited")
        if total_words > 10000:
            warnings.append(f"Total content is very long ({total_words} words) - may hit token limits")

    return {
        "is_valid": bool(valid),
        "warnings": warnings,
        "total_word_count": total_words,
        "average_word_count": total_words / len(valid) if valid else 0.0,
        "valid_note_count": len(valid),
        "original_note_count": len(episode_notes),
    }


# --- HTML ---

def _clean_style(style: str) -> str:
    kept = []
    for declaration in style.split(";"):
        if ":" not in declaration:
            continue
        prop, value = (part.strip() for part in declaration.split(":", 1))
        pattern = ALLOWED_STYLES.get(prop.lower())
        if pattern and pattern.match(value):
            kept.append(f"{prop.lower()}: {value}")
    return "; ".join(kept)


def _safe_url(url: str) -> bool:
    url = url.strip()
    if url.startswith("//"):
        return False
    if ":" not in url.split("/", 1)[0]:
        return True  # relative
    return url.split(":", 1)[0].lower() in ALLOWED_SCHEMES


def sanitize_newsletter_content(html_content: str) -> str:
    """Strip unsafe markup from generated newsletter HTML.

    Scripts and embeds are removed with their content; unknown tags are
    unwrapped; attributes, inline styles and URL schemes are allowlisted.
    External links open in a new tab with ``rel="noopener noreferrer"``.
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, "html.parser")

    for node in soup.find_all(string=lambda s: isinstance(s, (Comment, Doctype))):
        node.extract()

    for tag in soup.find_all(DROP_TAGS):
        tag.decompose()

    for tag in soup.find_all(True):
        if tag.name not in ALLOWED_TAGS:
            tag.unwrap()
            continue

        allowed = GLOBAL_ATTRIBUTES | TAG_ATTRIBUTES.get(tag.name, set())
        for attr in list(tag.attrs):
            if attr not in allowed:
                del tag.attrs[attr]

        if "style" in tag.attrs:
            cleaned = _clean_style(tag["style"])
            if cleaned:
                tag["style"] = cleaned
            else:
                del tag["style"]

        for attr in ("href", "src"):
            if attr in tag.attrs and not _safe_url(tag[attr]):
                del tag.attrs[attr]

        if tag.name == "a" and tag.get("href", "").startswith("http"):
            tag["target"] = "_blank"
            tag["rel"] = "noopener noreferrer"

    return str(soup).strip()


def extract_html_content(text: str) -> str:
    """Pull the HTML document out of a raw model response.

    Strips markdown code fences and any chatter before the first tag.
    Returns "" when the response holds no HTML.
    """
    if not text:
        return ""
    fenced = re.search(r"```(?:html)?\s*(.*?)```", text, re.DOTALL | re.IGNORECASE)
    if fenced:
        text = fenced.group(1)

    start = re.search(r"<!DOCTYPE html|<html|<[a-zA-Z]", text, re.IGNORECASE)
    if not start:
        return ""
    html = text[start.start():]
    end = html.lower().rfind("</html>")
    if end != -1:
        html = html[: end + len("</html>")]
    return html.strip()


def inject_edition_placeholders(html: str, replacements: dict[str, str | int]) -> str:
    """Replace ``[KEY]`` placeholders (case-sensitive) in rendered edition HTML."""
    for key, value in replacements.items():
        html = html.replace(f"[{key}]", str(value))
    return html
