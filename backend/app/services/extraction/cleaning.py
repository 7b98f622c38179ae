"""
Text helpers shared by the extraction strategies.
"""

import re
from typing import Optional
from urllib.parse import urlparse

from app.core.config import settings


def clean_content(text: Optional[str], max_length: Optional[int] = None) -> str:
    """
    Normalize extracted text before it is embedded.

    Collapses runs of newlines into one newline and runs of other whitespace
    into one space, trims, then truncates to max_length characters (with an
    ellipsis) to stay inside the embedding provider's input limit.

    Args:
        text: Raw extracted text
        max_length: Character ceiling (default settings.MAX_CONTENT_LENGTH)

    Returns:
        Cleaned text ("" for empty input)
    """
    if not text:
        return ""

    max_length = max_length or settings.MAX_CONTENT_LENGTH

    cleaned = re.sub(r"\s*\n\s*", "\n", text)
    cleaned = re.sub(r"[^\S\n]+", " ", cleaned)
    cleaned = cleaned.strip()

    if len(cleaned) > max_length:
        return cleaned[:max_length] + "..."

    return cleaned


def title_from_url(url: str) -> str:
    """
    Readable title for a block that has none.

    "https://www.example.com/blog/my-first-post.html" → "My First Post | example.com"
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return "Untitled"

    domain = parsed.netloc.lower()
    if domain.startswith("www."):
        domain = domain[4:]
    if not domain:
        return "Untitled"

    segments = [segment for segment in parsed.path.split("/") if segment]
    if not segments:
        return domain

    last = re.sub(r"\.[a-z0-9]{1,5}$", "", segments[-1], flags=re.IGNORECASE)
    words = [word for word in re.split(r"[-_+]+", last) if word]
    if not words:
        return domain

    return f"{' '.join(word.capitalize() for word in words)} | {domain}"


def is_pdf_url(url: Optional[str]) -> bool:
    if not url:
        return False
    lowered = url.lower()
    return lowered.split("?")[0].endswith(".pdf") or "pdf" in lowered
