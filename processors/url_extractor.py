"""Find web links in free-form chat messages.

Used before answering: every absolute http(s) link in a user message is
ingested into the knowledge base, and a message that is nothing but links is
treated as an indexing request rather than a question.
"""

import logging
import re

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"https?://[^\s<>\"'`]+", re.IGNORECASE)

# Sentence punctuation that commonly follows a link in prose
TRAILING_PUNCTUATION = ".,;:!?'\""
CLOSING_BRACKETS = {")": "(", "]": "[", "}": "{"}

URL_ONLY_RESIDUAL_CHARS = 10


def _trim_url(candidate: str) -> str:
    url = candidate
    while url:
        last = url[-1]
        if last in TRAILING_PUNCTUATION:
            url = url[:-1]
        elif last in CLOSING_BRACKETS and url.count(last) > url.count(CLOSING_BRACKETS[last]):
            # Unbalanced closing bracket belongs to the surrounding text
            url = url[:-1]
        else:
            break
    return url


def _is_absolute(url: str) -> bool:
    scheme, _, rest = url.partition("://")
    return scheme.lower() in {"http", "https"} and bool(rest.split("/", 1)[0])


def extract_urls(text: str) -> list[str]:
    """Return absolute http(s) URLs in first-occurrence order without duplicates."""
    if not text:
        return []

    seen: set[str] = set()
    urls: list[str] = []
    for match in URL_PATTERN.finditer(text):
        url = _trim_url(match.group(0))
        if not _is_absolute(url) or url in seen:
            continue
        seen.add(url)
        urls.append(url)
    return urls


def is_likely_url_only(text: str, residual_threshold: int = URL_ONLY_RESIDUAL_CHARS) -> bool:
    """True when the message holds at least one URL and little else.

    The message counts as link-only when removing every URL leaves fewer than
    ``residual_threshold`` non-whitespace characters.
    """
    if not text or not URL_PATTERN.search(text):
        return False
    residual = URL_PATTERN.sub(" ", text)
    residual_chars = len(re.sub(r"\s+", "", residual))
    return residual_chars < residual_threshold
