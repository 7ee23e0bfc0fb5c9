"""Cleans scraped page content before it is chunked.

Strips leftover boilerplate (cookie notices, newsletter prompts, share
buttons) that survives main-content extraction, and normalizes whitespace
outside fenced code blocks.
"""

import logging
import re

logger = logging.getLogger(__name__)

CODE_FENCE = re.compile(r"(```[\s\S]*?```)")


class ContentExtractor:
    """Cleans and normalizes scraped text content."""

    def __init__(self):
        self._strip_patterns = [
            # Cookie consent / GDPR banners
            re.compile(
                r"(we use cookies|cookie policy|accept all cookies|manage preferences)[^\n]*?\.",
                re.IGNORECASE,
            ),
            # Newsletter signup CTAs
            re.compile(
                r"(subscribe to|sign up for|join our)[^\n]*?(newsletter|updates)[^\n]*?\.",
                re.IGNORECASE,
            ),
            # Social share rows
            re.compile(
                r"^.*(share on|follow us on|tweet this).*(twitter|linkedin|facebook|x\.com).*$",
                re.IGNORECASE | re.MULTILINE,
            ),
        ]

    def clean(self, text: str) -> str:
        if not text:
            return ""

        parts = CODE_FENCE.split(text)
        cleaned_parts = []
        for part in parts:
            if part.startswith("```"):
                cleaned_parts.append(part)
                continue
            for pattern in self._strip_patterns:
                part = pattern.sub("", part)
            # Collapse runs of spaces but leave markdown tables alone
            lines = [
                line if line.lstrip().startswith("|") else re.sub(r"[ \t]{2,}", " ", line).rstrip()
                for line in part.split("\n")
            ]
            cleaned_parts.append("\n".join(lines))

        cleaned = "".join(cleaned_parts)
        cleaned = re.sub(r"\n{3,}", "\n\n", cleaned).strip()
        if len(cleaned) < len(text):
            logger.debug("Content cleanup removed %d chars", len(text) - len(cleaned))
        return cleaned
