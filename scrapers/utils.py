"""Shared utilities for scrapers: retrying fetch, HTML-to-markdown extraction, domains."""

import logging
import re
from typing import Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup, Tag
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "KnowledgeBaseAssistant/1.0 (+knowledge base indexing bot)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

MAIN_CONTENT_SELECTORS = ["main", "article", "[role='main']", ".content", "#content"]
BOILERPLATE_TAGS = ["nav", "header", "footer", "aside", "script", "style", "noscript", "form"]
BOILERPLATE_CLASSES = ["cookie", "banner", "popup", "modal", "overlay", "sidebar", "newsletter"]
BLOCK_TAGS = ("p", "div", "section", "article", "main", "blockquote")


class RetryableHTTPError(requests.HTTPError):
    """HTTP status worth retrying (429 and 5xx)."""


def raise_for_retryable_status(response: requests.Response) -> None:
    if response.status_code == 429 or response.status_code >= 500:
        raise RetryableHTTPError(
            f"{response.status_code} from {response.url}", response=response
        )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout, RetryableHTTPError)),
    reraise=True,
)
def fetch_url(
    url: str,
    headers: Optional[dict] = None,
    timeout: int = 30,
) -> requests.Response:
    """GET a page, retrying connection errors, timeouts, 429 and 5xx.

    Non-retryable HTTP errors (404 etc.) raise ``requests.HTTPError``
    immediately; exhausted retries re-raise the last error.
    """
    merged_headers = {**DEFAULT_HEADERS, **(headers or {})}
    response = requests.get(url, headers=merged_headers, timeout=timeout)
    raise_for_retryable_status(response)
    response.raise_for_status()
    return response


def extract_domain_name(url: str) -> str:
    """Hostname without a leading ``www.``; the raw input when it has no host."""
    host = urlparse(url).hostname
    if not host:
        return url
    return host[4:] if host.startswith("www.") else host


def extract_content(html: str, content_selector: Optional[str] = None) -> tuple[str, str]:
    """Extract (title, markdown-ish text) from an HTML page.

    Blocks are separated by blank lines so the paragraph chunker sees the
    page's own structure.
    """
    soup = BeautifulSoup(html, "lxml")

    title = ""
    title_tag = soup.find("title")
    if title_tag:
        title = title_tag.get_text(strip=True)
    if not title:
        h1 = soup.find("h1")
        if h1:
            title = h1.get_text(strip=True)

    content_area = soup.select_one(content_selector) if content_selector else None
    if content_area is None:
        for selector in MAIN_CONTENT_SELECTORS:
            content_area = soup.select_one(selector)
            if content_area:
                break
    if content_area is None:
        content_area = soup.find("body")
    if content_area is None:
        return title, ""

    for tag_name in BOILERPLATE_TAGS:
        for tag in content_area.find_all(tag_name):
            tag.decompose()
    for class_pattern in BOILERPLATE_CLASSES:
        for tag in content_area.find_all(class_=re.compile(class_pattern, re.I)):
            tag.decompose()

    blocks = _extract_blocks(content_area)
    return title, "\n\n".join(b for b in blocks if b.strip())


def _extract_blocks(element: Tag) -> list[str]:
    """Walk an element and return its text as markdown blocks."""
    blocks: list[str] = []
    inline: list[str] = []

    def flush_inline():
        if inline:
            blocks.append(" ".join(inline))
            inline.clear()

    for child in element.children:
        if isinstance(child, str):
            text = child.strip()
            if text:
                inline.append(text)
            continue
        if not isinstance(child, Tag):
            continue

        tag = child.name
        if tag == "pre":
            flush_inline()
            blocks.append(f"```\n{child.get_text().rstrip()}\n```")
        elif tag == "table":
            flush_inline()
            blocks.append(_extract_table(child))
        elif tag in ("h1", "h2", "h3", "h4", "h5", "h6"):
            flush_inline()
            blocks.append(f"{'#' * int(tag[1])} {child.get_text(strip=True)}")
        elif tag in ("ul", "ol"):
            flush_inline()
            items = [f"- {li.get_text(' ', strip=True)}" for li in child.find_all("li", recursive=False)]
            if items:
                blocks.append("\n".join(items))
        elif tag in BLOCK_TAGS:
            flush_inline()
            nested = _extract_blocks(child)
            if len(nested) == 1 or tag == "p":
                blocks.append(" ".join(nested))
            else:
                blocks.extend(nested)
        else:
            text = child.get_text(" ", strip=True)
            if text:
                inline.append(text)

    flush_inline()
    return [b for b in blocks if b.strip()]


def _extract_table(table: Tag) -> str:
    rows = []
    for tr in table.find_all("tr"):
        cells = [cell.get_text(strip=True) for cell in tr.find_all(["th", "td"])]
        if cells:
            rows.append("| " + " | ".join(cells) + " |")
    if len(rows) > 1:
        rows.insert(1, "| " + " | ".join(["---"] * (rows[0].count("|") - 1)) + " |")
    return "\n".join(rows)
