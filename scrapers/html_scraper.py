"""Local scraper: fetch a page directly and extract its main content.

Used when no hosted scrape service is configured (SCRAPER_BACKEND=html).
"""

import logging
from typing import Optional

import requests

from errors import ScrapeError
from processors.content_extractor import ContentExtractor
from schemas.ingestion import ScrapedPage
from scrapers.utils import extract_content, extract_domain_name, fetch_url

logger = logging.getLogger(__name__)


class HtmlScraper:
    def __init__(self, content_selector: Optional[str] = None, timeout: int = 30):
        self.content_selector = content_selector
        self.timeout = timeout
        self.extractor = ContentExtractor()

    def scrape(self, url: str) -> ScrapedPage:
        logger.info("Fetching %s", url)
        try:
            response = fetch_url(url, timeout=self.timeout)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise ScrapeError(f"HTTP error fetching {url}: {e}", url=url, status_code=status) from e
        except requests.RequestException as e:
            raise ScrapeError(f"Could not fetch {url}: {e}", url=url) from e

        content_type = response.headers.get("Content-Type", "")
        if content_type and "html" not in content_type and "text" not in content_type:
            raise ScrapeError(f"Unsupported content type {content_type!r}", url=url)

        title, text = extract_content(response.text, self.content_selector)
        content = self.extractor.clean(text)
        if not content:
            logger.warning("No content extracted from %s", url)
        return ScrapedPage(url=url, content=content, title=title or extract_domain_name(url))
