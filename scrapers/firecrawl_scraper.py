"""Firecrawl-backed page scraper.

Asks the hosted scrape service for the main content of a page as markdown.
Transient failures (connection errors, timeouts, 429 and 5xx) are retried
with exponential backoff; anything else surfaces as a ScrapeError.
"""

import logging
from typing import Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from errors import ScrapeError
from processors.content_extractor import ContentExtractor
from schemas.ingestion import ScrapedPage
from scrapers.utils import RetryableHTTPError, extract_domain_name, raise_for_retryable_status
from settings import DEFAULT_FIRECRAWL_URL

logger = logging.getLogger(__name__)


class FirecrawlScraper:
    def __init__(
        self,
        api_key: str,
        endpoint: str = DEFAULT_FIRECRAWL_URL,
        timeout: int = 60,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()
        self.extractor = ContentExtractor()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout, RetryableHTTPError)),
        reraise=True,
    )
    def _post(self, url: str) -> requests.Response:
        response = self.session.post(
            self.endpoint,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json={"url": url, "formats": ["markdown"], "onlyMainContent": True},
            timeout=self.timeout,
        )
        raise_for_retryable_status(response)
        return response

    def scrape(self, url: str) -> ScrapedPage:
        logger.info("Scraping %s via Firecrawl", url)
        try:
            response = self._post(url)
        except requests.RequestException as e:
            raise ScrapeError(f"Scrape request failed for {url}: {e}", url=url) from e

        if not response.ok:
            logger.error("Firecrawl error %d for %s: %.200s", response.status_code, url, response.text)
            raise ScrapeError(
                f"Failed to scrape URL: {response.status_code}",
                url=url,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ScrapeError(f"Scrape service returned invalid JSON for {url}", url=url) from e

        data = payload.get("data") or payload
        metadata = data.get("metadata") or {}
        content = self.extractor.clean(data.get("markdown") or "")
        title = (metadata.get("title") or "").strip() or extract_domain_name(url)

        logger.info("Scraped %s: %d chars, title=%r", url, len(content), title)
        return ScrapedPage(url=url, content=content, title=title)
