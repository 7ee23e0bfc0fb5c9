from unittest.mock import Mock

import pytest

from errors import ScrapeError
from processors.content_extractor import ContentExtractor
from scrapers.firecrawl_scraper import FirecrawlScraper
from scrapers.utils import extract_content, extract_domain_name

HTML = """
<html>
<head><title>Pricing | Example</title></head>
<body>
  <nav>Home | About | Blog</nav>
  <main>
    <h1>Plans</h1>
    <p>Plans start at <b>$10</b> per month.</p>
    <ul><li>Starter</li><li>Team</li></ul>
    <table><tr><th>Plan</th><th>Price</th></tr><tr><td>Starter</td><td>$10</td></tr></table>
    <div class="newsletter-box">Join our newsletter</div>
  </main>
  <footer>Copyright</footer>
</body>
</html>
"""


def firecrawl_response(status=200, payload=None):
    response = Mock()
    response.status_code = status
    response.ok = status < 400
    response.text = "error body"
    response.json.return_value = payload or {}
    return response


def test_extract_content_keeps_main_blocks():
    title, text = extract_content(HTML)

    assert title == "Pricing | Example"
    assert "# Plans" in text
    assert "Plans start at $10 per month." in text
    assert "- Starter\n- Team" in text
    assert "| Plan | Price |\n| --- | --- |\n| Starter | $10 |" in text
    assert "Home | About" not in text
    assert "newsletter" not in text
    assert "Copyright" not in text


def test_extract_domain_name():
    assert extract_domain_name("https://www.example.com/a/b") == "example.com"
    assert extract_domain_name("http://docs.example.org") == "docs.example.org"


def test_content_extractor_strips_boilerplate_but_not_code():
    text = (
        "Intro text.\n\nWe use cookies to improve your experience.\n\n\n\n"
        "```\nsubscribe to our newsletter updates.\n```\n\nShare on Twitter and LinkedIn"
    )
    cleaned = ContentExtractor().clean(text)

    assert "We use cookies" not in cleaned
    assert "Share on Twitter" not in cleaned
    assert "subscribe to our newsletter updates." in cleaned
    assert "\n\n\n" not in cleaned


def test_firecrawl_scrape_returns_markdown_and_title():
    session = Mock()
    session.post.return_value = firecrawl_response(payload={
        "success": True,
        "data": {"markdown": "# Pricing\n\nPlans start at $10.", "metadata": {"title": "Pricing"}},
    })
    scraper = FirecrawlScraper(api_key="fc-test", endpoint="https://scrape.test/v1/scrape", session=session)

    page = scraper.scrape("https://example.com/pricing")

    assert page.title == "Pricing"
    assert page.content == "# Pricing\n\nPlans start at $10."
    _, kwargs = session.post.call_args
    assert kwargs["json"] == {"url": "https://example.com/pricing", "formats": ["markdown"], "onlyMainContent": True}
    assert kwargs["headers"]["Authorization"] == "Bearer fc-test"


def test_firecrawl_title_falls_back_to_domain():
    session = Mock()
    session.post.return_value = firecrawl_response(payload={"data": {"markdown": "text"}})
    page = FirecrawlScraper(api_key="k", session=session).scrape("https://www.example.com/x")
    assert page.title == "example.com"


def test_firecrawl_client_error_raises_scrape_error():
    session = Mock()
    session.post.return_value = firecrawl_response(status=402)

    with pytest.raises(ScrapeError) as exc_info:
        FirecrawlScraper(api_key="k", session=session).scrape("https://example.com")
    assert exc_info.value.status_code == 402
    assert session.post.call_count == 1
