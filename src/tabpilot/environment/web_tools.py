"""
Retrieval tools that never touch the active page.

- web_search: Bing HTML results parsed with lxml
- fetch_url_content: any URL converted to plain text with BeautifulSoup
"""

import json
import logging
import random
from typing import Optional

import aiohttp
from bs4 import BeautifulSoup, Comment
from lxml.html import HTMLParser as LHTMLParser
from lxml.html import document_fromstring

logger = logging.getLogger(__name__)

BING_URL = "https://www.bing.com/search"

_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:133.0) Gecko/20100101 Firefox/133.0",
]


def _headers() -> dict:
    return {
        "User-Agent": random.choice(_USER_AGENTS),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
    }


def parse_bing_results(html: bytes, max_results: int = 10) -> list:
    """Extract title/url/snippet entries from a Bing result page."""
    parser = LHTMLParser(remove_blank_text=True, remove_comments=True, remove_pis=True)
    tree = document_fromstring(html, parser)

    results = []
    for elem in tree.xpath("//li[contains(@class, 'b_algo')]")[:max_results]:
        title_parts = elem.xpath(".//h2//a//text()")
        title = " ".join(str(t).strip() for t in title_parts).strip()
        hrefs = elem.xpath(".//h2//a/@href")
        snippet_parts = elem.xpath(".//p//text()")
        snippet = " ".join(str(s).strip() for s in snippet_parts).strip()
        if title and hrefs:
            results.append({"title": title, "url": str(hrefs[0]), "content": snippet})
    return results


async def web_search(query: str, max_results: int = 10) -> str:
    """Search Bing and return the results as a JSON list."""
    logger.info(f"Tool web_search for: {query}")
    async with aiohttp.ClientSession() as session:
        async with session.get(
            BING_URL,
            params={"q": query},
            headers=_headers(),
            timeout=aiohttp.ClientTimeout(total=30),
        ) as response:
            if response.status != 200:
                logger.error(f"Bing search error: {response.status}")
                raise RuntimeError(f"Bing search failed with HTTP {response.status}")
            html = await response.read()

    results = parse_bing_results(html, max_results)
    if not results:
        logger.warning(f"No Bing results found for query: {query}")
        return f"No search results found for: {query}"
    return json.dumps(results, ensure_ascii=False)


def html_to_text(html: str, max_chars: Optional[int] = None) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style", "meta", "link", "noscript", "iframe", "nav", "footer"]):
        element.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    title = soup.title.get_text(strip=True) if soup.title else ""
    root = soup.find("article") or soup.find("main") or soup.body or soup
    text = " ".join(root.get_text(separator=" ", strip=True).split())
    if max_chars and len(text) > max_chars:
        text = text[:max_chars] + "..."
    return f'Title is "{title}". Page content summary:\n{text}' if title else text


async def fetch_url_content(url: str, max_chars: int = 50000) -> str:
    """Fetch ``url`` in the background and return its readable text."""
    logger.info(f"Tool fetch_url_content for: {url}")
    async with aiohttp.ClientSession() as session:
        async with session.get(
            url, headers=_headers(), timeout=aiohttp.ClientTimeout(total=30)
        ) as response:
            if response.status != 200:
                raise RuntimeError(f"Fetching {url} failed with HTTP {response.status}")
            html = await response.text(errors="replace")
    return html_to_text(html, max_chars)
