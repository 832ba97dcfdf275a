"""
Website content extraction for WEBSITE sources.

Fetches a page with httpx, extracts the main text with Trafilatura
(readability-lxml as fallback) and collects sustainability-related
headings with BeautifulSoup. The result is formatted into a plain-text
block that is embedded in the extraction prompt.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
from bs4 import BeautifulSoup

from ..constants import WEBSITE_FETCH_TIMEOUT_SECONDS
from ..utils.errors import ContentExtractionError

MAX_CONTENT_BYTES = 10 * 1024 * 1024  # Refuse pages larger than 10 MB
MIN_CONTENT_CHARS = 100  # Shorter extractions count as failures

SUSTAINABILITY_KEYWORDS = [
    "sustainability",
    "sustainable",
    "esg",
    "environment",
    "environmental",
    "social responsibility",
    "governance",
    "carbon",
    "emissions",
    "climate",
    "green",
    "renewable",
    "energy",
    "waste",
    "water",
    "diversity",
    "inclusion",
    "nachhaltigkeit",
    "klima",
]

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5,de;q=0.3",
    "Upgrade-Insecure-Requests": "1",
    "Cache-Control": "max-age=0",
}


@dataclass
class WebsiteContent:
    """Readable content of one web page."""

    url: str
    title: str
    text: str
    site_name: str = ""
    sustainability_headings: List[str] = field(default_factory=list)

    @property
    def metadata(self) -> dict:
        return {
            "url": self.url,
            "title": self.title,
            "siteName": self.site_name,
            "length": len(self.text),
            "sustainabilityHeadings": self.sustainability_headings,
        }


def format_for_prompt(content: WebsiteContent) -> str:
    """Format extracted content as the block embedded in the user prompt."""
    lines = ["WEBSITE CONTENT EXTRACTION", "", f"TITLE: {content.title}", f"URL: {content.url}"]
    if content.site_name:
        lines.append(f"SITE: {content.site_name}")
    if content.sustainability_headings:
        lines.append("")
        lines.append("SUSTAINABILITY-RELATED SECTIONS:")
        lines.extend(f"- {heading}" for heading in content.sustainability_headings)
    lines.extend(["", "--- CONTENT START ---", "", content.text.strip(), "", "--- CONTENT END ---", ""])
    return "\n".join(lines)


class WebsiteContentExtractor:
    """Fetch a page and reduce it to prompt-ready text."""

    def __init__(self, timeout: float = WEBSITE_FETCH_TIMEOUT_SECONDS, client: Optional[httpx.AsyncClient] = None, logger=None):
        """
        Args:
            timeout: Fetch timeout in seconds
            client: Optional shared httpx.AsyncClient
            logger: Optional logger instance
        """
        self.timeout = timeout
        self._client = client
        self.logger = logger or logging.getLogger(__name__)

    async def _fetch_html(self, url: str) -> str:
        if self._client is not None:
            response = await self._client.get(url, headers=BROWSER_HEADERS, follow_redirects=True, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(headers=BROWSER_HEADERS, timeout=self.timeout) as client:
                response = await client.get(url, follow_redirects=True)

        if response.status_code != 200:
            raise ContentExtractionError(url, f"HTTP {response.status_code}")
        if len(response.content) > MAX_CONTENT_BYTES:
            raise ContentExtractionError(url, f"page too large ({len(response.content)} bytes)")
        return response.text

    def extract_main_text(self, html: str) -> Optional[str]:
        """
        Extract main content using Trafilatura, falling back to readability-lxml.

        Returns:
            Extracted text, or None if both extractors came up short
        """
        import trafilatura

        try:
            text = trafilatura.extract(html, include_tables=True, output_format="txt", favor_precision=True)
        except Exception as e:
            self.logger.debug(f"Trafilatura extraction failed: {e}")
            text = None

        if text and len(text) >= MIN_CONTENT_CHARS:
            return text
        return self._fallback_extract(html)

    def _fallback_extract(self, html: str) -> Optional[str]:
        try:
            from readability import Document

            summary_html = Document(html).summary()
        except Exception as e:
            self.logger.debug(f"Readability extraction failed: {e}")
            return None

        text = BeautifulSoup(summary_html, "html.parser").get_text(" ")
        text = re.sub(r"\s+", " ", text).strip()
        return text if len(text) >= MIN_CONTENT_CHARS else None

    @staticmethod
    def find_sustainability_headings(soup: BeautifulSoup) -> List[str]:
        headings = []
        for heading in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
            text = heading.get_text(" ", strip=True)
            if text and any(keyword in text.lower() for keyword in SUSTAINABILITY_KEYWORDS):
                headings.append(text)
        return headings

    def parse(self, url: str, html: str) -> WebsiteContent:
        """Turn fetched HTML into WebsiteContent; raises ContentExtractionError."""
        text = self.extract_main_text(html)
        if not text:
            raise ContentExtractionError(url, "no readable content found")

        soup = BeautifulSoup(html, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else ""
        site_meta = soup.find("meta", attrs={"property": "og:site_name"})
        site_name = site_meta.get("content", "") if site_meta else ""

        return WebsiteContent(
            url=url,
            title=title or url,
            text=text,
            site_name=site_name,
            sustainability_headings=self.find_sustainability_headings(soup),
        )

    async def fetch_readable_content(self, url: str) -> WebsiteContent:
        """
        Fetch a page and extract its readable content.

        Raises:
            ContentExtractionError: on any fetch or parse failure
        """
        self.logger.info(f"Fetching website content from: {url}")
        try:
            html = await self._fetch_html(url)
        except ContentExtractionError:
            raise
        except httpx.HTTPError as e:
            raise ContentExtractionError(url, str(e) or type(e).__name__) from e

        content = self.parse(url, html)
        self.logger.info(
            f"Extracted {len(content.text)} characters from {url} "
            f"({len(content.sustainability_headings)} sustainability headings)"
        )
        return content
