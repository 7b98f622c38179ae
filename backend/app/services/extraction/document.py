"""
Document extraction (web pages and attachments).

Chain, in order:
1. Jina reader with the API key (JSON response)
2. Jina reader without authentication (plain-text response, rate limited by Jina)
3. Direct fetch + trafilatura main-text extraction (BeautifulSoup as last resort),
   enabled by DOCUMENT_LOCAL_FALLBACK_ENABLED

Every step returns Err for content shorter than MIN_CONTENT_LENGTH after
cleaning: that little text is a cookie wall or an error page, not a document.
"""

import asyncio
import logging
import re
from typing import Any, Optional, Sequence

import httpx
import trafilatura
from bs4 import BeautifulSoup

from app.core.config import settings
from app.services.extraction.cleaning import clean_content
from app.services.extraction.results import ChainOutcome, Err, Ok, Result, Strategy, run_chain

logger = logging.getLogger(__name__)


class DocumentExtractor:
    """
    Reads arbitrary URLs into plain text.

    Example:
        >>> extractor = DocumentExtractor(http_client, jina_api_key="jina_...")
        >>> outcome = await extractor.extract("https://example.com/essay")
        >>> outcome.value if outcome.ok else outcome.errors
    """

    USER_AGENT = "Airena/1.0 (+https://airena.app/bot)"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        jina_api_key: Optional[str] = None,
        reader_url: Optional[str] = None,
        timeout: Optional[float] = None,
        min_length: Optional[int] = None,
        local_fallback: Optional[bool] = None,
    ):
        self.http = http_client
        self.jina_api_key = jina_api_key if jina_api_key is not None else settings.JINA_API_KEY
        self.reader_url = (reader_url or settings.JINA_READER_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.DOCUMENT_EXTRACTION_TIMEOUT
        self.min_length = min_length if min_length is not None else settings.MIN_CONTENT_LENGTH
        self.local_fallback = (
            local_fallback if local_fallback is not None else settings.DOCUMENT_LOCAL_FALLBACK_ENABLED
        )

        if self.timeout <= 0:
            raise ValueError("Document extraction timeout must be positive")

    @property
    def strategies(self) -> Sequence[Strategy]:
        """Ordered fallback chain for this configuration."""
        chain: list[Strategy] = []
        if self.jina_api_key:
            chain.append(self.jina_authenticated)
        chain.append(self.jina_unauthenticated)
        if self.local_fallback:
            chain.append(self.direct_html)
        return chain

    async def extract(self, url: str) -> ChainOutcome:
        """
        Run the document chain for one URL.

        Returns:
            ChainOutcome whose value is cleaned text of at least min_length chars
        """
        if not url or not url.startswith(("http://", "https://")):
            return ChainOutcome(errors=[f"not a web URL: {url!r}"])
        return await run_chain(self.strategies, url)

    def _accept(self, text: Optional[str], source: str) -> Result:
        cleaned = clean_content(text)
        if len(cleaned) < self.min_length:
            return Err(f"{source} returned {len(cleaned)} chars (< {self.min_length})")
        return Ok(cleaned)

    # ========================================
    # Strategies
    # ========================================

    async def jina_authenticated(self, url: str) -> Result:
        """Jina reader with bearer token, JSON response."""
        try:
            response = await self.http.get(
                f"{self.reader_url}/{url}",
                headers={
                    "Authorization": f"Bearer {self.jina_api_key}",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            return Err(f"reader request failed: {type(e).__name__}: {e}")

        return self._accept(self._parse_reader_response(response), "reader")

    async def jina_unauthenticated(self, url: str) -> Result:
        """Jina reader without credentials, plain-text response."""
        try:
            response = await self.http.get(f"{self.reader_url}/{url}", timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            return Err(f"unauthenticated reader request failed: {type(e).__name__}: {e}")

        return self._accept(self._parse_reader_response(response), "unauthenticated reader")

    async def direct_html(self, url: str) -> Result:
        """Fetch the page ourselves and pull the main text out of the HTML."""
        try:
            response = await self.http.get(
                url,
                headers={"User-Agent": self.USER_AGENT},
                timeout=self.timeout,
                follow_redirects=True,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            return Err(f"page request failed: {type(e).__name__}: {e}")

        content_type = response.headers.get("content-type", "")
        if "html" not in content_type and "text" not in content_type:
            return Err(f"unsupported content type {content_type or 'unknown'}")

        text = await asyncio.to_thread(self._html_to_text, response.text)
        return self._accept(text, "page")

    # ========================================
    # Parsing Helpers
    # ========================================

    @staticmethod
    def _parse_reader_response(response: httpx.Response) -> str:
        """
        Pull the text out of a reader response.

        JSON responses look like {"code": 200, "data": {"content": "...", "text": "..."}};
        anything that is not JSON is the plain-text rendition.
        """
        try:
            body: Any = response.json()
        except ValueError:
            return response.text

        if isinstance(body, dict):
            data = body.get("data")
            if isinstance(data, dict):
                return data.get("content") or data.get("text") or ""
            if isinstance(data, str):
                return data
            return ""
        if isinstance(body, str):
            return body
        return ""

    @staticmethod
    def _html_to_text(html: str) -> str:
        text = trafilatura.extract(html, include_comments=False, include_tables=False)
        if text:
            return text

        soup = BeautifulSoup(html, "lxml")
        for tag in soup(["script", "style", "nav", "header", "footer", "aside"]):
            tag.decompose()

        main = soup.find("article") or soup.find("main")
        if main:
            return main.get_text(separator="\n", strip=True)

        paragraphs = soup.find_all("p")
        return "\n\n".join(p.get_text(strip=True) for p in paragraphs)


def guess_pdf_title(title: str) -> str:
    """Append " (PDF)" unless the title already mentions it."""
    if re.search(r"\bpdf\b", title, flags=re.IGNORECASE):
        return title
    return f"{title} (PDF)"
