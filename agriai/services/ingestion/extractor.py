"""Multi-format text extraction.

Converts raw bytes of a known MIME type into plain text.  Dispatch is purely
by MIME type:

    application/pdf                      -> PyMuPDF (fitz), page by page
    Word (.docx / application/msword)    -> python-docx, paragraph by paragraph
    text/plain, text/markdown            -> UTF-8 decode
    text/html, application/xhtml+xml     -> BeautifulSoup with boilerplate stripped
    application/rtf, text/rtf            -> striprtf

Remote documents go through :meth:`TextExtractor.fetch_url`, which fetches
with httpx and extracts the main content with trafilatura, falling back to
the same BeautifulSoup stripping used for uploaded HTML.

Unknown MIME types raise :class:`UnsupportedFormatError`; corrupt input or
an empty result raises :class:`ExtractionFailedError`.
"""

from __future__ import annotations

import io
import re
from collections.abc import Callable

import fitz  # PyMuPDF
import httpx
import structlog
import trafilatura
from bs4 import BeautifulSoup
from docx import Document as DocxDocument
from striprtf.striprtf import rtf_to_text

from agriai.utils.errors import ExtractionFailedError, UnsupportedFormatError

logger = structlog.get_logger(logger_name=__name__)

USER_AGENT = "AgriAI Document Processor/1.0"

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Elements that never carry document content.
_BOILERPLATE_SELECTORS = (
    "script", "style", "noscript", "nav", "header", "footer", "aside", ".advertisement",
)
# Containers that usually hold the main content, most specific first.
_CONTENT_SELECTORS = ("main", "article", ".content", ".post", ".entry")

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_mime_type(mime_type: str) -> str:
    """Lowercase *mime_type* and drop parameters such as ``charset``."""
    return mime_type.split(";", 1)[0].strip().lower()


def html_to_text(html: str) -> str:
    """Strip boilerplate elements and return collapsed main-content text."""
    soup = BeautifulSoup(html, "html.parser")
    for selector in _BOILERPLATE_SELECTORS:
        for element in soup.select(selector):
            element.decompose()

    container = None
    for selector in _CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is not None and container.get_text(strip=True):
            break
        container = None
    if container is None:
        container = soup.body or soup

    text = container.get_text(separator=" ")
    return _WHITESPACE_RE.sub(" ", text).strip()


class TextExtractor:
    """Extracts plain text from uploaded blobs and remote URLs.

    Parameters
    ----------
    http_client:
        Shared ``httpx.AsyncClient`` for URL fetches.  When omitted a client
        is created per fetch.
    timeout:
        Request timeout in seconds for URL fetches.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._http_client = http_client
        self._timeout = timeout
        self._handlers: dict[str, Callable[[bytes], str]] = {
            "application/pdf": self._extract_pdf,
            DOCX_MIME: self._extract_word,
            "application/msword": self._extract_word,
            "text/plain": self._extract_plain,
            "text/markdown": self._extract_plain,
            "text/html": self._extract_html,
            "application/xhtml+xml": self._extract_html,
            "application/rtf": self._extract_rtf,
            "text/rtf": self._extract_rtf,
        }

    @property
    def supported_mime_types(self) -> list[str]:
        return sorted(self._handlers)

    def supports(self, mime_type: str) -> bool:
        return normalize_mime_type(mime_type) in self._handlers

    def extract_text(self, blob: bytes, mime_type: str) -> str:
        """Return the plain text of *blob*.

        CPU-bound; async callers should run it in a worker thread.

        Raises
        ------
        UnsupportedFormatError
            If *mime_type* has no handler.
        ExtractionFailedError
            If the content is malformed or yields no text.
        """
        normalized = normalize_mime_type(mime_type)
        handler = self._handlers.get(normalized)
        if handler is None:
            raise UnsupportedFormatError(message=f"Unsupported file type: {mime_type}")

        try:
            text = handler(blob)
        except (UnsupportedFormatError, ExtractionFailedError):
            raise
        except Exception as exc:
            raise ExtractionFailedError(
                message=f"Could not extract {normalized} content: {exc}",
            ) from exc

        text = text.strip()
        if not text:
            raise ExtractionFailedError(message=f"No text extracted from {normalized} content")

        logger.debug("text_extracted", mime_type=normalized, chars=len(text))
        return text

    async def fetch_url(self, url: str) -> str:
        """Fetch *url* and return its main text content.

        Raises
        ------
        ExtractionFailedError
            On network errors, non-2xx responses, or empty pages.
        """
        headers = {"User-Agent": USER_AGENT}
        try:
            if self._http_client is not None:
                response = await self._http_client.get(
                    url, headers=headers, timeout=self._timeout, follow_redirects=True
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                    response = await client.get(url, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ExtractionFailedError(
                message=f"Timeout fetching {url}", provider_name="http"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise ExtractionFailedError(
                message=f"HTTP {exc.response.status_code} for {url}", provider_name="http"
            ) from exc
        except httpx.HTTPError as exc:
            raise ExtractionFailedError(
                message=f"HTTP error fetching {url}: {exc}", provider_name="http"
            ) from exc

        html = response.text
        text = trafilatura.extract(html, include_comments=False, include_tables=True)
        if not text:
            logger.info("trafilatura_extraction_empty", url=url)
            text = html_to_text(html)
        if not text or not text.strip():
            raise ExtractionFailedError(message=f"No content extracted from {url}")

        logger.info("url_fetched", url=url, chars=len(text))
        return text.strip()

    # ------------------------------------------------------------------
    # Format handlers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_pdf(blob: bytes) -> str:
        try:
            doc = fitz.open(stream=blob, filetype="pdf")
        except Exception as exc:
            raise ExtractionFailedError(message=f"Cannot open PDF: {exc}") from exc
        try:
            pages = [page.get_text() for page in doc]
        finally:
            doc.close()
        return "\n\n".join(p.strip() for p in pages if p.strip())

    @staticmethod
    def _extract_word(blob: bytes) -> str:
        # Legacy binary .doc files are not zip archives; python-docx rejects them.
        doc = DocxDocument(io.BytesIO(blob))
        paragraphs = [p.text for p in doc.paragraphs if p.text.strip()]
        return "\n\n".join(paragraphs)

    @staticmethod
    def _extract_plain(blob: bytes) -> str:
        try:
            return blob.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ExtractionFailedError(message=f"Text is not valid UTF-8: {exc}") from exc

    @staticmethod
    def _extract_html(blob: bytes) -> str:
        return html_to_text(blob.decode("utf-8", errors="replace"))

    @staticmethod
    def _extract_rtf(blob: bytes) -> str:
        content = blob.decode("utf-8", errors="replace")
        if not content.lstrip().startswith("{\\rtf"):
            raise ExtractionFailedError(message="Content is not an RTF document")
        return rtf_to_text(content)
