"""Document extraction: raw bytes (or a URL) to normalised plain text.

Supported inputs:

* PDF via ``pypdf``
* Word (``.docx``) via ``python-docx``
* plain text / Markdown (UTF-8)
* HTML pages fetched with ``requests`` and cleaned with BeautifulSoup
* audio / video as placeholder text (no transcription)
"""

from __future__ import annotations

import io
import logging
import re
import time
import unicodedata
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from knowledge_rag.config import Settings, get_settings
from knowledge_rag.errors import ExtractionFailure, UnsupportedFileType, ValidationError
from knowledge_rag.ingestion.models import Extraction, SourceType

logger = logging.getLogger(__name__)

SUPPORTED_TYPES: dict[str, str] = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "txt": "text/plain",
    "md": "text/markdown",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "mp4": "video/mp4",
    "avi": "video/avi",
    "html": "text/html",
    "htm": "text/html",
}

_EXTENSION_SOURCE_TYPES: dict[str, SourceType] = {
    "pdf": SourceType.PDF,
    "doc": SourceType.DOCX,
    "docx": SourceType.DOCX,
    "txt": SourceType.TEXT,
    "md": SourceType.TEXT,
    "mp3": SourceType.AUDIO,
    "wav": SourceType.AUDIO,
    "mp4": SourceType.VIDEO,
    "avi": SourceType.VIDEO,
    "html": SourceType.WEBPAGE,
    "htm": SourceType.WEBPAGE,
}

_MIMETYPE_EXTENSIONS: dict[str, str] = {mime: ext for ext, mime in reversed(SUPPORTED_TYPES.items())}

_USER_AGENT = "Mozilla/5.0 (compatible; knowledge-rag/0.1; +https://example.invalid/bot)"

_BOILERPLATE_TAGS = ["script", "style", "nav", "footer", "header", "aside", "noscript", "iframe"]


# ── helpers ──────────────────────────────────────────────────────────


def normalise_text(text: str) -> str:
    """Unicode NFC, collapse whitespace, strip control chars."""
    text = unicodedata.normalize("NFC", text)
    text = re.sub(r"[^\S\n]+", " ", text)  # collapse spaces (keep \n)
    text = re.sub(r"\n{3,}", "\n\n", text)  # max two consecutive newlines
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)
    return text.strip()


def is_url(value: str | None) -> bool:
    if not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def file_extension(filename: str) -> str:
    return PurePosixPath(filename).suffix.lower().lstrip(".")


def _word_count(text: str) -> int:
    return len(text.split())


def _html_title(soup: BeautifulSoup) -> str:
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    h1 = soup.find("h1")
    if h1:
        return h1.get_text(strip=True)
    return ""


def _html_description(soup: BeautifulSoup) -> str:
    tag = soup.find("meta", attrs={"name": "description"})
    if tag and tag.get("content"):
        return str(tag["content"]).strip()
    return ""


def html_to_text(html: str) -> tuple[str, BeautifulSoup]:
    """Strip boiler-plate tags and return normalised body text with the parsed soup."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_BOILERPLATE_TAGS):
        tag.decompose()
    return normalise_text(soup.get_text(separator="\n", strip=True)), soup


# ── extractor ────────────────────────────────────────────────────────


class DocumentExtractor:
    """Validate uploads and extract their text.

    Parameters
    ----------
    max_file_size:
        Upper bound on upload size in bytes.
    fetch_timeout:
        Per-request timeout (seconds) for URL sources.
    fetch_retries:
        Attempts for transient HTTP errors.
    sleep:
        Back-off sleep; injected for tests.
    """

    def __init__(
        self,
        *,
        max_file_size: int = 50 * 1024 * 1024,
        fetch_timeout: int = 30,
        fetch_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_file_size = max_file_size
        self.fetch_timeout = fetch_timeout
        self.fetch_retries = max(1, fetch_retries)
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> DocumentExtractor:
        settings = settings or get_settings()
        return cls(
            max_file_size=settings.max_file_size_bytes,
            fetch_timeout=settings.url_fetch_timeout,
            fetch_retries=settings.url_fetch_retries,
        )

    # -- validation -----------------------------------------------------------

    def is_supported(self, mimetype: str | None, filename: str) -> bool:
        if is_url(filename):
            return True
        return file_extension(filename) in SUPPORTED_TYPES or (mimetype or "") in _MIMETYPE_EXTENSIONS

    def validate(self, data: bytes | None, mimetype: str | None, filename: str) -> None:
        """Reject unsupported types, empty buffers and oversized uploads.

        Raises
        ------
        UnsupportedFileType
            Neither the extension nor the mimetype is supported.
        ValidationError
            Missing filename, empty buffer or buffer over the size limit.
        """
        if not filename or not filename.strip():
            raise ValidationError("A filename is required", field="filename")
        if not self.is_supported(mimetype, filename):
            raise UnsupportedFileType(filename, mimetype)
        if is_url(filename):
            return
        if not data:
            raise ValidationError("File is empty", field="file")
        if len(data) > self.max_file_size:
            size_mb = len(data) / (1024 * 1024)
            limit_mb = self.max_file_size / (1024 * 1024)
            raise ValidationError(
                f"File size ({size_mb:.2f}MB) exceeds maximum limit of {limit_mb:.0f}MB",
                field="file",
                details={"size": len(data), "limit": self.max_file_size},
            )

    def source_type_for(self, mimetype: str | None, filename: str) -> SourceType:
        if is_url(filename):
            return SourceType.WEBPAGE
        ext = self._resolve_extension(mimetype, filename)
        return _EXTENSION_SOURCE_TYPES[ext]

    # -- extraction -----------------------------------------------------------

    def extract(self, data: bytes | None, mimetype: str | None, filename: str) -> Extraction:
        """Extract normalised text from *data* (or fetch *filename* if it is a URL).

        Raises
        ------
        UnsupportedFileType
            The type cannot be handled.
        ExtractionFailure
            The payload is corrupt or the URL could not be fetched.
        """
        if is_url(filename):
            return self.extract_url(filename)

        ext = self._resolve_extension(mimetype, filename)
        try:
            if ext == "pdf":
                return self._extract_pdf(data or b"")
            if ext in ("doc", "docx"):
                return self._extract_word(data or b"", ext)
            if ext in ("txt", "md"):
                return self._extract_plain(data or b"", ext)
            if ext in ("html", "htm"):
                return self._extract_html_bytes(data or b"", filename)
            if ext in ("mp3", "wav"):
                return self._placeholder(data or b"", filename, ext, SourceType.AUDIO)
            if ext in ("mp4", "avi"):
                return self._placeholder(data or b"", filename, ext, SourceType.VIDEO)
        except ExtractionFailure:
            raise
        except Exception as exc:
            logger.warning("Content extraction failed for %s", filename, exc_info=True)
            raise ExtractionFailure(
                f"Failed to extract content from {ext}: {exc}",
                {"filename": filename, "format": ext},
            ) from exc
        raise UnsupportedFileType(filename, mimetype)

    def extract_url(self, url: str) -> Extraction:
        """Download one URL with retries and extract its readable text."""
        response = self._fetch(url)
        text, soup = html_to_text(response.text)
        domain = urlparse(url).hostname or ""
        metadata: dict[str, Any] = {
            "url": url,
            "title": _html_title(soup) or domain,
            "description": _html_description(soup),
            "content_type": response.headers.get("content-type", "text/html"),
            "status_code": response.status_code,
            "word_count": _word_count(text),
            "character_count": len(text),
            "scraped_at": datetime.now(timezone.utc).isoformat(),
            "domain": domain,
        }
        return Extraction(text=text, source_type=SourceType.WEBPAGE, format="html", metadata=metadata)

    # -- internals ------------------------------------------------------------

    def _resolve_extension(self, mimetype: str | None, filename: str) -> str:
        ext = file_extension(filename)
        if ext in SUPPORTED_TYPES:
            return ext
        ext = _MIMETYPE_EXTENSIONS.get(mimetype or "")
        if ext is None:
            raise UnsupportedFileType(filename, mimetype)
        return ext

    def _fetch(self, url: str) -> requests.Response:
        last_exc: Exception | None = None
        for attempt in range(1, self.fetch_retries + 1):
            try:
                response = requests.get(
                    url,
                    headers={"User-Agent": _USER_AGENT},
                    timeout=self.fetch_timeout,
                )
                response.raise_for_status()
                return response
            except requests.RequestException as exc:
                last_exc = exc
                if attempt < self.fetch_retries:
                    wait = 2**attempt
                    logger.warning(
                        "Retry %d/%d for %s (wait %ds): %s", attempt, self.fetch_retries, url, wait, exc
                    )
                    self._sleep(wait)
        raise ExtractionFailure(
            f"Failed to fetch {url} after {self.fetch_retries} attempts: {last_exc}",
            {"url": url},
        ) from last_exc

    def _extract_pdf(self, data: bytes) -> Extraction:
        from pypdf import PdfReader

        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
        text = normalise_text("\n\n".join(pages))
        info = {str(k).lstrip("/"): str(v) for k, v in (reader.metadata or {}).items()}
        return Extraction(
            text=text,
            source_type=SourceType.PDF,
            format="pdf",
            metadata={
                "pages": len(reader.pages),
                "info": info,
                "word_count": _word_count(text),
                "character_count": len(text),
            },
        )

    def _extract_word(self, data: bytes, ext: str) -> Extraction:
        from docx import Document

        doc = Document(io.BytesIO(data))
        text = normalise_text("\n".join(p.text for p in doc.paragraphs))
        return Extraction(
            text=text,
            source_type=SourceType.DOCX,
            format=ext,
            metadata={"word_count": _word_count(text), "character_count": len(text)},
        )

    def _extract_plain(self, data: bytes, ext: str) -> Extraction:
        raw = data.decode("utf-8", errors="replace")
        text = normalise_text(raw)
        return Extraction(
            text=text,
            source_type=SourceType.TEXT,
            format=ext,
            metadata={
                "word_count": _word_count(text),
                "character_count": len(text),
                "line_count": len(raw.splitlines()),
            },
        )

    def _extract_html_bytes(self, data: bytes, filename: str) -> Extraction:
        text, soup = html_to_text(data.decode("utf-8", errors="replace"))
        return Extraction(
            text=text,
            source_type=SourceType.WEBPAGE,
            format="html",
            metadata={
                "title": _html_title(soup) or filename,
                "description": _html_description(soup),
                "word_count": _word_count(text),
                "character_count": len(text),
            },
        )

    def _placeholder(self, data: bytes, filename: str, ext: str, source_type: SourceType) -> Extraction:
        if source_type is SourceType.AUDIO:
            text = f"[Audio file: {filename}] - Content will be transcribed using speech-to-text service"
            extra = {"needs_transcription": True}
        else:
            text = f"[Video file: {filename}] - Audio track will be extracted and transcribed"
            extra = {"needs_transcription": True, "needs_audio_extraction": True}
        return Extraction(
            text=text,
            source_type=source_type,
            format=ext,
            metadata={"size": len(data), "duration": "unknown", **extra},
        )
