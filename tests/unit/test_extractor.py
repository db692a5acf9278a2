"""Unit tests for upload validation and text extraction."""

from __future__ import annotations

import io
from unittest.mock import MagicMock, patch

import pytest
import requests

from knowledge_rag.errors import ExtractionFailure, UnsupportedFileType, ValidationError
from knowledge_rag.ingestion.extractor import DocumentExtractor, html_to_text, is_url, normalise_text
from knowledge_rag.ingestion.models import SourceType


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def extractor(sleeps: list[float]) -> DocumentExtractor:
    return DocumentExtractor(max_file_size=1024, fetch_retries=3, sleep=sleeps.append)


def _response(html: str, status: int = 200) -> MagicMock:
    response = MagicMock()
    response.text = html
    response.status_code = status
    response.headers = {"content-type": "text/html; charset=utf-8"}
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    else:
        response.raise_for_status.return_value = None
    return response


# ── Helpers ────────────────────────────────────────────────────────────


class TestHelpers:
    def test_normalise_collapses_whitespace(self) -> None:
        assert normalise_text("a  \t b\n\n\n\nc\x07") == "a b\n\nc"

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("https://example.com/x", True),
            ("http://example.com", True),
            ("ftp://example.com", False),
            ("notes.txt", False),
            ("", False),
        ],
    )
    def test_is_url(self, value: str, expected: bool) -> None:
        assert is_url(value) is expected

    def test_html_to_text_drops_boilerplate(self) -> None:
        text, _ = html_to_text(
            "<html><body><nav>menu</nav><script>var x;</script><p>Body text</p><footer>foot</footer></body></html>"
        )
        assert text == "Body text"


# ── Validation ─────────────────────────────────────────────────────────


class TestValidate:
    def test_accepts_supported_extension(self, extractor: DocumentExtractor) -> None:
        extractor.validate(b"hello", None, "notes.md")

    def test_accepts_supported_mimetype_without_extension(self, extractor: DocumentExtractor) -> None:
        extractor.validate(b"%PDF", "application/pdf", "upload")

    def test_rejects_unknown_type(self, extractor: DocumentExtractor) -> None:
        with pytest.raises(UnsupportedFileType):
            extractor.validate(b"data", "application/zip", "archive.zip")

    def test_rejects_empty_buffer(self, extractor: DocumentExtractor) -> None:
        with pytest.raises(ValidationError, match="empty"):
            extractor.validate(b"", "text/plain", "notes.txt")

    def test_rejects_oversized_buffer(self, extractor: DocumentExtractor) -> None:
        with pytest.raises(ValidationError) as exc_info:
            extractor.validate(b"x" * 2048, "text/plain", "notes.txt")
        assert exc_info.value.details["limit"] == 1024

    def test_rejects_missing_filename(self, extractor: DocumentExtractor) -> None:
        with pytest.raises(ValidationError):
            extractor.validate(b"x", "text/plain", "")

    def test_url_needs_no_buffer(self, extractor: DocumentExtractor) -> None:
        extractor.validate(None, None, "https://example.com/page")

    @pytest.mark.parametrize(
        "filename,expected",
        [
            ("a.pdf", SourceType.PDF),
            ("a.docx", SourceType.DOCX),
            ("a.txt", SourceType.TEXT),
            ("a.mp3", SourceType.AUDIO),
            ("a.mp4", SourceType.VIDEO),
            ("https://example.com", SourceType.WEBPAGE),
        ],
    )
    def test_source_type_for(self, extractor: DocumentExtractor, filename: str, expected: SourceType) -> None:
        assert extractor.source_type_for(None, filename) is expected


# ── Extraction ─────────────────────────────────────────────────────────


class TestExtract:
    def test_plain_text(self, extractor: DocumentExtractor) -> None:
        result = extractor.extract(b"line one\nline   two\n", "text/plain", "notes.txt")
        assert result.text == "line one\nline two"
        assert result.source_type is SourceType.TEXT
        assert result.format == "txt"
        assert result.metadata["line_count"] == 2
        assert result.metadata["word_count"] == 4

    def test_html_bytes(self, extractor: DocumentExtractor) -> None:
        html = b"<html><head><title>Guide</title></head><body><p>Read me</p></body></html>"
        result = extractor.extract(html, "text/html", "guide.html")
        assert "Read me" in result.text
        assert result.source_type is SourceType.WEBPAGE
        assert result.metadata["title"] == "Guide"

    def test_docx(self, extractor: DocumentExtractor) -> None:
        from docx import Document

        doc = Document()
        doc.add_paragraph("First paragraph.")
        doc.add_paragraph("Second paragraph.")
        buffer = io.BytesIO()
        doc.save(buffer)

        result = extractor.extract(buffer.getvalue(), None, "report.docx")

        assert result.text == "First paragraph.\nSecond paragraph."
        assert result.source_type is SourceType.DOCX

    def test_corrupt_pdf(self, extractor: DocumentExtractor) -> None:
        with pytest.raises(ExtractionFailure):
            extractor.extract(b"not really a pdf", "application/pdf", "broken.pdf")

    def test_audio_placeholder(self, extractor: DocumentExtractor) -> None:
        result = extractor.extract(b"ID3", "audio/mpeg", "talk.mp3")
        assert result.source_type is SourceType.AUDIO
        assert "talk.mp3" in result.text
        assert result.metadata["needs_transcription"] is True

    def test_video_placeholder(self, extractor: DocumentExtractor) -> None:
        result = extractor.extract(b"\x00\x00", "video/mp4", "demo.mp4")
        assert result.source_type is SourceType.VIDEO
        assert result.metadata["needs_audio_extraction"] is True


# ── URL fetching ───────────────────────────────────────────────────────


class TestExtractUrl:
    def test_page_metadata(self, extractor: DocumentExtractor) -> None:
        html = (
            "<html><head><title>Docs</title><meta name='description' content='All the docs'></head>"
            "<body><header>site</header><p>Useful content</p></body></html>"
        )
        with patch("knowledge_rag.ingestion.extractor.requests.get", return_value=_response(html)):
            result = extractor.extract_url("https://docs.example.com/start")

        assert "Useful content" in result.text
        assert "site" not in result.text
        assert result.metadata["title"] == "Docs"
        assert result.metadata["description"] == "All the docs"
        assert result.metadata["domain"] == "docs.example.com"
        assert result.metadata["status_code"] == 200

    def test_title_falls_back_to_domain(self, extractor: DocumentExtractor) -> None:
        with patch("knowledge_rag.ingestion.extractor.requests.get", return_value=_response("<p>x</p>")):
            result = extractor.extract_url("https://plain.example.com/")
        assert result.metadata["title"] == "plain.example.com"

    def test_retries_then_succeeds(self, extractor: DocumentExtractor, sleeps: list[float]) -> None:
        side_effect = [requests.Timeout("slow"), _response("<p>ok</p>")]
        with patch("knowledge_rag.ingestion.extractor.requests.get", side_effect=side_effect) as mock_get:
            result = extractor.extract_url("https://example.com/")
        assert result.text == "ok"
        assert mock_get.call_count == 2
        assert sleeps == [2]

    def test_gives_up_after_retries(self, extractor: DocumentExtractor, sleeps: list[float]) -> None:
        with patch(
            "knowledge_rag.ingestion.extractor.requests.get", return_value=_response("", status=503)
        ) as mock_get:
            with pytest.raises(ExtractionFailure, match="after 3 attempts"):
                extractor.extract_url("https://example.com/")
        assert mock_get.call_count == 3
        assert sleeps == [2, 4]
