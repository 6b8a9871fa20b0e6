"""
Document Text Extractor

Turns uploaded file bytes into plain text for chunking:

- text/plain, text/markdown: decoded as UTF-8
- application/pdf: PyMuPDF page text
- DOCX: python-docx paragraphs and table cells

Scanned PDFs with no text layer are rejected rather than indexed empty.
"""

import io
import re
import logging
from pathlib import Path

from .errors import ExtractionError

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIME = "text/plain"
MARKDOWN_MIME = "text/markdown"

SUPPORTED_MIME_TYPES = frozenset({PDF_MIME, DOCX_MIME, TEXT_MIME, MARKDOWN_MIME})

_SUFFIX_MIME_TYPES = {
    ".pdf": PDF_MIME,
    ".docx": DOCX_MIME,
    ".txt": TEXT_MIME,
    ".text": TEXT_MIME,
    ".md": MARKDOWN_MIME,
    ".markdown": MARKDOWN_MIME,
}


def guess_mime_type(filename: str) -> str:
    """Map a file name to one of the supported MIME types."""
    suffix = Path(filename).suffix.lower()
    return _SUFFIX_MIME_TYPES.get(suffix, "application/octet-stream")


class TextExtractor:
    """
    Extracts plain text from supported document formats.

    Raises ExtractionError for unsupported MIME types, unreadable files and
    files that contain no extractable text.
    """

    def __init__(self, min_text_chars: int = 1):
        self.min_text_chars = min_text_chars
        self._handlers = {
            TEXT_MIME: self._extract_plain,
            MARKDOWN_MIME: self._extract_plain,
            PDF_MIME: self._extract_pdf,
            DOCX_MIME: self._extract_docx,
        }

    def supports(self, mime_type: str) -> bool:
        return mime_type in self._handlers

    def extract_text(self, data: bytes, mime_type: str) -> str:
        """
        Extract text from file bytes.

        Args:
            data: Raw file content
            mime_type: MIME type recorded at upload time

        Returns:
            Normalised plain text

        Raises:
            ExtractionError: unsupported type, corrupt file, or no text
        """
        handler = self._handlers.get(mime_type)
        if handler is None:
            raise ExtractionError(f"Unsupported file type: {mime_type}", mime_type=mime_type)

        try:
            raw_text = handler(data)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Failed to extract text: {e}", mime_type=mime_type) from e

        text = self._normalize(raw_text)
        if len(text.strip()) < self.min_text_chars:
            raise ExtractionError(
                "No extractable text found (scanned or empty document?)",
                mime_type=mime_type,
            )

        logger.info(f"Extracted {len(text)} characters of text ({mime_type})")
        return text

    def _extract_plain(self, data: bytes) -> str:
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ExtractionError(f"Text file is not valid UTF-8: {e}") from e

    def _extract_pdf(self, data: bytes) -> str:
        import fitz  # PyMuPDF

        pages = []
        with fitz.open(stream=data, filetype="pdf") as doc:
            if doc.needs_pass:
                raise ExtractionError("PDF is password protected")
            for page in doc:
                page_text = page.get_text().strip()
                if page_text:
                    pages.append(page_text)
        return "\n\n".join(pages)

    def _extract_docx(self, data: bytes) -> str:
        from docx import Document

        doc = Document(io.BytesIO(data))
        blocks = [p.text.strip() for p in doc.paragraphs if p.text.strip()]
        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    blocks.append(" | ".join(cells))
        return "\n\n".join(blocks)

    def _normalize(self, text: str) -> str:
        text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
        # Collapse runs of blank lines into a single paragraph break
        text = re.sub(r"\n[ \t]*\n(?:[ \t]*\n)+", "\n\n", text)
        return text.strip()
