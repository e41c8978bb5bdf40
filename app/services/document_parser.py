"""
Source parsing service for PDF, DOCX, HTML and plain-text inputs.

Every parser returns a ParsedDocument with the collapsed body text, the list
of headers found (used later as chunk context) and a small metadata dict.
PDF headings are detected from font sizes; image-only PDFs can be OCR'd with
Tesseract when OCR_ENABLED is set.
"""
from __future__ import annotations

import io
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import fitz  # PyMuPDF
import pytesseract
from bs4 import BeautifulSoup
from docx import Document as DocxDocument
from PIL import Image

from app.config import settings
from app.utils.helpers import collapse_whitespace, unique

logger = logging.getLogger(__name__)

_NON_PRINTABLE_RE = re.compile(r"[^\x20-\x7E\n]")
_TIMESTAMP_PREFIX_RE = re.compile(r"^\d{10,}-")


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class ParsedDocument:
    """
    Output of the SourceParser.

    Attributes:
        text:     Whitespace-collapsed body text, capped at MAX_DOCUMENT_CHARS
                  (MAX_HTML_CHARS for web pages).
        headers:  De-duplicated headings in document order, capped at MAX_HEADERS.
        title:    Best-effort title; empty when the format carries none.
        metadata: Format-specific details (file_type, page_count, word_count, ...).
    """

    text: str
    headers: List[str] = field(default_factory=list)
    title: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


def _finish(text: str, headers: List[str], title: str, metadata: Dict[str, Any],
            max_chars: Optional[int] = None) -> ParsedDocument:
    body = collapse_whitespace(text)[: max_chars or settings.MAX_DOCUMENT_CHARS]
    cleaned = unique([collapse_whitespace(h) for h in headers if h and h.strip()])
    metadata.setdefault("word_count", len(body.split()))
    return ParsedDocument(
        text=body,
        headers=cleaned[: settings.MAX_HEADERS],
        title=title,
        metadata=metadata,
    )


def title_from_path(file_path: str) -> str:
    """Upload file name without directory, timestamp prefix or extension."""
    name = os.path.basename(file_path)
    name = _TIMESTAMP_PREFIX_RE.sub("", name)
    stem, _ext = os.path.splitext(name)
    return stem or "Document"


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class SourceParser:
    """Parses raw source bytes into ParsedDocument objects."""

    def __init__(self) -> None:
        if settings.TESSERACT_CMD:
            pytesseract.pytesseract.tesseract_cmd = settings.TESSERACT_CMD

    def parse_file(self, data: bytes, file_path: str, mime_type: Optional[str] = None) -> ParsedDocument:
        """
        Dispatch on content type first, then on the file extension.

        Args:
            data:      Raw file bytes.
            file_path: Stored path; only the extension and file name are used.
            mime_type: Content type recorded at upload time, if any.

        Raises:
            RuntimeError: Password-protected or unreadable PDF/DOCX.
        """
        mime = (mime_type or "").lower()
        path = file_path.lower()
        title = title_from_path(file_path)

        if "pdf" in mime or path.endswith(".pdf"):
            parsed = self.parse_pdf(data)
        elif "word" in mime or path.endswith(".docx"):
            parsed = self.parse_docx(data)
        elif "text/html" in mime or path.endswith((".html", ".htm")):
            parsed = self.parse_html(data.decode("utf-8", errors="replace"), fallback_title=title)
        elif "text/plain" in mime or "markdown" in mime or path.endswith((".txt", ".md")):
            parsed = self.parse_text(data.decode("utf-8", errors="replace"))
        else:
            parsed = self.parse_generic(data)

        parsed.title = title
        return parsed

    # ------------------------------------------------------------------
    # PDF
    # ------------------------------------------------------------------

    def parse_pdf(self, data: bytes) -> ParsedDocument:
        """Parse a PDF using PyMuPDF; headings come from font size and weight."""
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise RuntimeError(f"Cannot open PDF file: {exc}") from exc

        if doc.needs_pass:
            doc.close()
            raise RuntimeError("PDF is password-protected. Please provide an unlocked copy.")

        raw_meta = doc.metadata or {}

        # ---- Pass 1: body font size ----
        font_sizes: List[float] = []
        for page in doc:
            for block in page.get_text("dict")["blocks"]:
                if block.get("type") != 0:
                    continue
                for line in block.get("lines", []):
                    for span in line.get("spans", []):
                        sz = span.get("size", 0.0)
                        if sz > 0 and span.get("text", "").strip():
                            font_sizes.append(sz)

        body_font_size = _modal_font_size(font_sizes) if font_sizes else 11.0
        # A line is a heading candidate if its font is ≥ 15 % larger than body
        heading_size_threshold = body_font_size * 1.15

        # ---- Pass 2: text + headings ----
        lines_out: List[str] = []
        headers: List[str] = []
        ocr_pages = 0

        for page in doc:
            page_lines: List[str] = []
            for block in page.get_text("dict")["blocks"]:
                if block.get("type") != 0:
                    continue
                for line in block.get("lines", []):
                    max_sz = 0.0
                    is_bold_line = False
                    parts: List[str] = []
                    for span in line.get("spans", []):
                        raw_txt = span.get("text", "")
                        if not raw_txt.strip():
                            continue
                        max_sz = max(max_sz, span.get("size", 0.0))
                        if span.get("flags", 0) & 16:  # bit 4 = bold
                            is_bold_line = True
                        parts.append(raw_txt)

                    line_text = " ".join(parts).strip()
                    if not line_text or re.match(r"^\d{1,4}$", line_text):
                        continue

                    word_count = len(line_text.split())
                    is_heading = (max_sz >= heading_size_threshold and word_count <= 20) or (
                        is_bold_line and max_sz >= body_font_size and word_count <= 15
                    )
                    if is_heading and len(line_text) < 200:
                        headers.append(line_text)
                    page_lines.append(line_text)

            if not page_lines and settings.OCR_ENABLED:
                ocr = self._ocr_page(page)
                if ocr.strip():
                    ocr_pages += 1
                    page_lines.append(ocr)

            lines_out.extend(page_lines)

        page_count = doc.page_count
        doc.close()

        text = "\n".join(lines_out)
        if not headers:
            headers = _capitalised_lines(text)

        metadata: Dict[str, Any] = {
            "file_type": "pdf",
            "page_count": page_count,
            "ocr_pages": ocr_pages,
            "author": raw_meta.get("author", ""),
            "pdf_title": raw_meta.get("title", ""),
        }
        return _finish(text, headers, "", metadata)

    def _ocr_page(self, page: fitz.Page) -> str:
        """Render an entire page at 2× scale and run Tesseract OCR."""
        try:
            pix = page.get_pixmap(matrix=fitz.Matrix(2, 2))
            img = Image.open(io.BytesIO(pix.tobytes("png")))
            return pytesseract.image_to_string(img)
        except Exception as exc:
            logger.warning("Full-page OCR failed on page %d: %s", page.number + 1, exc)
            return ""

    # ------------------------------------------------------------------
    # DOCX
    # ------------------------------------------------------------------

    def parse_docx(self, data: bytes) -> ParsedDocument:
        """Parse a DOCX file; headings come from Heading/Title styles or bold lines."""
        try:
            doc = DocxDocument(io.BytesIO(data))
        except Exception as exc:
            raise RuntimeError(f"Cannot open DOCX file: {exc}") from exc

        texts: List[str] = []
        headers: List[str] = []

        for para in doc.paragraphs:
            text = para.text.strip()
            if not text:
                continue
            style_name = para.style.name if para.style is not None and para.style.name else ""
            is_heading = style_name.startswith(("Heading", "Title")) or _is_implicit_heading(para)
            if is_heading and len(text) < 200:
                headers.append(text)
            texts.append(text)

        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells]
                non_empty = [c for c in cells if c]
                if non_empty:
                    texts.append(" | ".join(non_empty))

        core = doc.core_properties
        metadata: Dict[str, Any] = {
            "file_type": "docx",
            "author": core.author or "",
            "docx_title": core.title or "",
        }
        return _finish(" ".join(texts), headers, "", metadata)

    # ------------------------------------------------------------------
    # HTML / text
    # ------------------------------------------------------------------

    def parse_html(self, html: str, fallback_title: str = "") -> ParsedDocument:
        """Extract title, h1-h3 headers and visible text from a web page."""
        soup = BeautifulSoup(html, "html.parser")
        title_tag = soup.find("title")
        title = title_tag.get_text(strip=True) if title_tag else ""

        headers = [h.get_text(" ", strip=True) for h in soup.find_all(["h1", "h2", "h3"])]

        for tag in soup(["script", "style"]):
            tag.decompose()

        metadata: Dict[str, Any] = {"file_type": "html"}
        return _finish(
            soup.get_text(" "),
            headers,
            title or fallback_title,
            metadata,
            max_chars=settings.MAX_HTML_CHARS,
        )

    def parse_text(self, text: str) -> ParsedDocument:
        headers = [
            line.lstrip("#").strip()
            for line in text.splitlines()
            if line.startswith("#") and line.lstrip("#").strip()
        ]
        return _finish(text, headers, "", {"file_type": "text"})

    def parse_generic(self, data: bytes) -> ParsedDocument:
        """Last resort for unknown formats: keep printable ASCII only."""
        text = _NON_PRINTABLE_RE.sub(" ", data.decode("utf-8", errors="replace"))
        return _finish(text, [], "", {"file_type": "unknown"})


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------

def _modal_font_size(sizes: List[float]) -> float:
    """Return the most frequently occurring font size (proxy for body text)."""
    rounded = [round(s, 1) for s in sizes]
    freq: Dict[float, int] = {}
    for s in rounded:
        freq[s] = freq.get(s, 0) + 1
    return max(freq, key=lambda k: freq[k])


def _capitalised_lines(text: str) -> List[str]:
    """Short all-caps or Capitalised lines; used when no styled headings exist."""
    found: List[str] = []
    for line in re.split(r"[.\n]", text):
        trimmed = line.strip()
        if 3 < len(trimmed) < 100 and (
            trimmed == trimmed.upper() or re.match(r"^[A-Z][a-z]", trimmed)
        ):
            found.append(trimmed)
    return found


def _is_implicit_heading(para) -> bool:
    """Return True if a DOCX paragraph looks like an unlabelled heading.

    Criteria: short text (≤ 15 words) where every non-whitespace run is bold.
    """
    text = para.text.strip()
    if not text or len(text.split()) > 15:
        return False
    runs_with_text = [r for r in para.runs if r.text.strip()]
    return bool(runs_with_text) and all(r.bold for r in runs_with_text)
