"""
Format-dispatched text extraction.

extract() returns an ExtractionResult, or an UnsupportedFormat value for files
we cannot read at all (the caller decides whether to skip them). A supported
non-PDF file that yields no text raises ExtractionFailure; PDFs may come back
empty so OCR can take over.
"""
import io
import os
from dataclasses import dataclass
from typing import Union

from docx import Document as DocxDocument
from openpyxl import load_workbook
from pptx import Presentation
from pypdf import PdfReader

from .errors import ExtractionFailure
from .logging_config import logger

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PPTX_MIME = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

TEXT_EXTENSIONS = (".txt", ".md", ".csv")
# Table and sheet cells; must survive sanitize(), which strips "|" and turns tabs into spaces
CELL_SEPARATOR = " ; "


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    segment_count: int
    source_type: str


@dataclass(frozen=True)
class UnsupportedFormat:
    """Returned (not raised) when a file type has no extractor."""
    mime_type: str
    extension: str


def detect_kind(mime_type: str, file_name: str) -> str:
    """Map a declared MIME type / file name to one of pdf, docx, pptx, xlsx, text, or ''."""
    mime = (mime_type or "").split(";")[0].strip().lower()
    ext = os.path.splitext(file_name or "")[1].lower()

    if mime == PDF_MIME or ext == ".pdf":
        return "pdf"
    if mime == DOCX_MIME or ext == ".docx":
        return "docx"
    if mime == PPTX_MIME or ext == ".pptx":
        return "pptx"
    if mime == XLSX_MIME or ext == ".xlsx":
        return "xlsx"
    if mime.startswith("text/") or ext in TEXT_EXTENSIONS:
        return "text"
    return ""


def read_text_from_pdf(data: bytes) -> ExtractionResult:
    reader = PdfReader(io.BytesIO(data))
    parts = []
    pages_seen = 0
    for page_number, page in enumerate(reader.pages, start=1):
        pages_seen = max(pages_seen, page_number)
        page_text = page.extract_text() or ""
        if page_text.strip():
            parts.append(page_text)
    # Scanned PDFs come back empty here; the quality gate sends them to OCR.
    text = "\n\n".join(parts)
    return ExtractionResult(text=text, segment_count=pages_seen, source_type="pdf")


def extract_table_text(table) -> str:
    """
    Convert a DOCX table to readable text format.
    Each row becomes one line with cells separated by CELL_SEPARATOR.
    """
    lines = []
    for row in table.rows:
        cells = [cell.text.strip() for cell in row.cells]
        if not any(cells):
            continue
        lines.append(CELL_SEPARATOR.join(cells))
    return "\n".join(lines)


def read_text_from_docx(data: bytes) -> str:
    doc = DocxDocument(io.BytesIO(data))
    parts = []

    for para in doc.paragraphs:
        text = para.text.strip()
        if text:
            parts.append(text)

    for table in doc.tables:
        table_text = extract_table_text(table)
        if table_text:
            parts.append(table_text)

    return "\n\n".join(parts)


def read_text_from_pptx(data: bytes) -> str:
    prs = Presentation(io.BytesIO(data))
    parts = []
    for slide in prs.slides:
        for shape in slide.shapes:
            if getattr(shape, "has_text_frame", False) and shape.text_frame.text.strip():
                parts.append(shape.text_frame.text.strip())
    return "\n\n".join(parts)


def read_text_from_xlsx(data: bytes) -> str:
    wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    parts = []
    try:
        for ws in wb.worksheets:
            for row in ws.iter_rows(values_only=True):
                cells = [str(c) for c in row if c is not None and str(c).strip()]
                if cells:
                    parts.append(CELL_SEPARATOR.join(cells))
    finally:
        wb.close()
    return "\n".join(parts)


_OFFICE_READERS = {
    "docx": read_text_from_docx,
    "pptx": read_text_from_pptx,
    "xlsx": read_text_from_xlsx,
}


def read_text_from_txt(data: bytes) -> ExtractionResult:
    text = data.decode("utf-8", errors="ignore")
    if not text.strip():
        raise ExtractionFailure("Text file is empty or contains no readable content")
    return ExtractionResult(text=text, segment_count=1, source_type="text")


def extract(data: bytes, mime_type: str, file_name: str = "") -> Union[ExtractionResult, UnsupportedFormat]:
    """
    Extract raw text from file bytes.

    Args:
        data: File contents
        mime_type: Declared MIME type (may be empty)
        file_name: Original file name, used when the MIME type is missing or generic

    Returns:
        ExtractionResult, or UnsupportedFormat for types without an extractor

    Raises:
        ExtractionFailure: the file is corrupt, or a non-PDF file yielded no text
    """
    kind = detect_kind(mime_type, file_name)
    ext = os.path.splitext(file_name or "")[1].lower()

    if not kind:
        logger.warning("Unsupported file format", mime_type=mime_type, extension=ext)
        return UnsupportedFormat(mime_type=mime_type or "", extension=ext)

    if kind == "text":
        return read_text_from_txt(data)

    try:
        if kind == "pdf":
            result = read_text_from_pdf(data)
        else:
            text = _OFFICE_READERS[kind](data)
            if not text.strip():
                raise ExtractionFailure(f"No text extracted from {kind} document")
            result = ExtractionResult(text=text, segment_count=1, source_type=kind)
    except ExtractionFailure:
        raise
    except Exception as e:
        logger.error("Parser error", kind=kind, file_name=file_name, error=str(e))
        raise ExtractionFailure(f"Failed to parse {kind} document: {e}") from e

    logger.info(
        "Extracted text",
        kind=kind,
        file_name=file_name,
        chars=len(result.text),
        segments=result.segment_count,
    )
    return result
