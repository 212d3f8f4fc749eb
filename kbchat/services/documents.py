"""PDF and Word document text extraction."""

import io
import warnings
from pathlib import PurePath
from typing import List, Optional

import docx
import fitz  # PyMuPDF
import structlog

from kbchat.services.errors import ExtractionError, ValidationError

logger = structlog.get_logger()

PDF = "pdf"
WORD = "word"

EXTENSION_FAMILIES = {
    ".pdf": PDF,
    ".doc": WORD,
    ".docx": WORD,
}

CONTENT_TYPE_FAMILIES = {
    "application/pdf": PDF,
    "application/msword": WORD,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": WORD,
}


def detect_family(filename: str, content_type: Optional[str] = None) -> str:
    """
    Decoder family for an upload; raises ValidationError for anything that
    is not a PDF or Word document.
    """
    extension = PurePath(filename or "").suffix.lower()
    if extension:
        family = EXTENSION_FAMILIES.get(extension)
    else:
        family = CONTENT_TYPE_FAMILIES.get((content_type or "").split(";")[0].strip().lower())

    if family is None:
        raise ValidationError(
            f"Unsupported file type for '{filename}'. Please upload a .pdf, .doc or .docx file."
        )
    return family


class DocumentExtractor:
    """Extract page-ordered plain text from binary documents."""

    def extract(self, content: bytes, family: str) -> str:
        if family == PDF:
            return self.extract_pdf(content)
        if family == WORD:
            return self.extract_word(content)
        raise ValidationError(f"Unsupported document family: {family}")

    def extract_pdf(self, content: bytes) -> str:
        """Words of each page joined by spaces, pages joined by a blank line."""
        try:
            doc = fitz.open(stream=content, filetype="pdf")
        except Exception as e:
            logger.error("Failed to open PDF", error=str(e))
            raise ExtractionError(f"Failed to process PDF: {e}") from e

        try:
            pages: List[str] = []
            for page in doc:
                items = [word[4] for word in page.get_text("words")]
                pages.append(" ".join(items))
            page_count = len(pages)
        except Exception as e:
            logger.error("Failed to read PDF pages", error=str(e))
            raise ExtractionError(f"Failed to process PDF: {e}") from e
        finally:
            doc.close()

        text = "\n\n".join(pages).strip()
        if not text:
            raise ExtractionError("Failed to process PDF: no text could be extracted from the PDF")

        logger.info("Extracted PDF text", pages=page_count, characters=len(text))
        return text

    def extract_word(self, content: bytes) -> str:
        """Paragraph and table text of a Word document."""
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                document = docx.Document(io.BytesIO(content))
            except Exception as e:
                logger.error("Failed to open Word document", error=str(e))
                raise ExtractionError(f"Failed to process Word document: {e}") from e

            parts = [paragraph.text for paragraph in document.paragraphs if paragraph.text.strip()]
            for table in document.tables:
                for row in table.rows:
                    cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                    if cells:
                        parts.append(" ".join(cells))

        if caught:
            logger.warning(
                "Word document processing warnings",
                warnings=[str(w.message) for w in caught]
            )

        text = "\n\n".join(parts).strip()
        if not text:
            raise ExtractionError(
                "Failed to process Word document: no text could be extracted from the Word document"
            )

        logger.info("Extracted Word document text", characters=len(text))
        return text
