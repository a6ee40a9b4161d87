"""
PDF text extraction with PyMuPDF.
"""
import logging

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)


def extract_text(document_bytes: bytes) -> str:
    """
    Extract plain text from a PDF document.

    Best effort: returns an empty string for empty input or any failure,
    never raises.
    """
    if not document_bytes:
        return ""

    try:
        with fitz.open(stream=document_bytes, filetype="pdf") as document:
            pages = [page.get_text() for page in document]
    except Exception as e:
        logger.error(f"PDF text extraction failed: {e}")
        return ""

    text = "\n".join(pages).strip()
    logger.info(f"Extracted {len(text)} characters from {len(pages)} PDF pages")
    return text
