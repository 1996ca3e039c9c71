from __future__ import annotations

import io
import logging
from typing import Optional

import pdfplumber

logger = logging.getLogger(__name__)

MAX_PAGES = 40


def extract_text_from_pdf(content: bytes, max_pages: int = MAX_PAGES) -> Optional[str]:
    """Return the text layer of a PDF, or None when there is none (scans)."""
    try:
        with pdfplumber.open(io.BytesIO(content)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages[:max_pages]]
    except Exception as exc:
        logger.warning("PDF text extraction failed: %s", exc)
        return None
    text = "\n".join(pages).strip()
    return text or None
