"""
Best-effort text extraction for uploaded notes.

Extraction never blocks an upload: any failure is logged and yields "".
"""

from __future__ import annotations

import io
import logging

from pypdf import PdfReader

logger = logging.getLogger(__name__)

# Extracted text is stored alongside the file; cap it so one upload cannot bloat the row
MAX_EXTRACTED_CHARS = 200_000


class TextExtractor:
    def extract(self, content: bytes, mime_type: str, filename: str = "") -> str:
        try:
            if mime_type == "application/pdf":
                text = self._from_pdf(content)
            elif mime_type in ("text/plain", "text/markdown"):
                text = content.decode("utf-8", errors="replace")
            else:
                return ""
        except Exception as e:
            # pypdf raises assorted errors (TypeError, KeyError, ...) on damaged files
            logger.warning("Text extraction failed for %s (%s): %s", filename, mime_type, e)
            return ""
        return text.strip()[:MAX_EXTRACTED_CHARS]

    @staticmethod
    def _from_pdf(content: bytes) -> str:
        reader = PdfReader(io.BytesIO(content))
        pages = [page.extract_text() or "" for page in reader.pages]
        return "\n".join(pages)
