"""
Document Agent: supporting-document text extraction.

Resolves a supporting-document id to a file under the documents directory and
returns its cleaned text. Supports .pdf (PyMuPDF), .docx (python-docx) and .txt.
Any failure raises DocumentUnavailable; the pipeline records a placeholder for
that document and carries on with the rest of the batch.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Optional

import fitz  # PyMuPDF

from claims.errors import DocumentUnavailable
from claims.models import SupportingDocument

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".pdf", ".docx", ".txt")


def _normalize_text(text: str) -> str:
    """Clean and normalize extracted text."""
    if not text:
        return ""
    text = re.sub(r"\r\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _extract_text_pdf(path: Path) -> str:
    with fitz.open(str(path)) as doc:
        return _normalize_text("\n".join(page.get_text() for page in doc))


def _extract_text_docx(path: Path) -> str:
    from docx import Document

    doc = Document(str(path))
    return _normalize_text("\n".join(p.text for p in doc.paragraphs if p.text.strip()))


def _extract_text_plain(path: Path) -> str:
    """Read .txt file with utf-8, fallback to latin-1."""
    try:
        return _normalize_text(path.read_text(encoding="utf-8"))
    except UnicodeDecodeError:
        return _normalize_text(path.read_text(encoding="latin-1"))


_READERS = {
    ".pdf": _extract_text_pdf,
    ".docx": _extract_text_docx,
    ".txt": _extract_text_plain,
}


class DocumentTextExtractor:
    """ExtractDocumentText over a local documents directory."""

    def __init__(self, documents_dir: str | Path) -> None:
        self._root = Path(documents_dir)

    def resolve(self, document_id: str) -> Optional[Path]:
        """Map an id to a file: the id itself if it has a suffix, else id + known suffix."""
        if not document_id or Path(document_id).name != document_id:
            return None
        candidate = self._root / document_id
        if candidate.suffix.lower() in SUPPORTED_SUFFIXES and candidate.is_file():
            return candidate
        for suffix in SUPPORTED_SUFFIXES:
            path = self._root / f"{document_id}{suffix}"
            if path.is_file():
                return path
        return None

    def extract(self, document_id: str) -> str:
        path = self.resolve(document_id)
        if path is None:
            raise DocumentUnavailable(f"document {document_id!r} not found in {self._root}")
        try:
            text = _READERS[path.suffix.lower()](path)
        except Exception as e:
            raise DocumentUnavailable(f"could not read document {document_id!r}: {e}") from e
        if not text:
            raise DocumentUnavailable(f"document {document_id!r} contains no extractable text")
        return text


def collect_supporting_documents(extractor, document_ids: Iterable[str]) -> list[SupportingDocument]:
    """Extract every document; a failure for one never aborts the batch."""
    documents: list[SupportingDocument] = []
    for document_id in document_ids:
        try:
            documents.append(
                SupportingDocument(document_id=document_id, text=extractor.extract(document_id))
            )
        except Exception as e:
            logger.warning("document_agent: %s unavailable: %s", document_id, e)
            documents.append(SupportingDocument.unavailable(document_id))
    logger.info(
        "document_agent: %d of %d document(s) available",
        sum(1 for d in documents if d.available),
        len(documents),
    )
    return documents


def documents_as_context(documents: Iterable[SupportingDocument]) -> str:
    """Render documents as the extra context block handed to the generator."""
    return "\n\n---\n\n".join(
        f"Document {i} ({d.document_id}):\n{d.text}" for i, d in enumerate(documents, start=1)
    )
