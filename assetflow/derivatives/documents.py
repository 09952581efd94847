# assetflow/derivatives/documents.py
from __future__ import annotations

import io
from typing import Any, Dict

import pikepdf

from assetflow.derivatives.images import UndecodableContent

PDF_TYPES = {"application/pdf"}

_DOCINFO = {
    "/Title": "title",
    "/Author": "author",
    "/Subject": "subject",
    "/Creator": "creator",
    "/Producer": "producer",
}


def document_metadata(data: bytes) -> Dict[str, Any]:
    """Aantal pagina's en document info van een PDF."""
    try:
        with pikepdf.open(io.BytesIO(data)) as pdf:
            media: Dict[str, Any] = {"page_count": len(pdf.pages), "pdf_version": str(pdf.pdf_version)}
            for key, name in _DOCINFO.items():
                value = pdf.docinfo.get(key)
                if value is not None and str(value).strip():
                    media[name] = str(value).strip()
    except pikepdf.PdfError as e:
        raise UndecodableContent(f"cannot read pdf: {e}") from e
    return media
