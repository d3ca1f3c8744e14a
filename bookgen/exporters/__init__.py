"""Book exporters keyed by the format names used in the download URLs."""
from __future__ import annotations

from typing import Callable, Dict

from ..services.errors import ExportError
from .common import ExportPayload
from .epub_exporter import to_epub_bytes
from .pdf_handler import to_pdf_bytes
from .text_exporter import to_json, to_markdown, to_plain_text

EXPORTERS: Dict[str, Callable[..., ExportPayload]] = {
    "txt": to_plain_text,
    "md": to_markdown,
    "json": to_json,
    "epub": to_epub_bytes,
    "pdf": to_pdf_bytes,
}


def export_book(fmt: str, title, synopsis, chapters, configuration=None) -> ExportPayload:
    try:
        exporter = EXPORTERS[fmt]
    except KeyError as exc:
        raise ExportError(f"Formato de exportación no soportado: {fmt}") from exc
    return exporter(title, synopsis, chapters, configuration)


__all__ = [
    "EXPORTERS",
    "ExportPayload",
    "export_book",
    "to_epub_bytes",
    "to_json",
    "to_markdown",
    "to_pdf_bytes",
    "to_plain_text",
]
