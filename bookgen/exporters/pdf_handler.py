"""Utility helpers for exporting a generated book to PDF documents.

This module centralises the FPDF interactions: resilient text normalisation
for the Latin-1 core fonts and the page layout used for the book export
(cover, synopsis, one page per chapter).
"""
from __future__ import annotations

from typing import Iterable
import textwrap
import unicodedata

from fpdf import FPDF

from ..services.errors import ExportError
from ..services.text_utils import slugify_filename
from .common import ChapterLike, ConfigurationLike, ExportPayload, as_configuration, completed_chapters, require_title


_PDF_LATIN1_REPLACEMENTS = {
    ord("\u2010"): "-",  # hyphen
    ord("\u2011"): "-",  # non-breaking hyphen
    ord("\u2012"): "-",  # figure dash
    ord("\u2013"): "-",  # en dash
    ord("\u2014"): "-",  # em dash
    ord("\u2015"): "-",  # horizontal bar
    ord("\u2212"): "-",  # minus sign
    ord("\u2018"): "'",  # left single quote
    ord("\u2019"): "'",  # right single quote / apostrophe
    ord("\u201A"): "'",  # single low-9 quote
    ord("\u201B"): "'",  # single high-reversed-9 quote
    ord("\u2032"): "'",  # prime
    ord("\u201C"): '"',  # left double quote
    ord("\u201D"): '"',  # right double quote
    ord("\u201E"): '"',  # double low-9 quote
    ord("\u2022"): "\u00B7",  # bullet
    ord("\u2026"): "...",  # ellipsis
    ord("\u00A0"): " ",  # non-breaking space
    ord("\u2007"): " ",  # figure space
    ord("\u2009"): " ",  # thin space
    ord("\u202F"): " ",  # narrow no-break space
    ord("\u200A"): " ",  # hair space
    ord("\u200B"): "",  # zero-width space
    ord("\uFEFF"): "",  # BOM
}


def _pdf_safe_text(text: str) -> str:
    """Return ``text`` normalised for the PDF Latin-1 core fonts."""

    # NFC keeps accented Spanish letters composed, which Latin-1 can encode.
    normalized = unicodedata.normalize("NFC", text or "")
    normalized = normalized.replace("\t", " ")
    replaced = normalized.translate(_PDF_LATIN1_REPLACEMENTS)
    return replaced.encode("latin-1", "replace").decode("latin-1")


def _pdf_wrapped_text(text: str, *, width: int = 100) -> str:
    """Return ``text`` converted to a PDF-safe, manually wrapped string."""

    safe_text = _pdf_safe_text(text)
    if not safe_text:
        return ""

    wrapped_lines = []
    for raw_line in safe_text.splitlines():
        if not raw_line:
            wrapped_lines.append("")
            continue

        line_chunks = textwrap.wrap(
            raw_line,
            width=width,
            break_long_words=True,
            break_on_hyphens=False,
        )

        wrapped_lines.extend(line_chunks or [""])

    return "\n".join(wrapped_lines)


def _safe_multi_cell(pdf: FPDF, width: float, height: float, text: str, *, align: str = "L") -> None:
    """Render ``text`` within a multi-cell, retrying with a fresh line on failure."""

    sanitized = _pdf_wrapped_text(text)
    if not sanitized and not text:
        return

    try:
        pdf.set_x(pdf.l_margin)
        pdf.multi_cell(width, height, sanitized, align=align)
    except Exception:
        pdf.ln(height)
        pdf.set_x(pdf.l_margin)
        try:
            pdf.multi_cell(width, height, sanitized, align=align)
        except Exception as exc:  # pragma: no cover - defensive
            raise ExportError(f"No se pudo renderizar el PDF: {exc}") from exc


def to_pdf_bytes(
    title: str,
    synopsis: str,
    chapters: Iterable[ChapterLike],
    configuration: ConfigurationLike = None,
) -> ExportPayload:
    """Render the completed chapters to an in-memory PDF."""

    title = require_title(title)
    completed = completed_chapters(chapters)
    config = as_configuration(configuration)

    pdf = FPDF()
    pdf.set_auto_page_break(auto=True, margin=20)
    pdf.set_left_margin(20)
    pdf.set_right_margin(20)
    pdf.set_title(_pdf_safe_text(title))
    pdf.set_creator("Generado con IA")

    effective_width = pdf.w - pdf.l_margin - pdf.r_margin

    # Cover
    pdf.add_page()
    pdf.set_y(pdf.h / 3)
    pdf.set_font("Times", "B", 24)
    _safe_multi_cell(pdf, effective_width, 12, title.upper(), align="C")
    pdf.ln(6)
    pdf.set_font("Times", "I", 12)
    subtitle = " \u2022 ".join(part for part in (config.genre, config.writing_style, config.tone) if part)
    _safe_multi_cell(pdf, effective_width, 7, subtitle, align="C")

    synopsis_text = (synopsis or "").strip()
    if synopsis_text:
        pdf.add_page()
        pdf.set_font("Times", "B", 16)
        _safe_multi_cell(pdf, effective_width, 10, "SINOPSIS")
        pdf.ln(4)
        pdf.set_font("Times", "", 12)
        _safe_multi_cell(pdf, effective_width, 6.5, synopsis_text)

    for chapter in completed:
        pdf.add_page()
        pdf.set_font("Times", "B", 16)
        _safe_multi_cell(pdf, effective_width, 10, f"CAPÍTULO {chapter.number}")
        pdf.set_font("Times", "B", 14)
        _safe_multi_cell(pdf, effective_width, 8, chapter.title)
        pdf.ln(4)

        pdf.set_font("Times", "", 12)
        for paragraph in chapter.content.split("\n\n"):
            cleaned = paragraph.strip()
            if not cleaned:
                continue
            _safe_multi_cell(pdf, effective_width, 6.5, cleaned)
            pdf.ln(1.5)

    try:
        data = bytes(pdf.output())
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise ExportError(f"Error al generar PDF: {exc}") from exc

    return ExportPayload(slugify_filename(title, "pdf"), "application/pdf", data)


__all__ = ["to_pdf_bytes"]
