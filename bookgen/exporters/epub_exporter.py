"""Build an EPUB 2 book from the completed chapters with ``ebooklib``."""
from __future__ import annotations

import io
import logging
import uuid
from datetime import datetime, timezone
from html import escape
from typing import Iterable, List

from ebooklib import epub

from ..services.book_types import BookConfiguration, Chapter
from ..services.errors import ExportError
from ..services.text_utils import slugify_filename
from .common import ChapterLike, ConfigurationLike, ExportPayload, as_configuration, completed_chapters, require_title

LOGGER = logging.getLogger(__name__)

LANGUAGE = "es"
CREATOR = "Generado con IA"
PUBLISHER = "BomkAI"

STYLESHEET = """
body { font-family: Georgia, serif; line-height: 1.6; margin: 1em; }
h1 { color: #2c3e50; border-bottom: 2px solid #3498db; padding-bottom: 0.5em; margin-top: 1.5em; }
h2 { color: #34495e; margin-top: 1.2em; }
p { text-align: justify; margin-bottom: 1em; }
.metadata { font-style: italic; color: #7f8c8d; border-left: 3px solid #3498db; padding-left: 1em; margin: 1.5em 0; }
"""


def paragraphs_to_html(content: str) -> str:
    """Split on blank lines into ``<p>`` blocks; single newlines become ``<br/>``."""

    blocks: List[str] = []
    for paragraph in (content or "").split("\n\n"):
        cleaned = paragraph.strip()
        if not cleaned:
            continue
        blocks.append("<p>" + "<br/>".join(escape(line) for line in cleaned.split("\n")) + "</p>")
    return "\n".join(blocks) or "<p></p>"


def _title_page(title: str, synopsis: str, config: BookConfiguration, chapters: List[Chapter]) -> str:
    total_words = sum(chapter.word_count for chapter in chapters)
    rows = [
        ("Género", config.genre),
        ("Estilo", config.writing_style),
        ("Tono", config.tone),
        ("Audiencia", config.target_audience),
        ("Palabras", f"{total_words:,}"),
        ("Capítulos", str(len(chapters))),
    ]
    metadata = "\n".join(f"<p><strong>{label}:</strong> {escape(value)}</p>" for label, value in rows)
    return (
        f"<h1>{escape(title)}</h1>\n"
        f'<div class="metadata">\n{metadata}\n</div>\n'
        f"<h2>Sinopsis</h2>\n{paragraphs_to_html(synopsis)}"
    )


def to_epub_bytes(
    title: str,
    synopsis: str,
    chapters: Iterable[ChapterLike],
    configuration: ConfigurationLike = None,
) -> ExportPayload:
    title = require_title(title)
    completed = completed_chapters(chapters)
    config = as_configuration(configuration)

    book = epub.EpubBook()
    book.set_identifier(f"urn:uuid:{uuid.uuid4()}")
    book.set_title(title)
    book.set_language(LANGUAGE)
    book.add_author(CREATOR)
    book.add_metadata("DC", "publisher", PUBLISHER)
    book.add_metadata("DC", "date", datetime.now(timezone.utc).isoformat())
    book.add_metadata("DC", "description", (synopsis or "").strip())

    stylesheet = epub.EpubItem(
        uid="css", file_name="styles.css", media_type="text/css", content=STYLESHEET.encode("utf-8")
    )
    book.add_item(stylesheet)

    title_page = epub.EpubHtml(title=title, file_name="title.xhtml", lang=LANGUAGE)
    title_page.content = _title_page(title, synopsis, config, completed)
    title_page.add_item(stylesheet)
    book.add_item(title_page)

    spine: list = [title_page, "nav"]
    toc: list = [title_page]
    for chapter in completed:
        page = epub.EpubHtml(
            title=f"Capítulo {chapter.number}: {chapter.title}",
            file_name=f"chapter{chapter.number}.xhtml",
            lang=LANGUAGE,
        )
        page.content = (
            f"<h1>Capítulo {chapter.number}</h1>\n"
            f"<h2>{escape(chapter.title)}</h2>\n"
            f"{paragraphs_to_html(chapter.content)}"
        )
        page.add_item(stylesheet)
        book.add_item(page)
        spine.append(page)
        toc.append(page)

    book.toc = toc
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = spine

    buffer = io.BytesIO()
    try:
        epub.write_epub(buffer, book)
    except Exception as exc:
        LOGGER.exception("Unable to write EPUB for '%s'", title)
        raise ExportError(f"Error al generar EPUB: {exc}") from exc

    LOGGER.info("Built EPUB '%s' with %d chapters.", title, len(completed))
    return ExportPayload(slugify_filename(title, "epub"), "application/epub+zip", buffer.getvalue())


__all__ = ["to_epub_bytes", "paragraphs_to_html"]
