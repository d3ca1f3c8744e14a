import io
import json
import sys
import zipfile
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from bookgen.exporters import export_book, to_epub_bytes, to_json, to_markdown, to_pdf_bytes, to_plain_text
from bookgen.exporters.epub_exporter import paragraphs_to_html
from bookgen.services.book_types import BookConfiguration, Chapter, ChapterStatus
from bookgen.services.errors import ExportError


CONFIG = BookConfiguration(
    topic="Un detective en París",
    genre="Misterio",
    writing_style="Conciso",
    tone="Serio",
    target_audience="Adultos",
    chapter_count=3,
)

TITLE = "Sombras sobre el Sena"
SYNOPSIS = "Un inspector persigue a un ladrón de arte."


def _chapters():
    return [
        Chapter(2, "La pista").with_content(
            "Moreau encontró la huella.\nEra pequeña.\n\nNadie la había visto.", status=ChapterStatus.COMPLETED
        ),
        Chapter(1, "El robo").with_content("El cuadro desapareció de madrugada.", status=ChapterStatus.COMPLETED),
        Chapter(3, "El final").with_content("Texto a medias", status=ChapterStatus.ERROR),
    ]


def test_plain_text_layout():
    payload = to_plain_text(TITLE, SYNOPSIS, _chapters(), CONFIG)
    text = payload.data.decode("utf-8")

    assert payload.filename == "sombras_sobre_el_sena.txt"
    assert text.startswith("=" * 60 + "\nSOMBRAS SOBRE EL SENA\n" + "=" * 60)
    assert "CAPÍTULO 1: EL ROBO" in text
    assert text.index("CAPÍTULO 1") < text.index("CAPÍTULO 2")
    assert "Texto a medias" not in text


def test_markdown_and_json_exports():
    markdown = to_markdown(TITLE, SYNOPSIS, _chapters(), CONFIG).data.decode("utf-8")
    document = json.loads(to_json(TITLE, SYNOPSIS, _chapters(), CONFIG.to_dict()).data)

    assert markdown.startswith(f"# {TITLE}")
    assert "**Género:** Misterio" in markdown
    assert "## Capítulo 2: La pista" in markdown
    assert [chapter["numero"] for chapter in document["capitulos"]] == [1, 2]
    assert document["metadata"]["palabrasTotales"] == 5 + 10
    assert document["metadata"]["audiencia"] == "Adultos"


def test_epub_is_a_zip_with_mimetype_first():
    payload = to_epub_bytes(TITLE, SYNOPSIS, _chapters(), CONFIG)

    archive = zipfile.ZipFile(io.BytesIO(payload.data))
    names = archive.namelist()
    assert payload.mimetype == "application/epub+zip"
    assert payload.filename == "sombras_sobre_el_sena.epub"
    assert names[0] == "mimetype"
    assert archive.read("mimetype") == b"application/epub+zip"
    assert "META-INF/container.xml" in names
    chapter_pages = [name for name in names if name.endswith("chapter2.xhtml")]
    assert chapter_pages
    page = archive.read(chapter_pages[0]).decode("utf-8")
    assert "Moreau encontró la huella.<br/>Era pequeña." in page
    assert not any(name.endswith("chapter3.xhtml") for name in names)


def test_paragraph_html_escapes_text():
    assert paragraphs_to_html("a < b\n\nc & d") == "<p>a &lt; b</p>\n<p>c &amp; d</p>"


def test_pdf_has_pdf_header():
    payload = to_pdf_bytes(TITLE, SYNOPSIS, _chapters(), CONFIG)

    assert payload.data.startswith(b"%PDF")
    assert payload.filename == "sombras_sobre_el_sena.pdf"


def test_pdf_tolerates_characters_outside_latin1():
    chapters = [Chapter(1, "Ñandú — “comillas”").with_content("Emoji 🙂 y puntos…", status=ChapterStatus.COMPLETED)]

    payload = to_pdf_bytes(TITLE, SYNOPSIS, chapters, CONFIG)

    assert payload.data.startswith(b"%PDF")


@pytest.mark.parametrize("fmt", ["txt", "md", "json", "epub", "pdf"])
def test_exports_require_completed_chapters(fmt):
    chapters = [Chapter(1, "A").with_content("x", status=ChapterStatus.PENDING)]

    with pytest.raises(ExportError):
        export_book(fmt, TITLE, SYNOPSIS, chapters, CONFIG)


def test_unknown_format_is_rejected():
    with pytest.raises(ExportError):
        export_book("docx", TITLE, SYNOPSIS, _chapters(), CONFIG)
