"""Helpers for exporting a generated book to plain text, Markdown and JSON."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Iterable

from ..services.text_utils import slugify_filename
from .common import ChapterLike, ConfigurationLike, ExportPayload, as_configuration, completed_chapters, require_title

BANNER_WIDTH = 60


def _clean(value: str) -> str:
    """Return ``value`` stripped of leading/trailing whitespace."""

    if not value:
        return ""
    return str(value).strip()


def to_plain_text(
    title: str,
    synopsis: str,
    chapters: Iterable[ChapterLike],
    configuration: ConfigurationLike = None,
) -> ExportPayload:
    """Render the completed chapters as a UTF-8 text document."""

    title = require_title(title)
    completed = completed_chapters(chapters)

    lines: list[str] = [
        "=" * BANNER_WIDTH,
        title.upper(),
        "=" * BANNER_WIDTH,
        "",
        _clean(synopsis),
        "",
        "=" * BANNER_WIDTH,
        "",
        "",
    ]
    for chapter in completed:
        lines.extend(
            [
                "-" * BANNER_WIDTH,
                f"CAPÍTULO {chapter.number}: {chapter.title.upper()}",
                "-" * BANNER_WIDTH,
                "",
                chapter.content,
                "",
                "",
            ]
        )

    text_blob = "\n".join(lines)
    return ExportPayload(slugify_filename(title, "txt"), "text/plain; charset=utf-8", text_blob.encode("utf-8"))


def to_markdown(
    title: str,
    synopsis: str,
    chapters: Iterable[ChapterLike],
    configuration: ConfigurationLike = None,
) -> ExportPayload:
    title = require_title(title)
    completed = completed_chapters(chapters)
    config = as_configuration(configuration)

    lines: list[str] = [
        f"# {title}",
        "",
        f"**Género:** {config.genre} | **Estilo:** {config.writing_style} | **Tono:** {config.tone}",
        "",
        "## Sinopsis",
        "",
        _clean(synopsis),
        "",
        "---",
        "",
    ]
    for chapter in completed:
        lines.extend([f"## Capítulo {chapter.number}: {chapter.title}", "", chapter.content, "", "---", ""])

    return ExportPayload(
        slugify_filename(title, "md"), "text/markdown; charset=utf-8", "\n".join(lines).encode("utf-8")
    )


def to_json(
    title: str,
    synopsis: str,
    chapters: Iterable[ChapterLike],
    configuration: ConfigurationLike = None,
) -> ExportPayload:
    title = require_title(title)
    completed = completed_chapters(chapters)
    config = as_configuration(configuration)

    document = {
        "titulo": title,
        "sinopsis": _clean(synopsis),
        "capitulos": [
            {"numero": chapter.number, "titulo": chapter.title, "contenido": chapter.content}
            for chapter in completed
        ],
        "metadata": {
            "genero": config.genre,
            "estilo": config.writing_style,
            "tono": config.tone,
            "audiencia": config.target_audience,
            "palabrasTotales": sum(chapter.word_count for chapter in completed),
            "fechaGeneracion": datetime.now(timezone.utc).isoformat(),
        },
    }
    blob = json.dumps(document, ensure_ascii=False, indent=2)
    return ExportPayload(slugify_filename(title, "json"), "application/json", blob.encode("utf-8"))


__all__ = ["to_plain_text", "to_markdown", "to_json"]
