"""Shared input normalisation for the book exporters."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Union

from ..services.book_types import BookConfiguration, Chapter, ChapterStatus
from ..services.errors import ExportError

ChapterLike = Union[Chapter, Mapping[str, Any]]
ConfigurationLike = Union[BookConfiguration, Mapping[str, Any], None]


@dataclass(frozen=True)
class ExportPayload:
    filename: str
    mimetype: str
    data: bytes


def completed_chapters(chapters: Iterable[ChapterLike]) -> List[Chapter]:
    """Return the completed chapters in book order or raise :class:`ExportError`."""

    normalised = [
        chapter if isinstance(chapter, Chapter) else Chapter.from_dict(dict(chapter), position)
        for position, chapter in enumerate(chapters or [], start=1)
        if isinstance(chapter, (Chapter, Mapping))
    ]
    completed = [chapter for chapter in normalised if chapter.status is ChapterStatus.COMPLETED]
    if not completed:
        raise ExportError("No hay capítulos completados para exportar")
    return sorted(completed, key=lambda chapter: chapter.number)


def as_configuration(configuration: ConfigurationLike) -> BookConfiguration:
    if isinstance(configuration, BookConfiguration):
        return configuration
    return BookConfiguration.from_dict(dict(configuration or {}))


def require_title(title: str) -> str:
    cleaned = (title or "").strip()
    if not cleaned:
        raise ExportError("Parámetros requeridos faltantes")
    return cleaned


__all__ = ["ExportPayload", "completed_chapters", "as_configuration", "require_title"]
