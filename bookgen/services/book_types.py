"""Data model for a generation run and its JSON representation.

The JSON field names follow the wire format used by the browser client and the
saved-book table (``titulo``, ``capitulos``, ``numeroCapitulos``...), while the
Python attributes use English names.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .text_utils import count_words

GENRES: Tuple[str, ...] = (
    "Ficción",
    "No Ficción",
    "Fantasía",
    "Ciencia Ficción",
    "Misterio",
    "Romance",
    "Autoayuda",
    "Biografía",
)

WRITING_STYLES: Tuple[str, ...] = (
    "Descriptivo",
    "Conciso",
    "Poético",
    "Periodístico",
    "Académico",
    "Conversacional",
)

TONES: Tuple[str, ...] = (
    "Formal",
    "Casual",
    "Humorístico",
    "Serio",
    "Inspiracional",
    "Oscuro",
)

AUDIENCES: Tuple[str, ...] = (
    "Niños",
    "Jóvenes Adultos",
    "Adultos",
    "Académico",
)

MIN_CHAPTERS = 1
MAX_CHAPTERS = 50


def positive_int(value: Any, fallback: int) -> int:
    """Parse a positive integer from untrusted JSON, using ``fallback`` otherwise."""

    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return number if number > 0 else fallback


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


class Stage(str, Enum):
    CONFIGURING = "configuracion"
    GENERATING_OUTLINE = "generando-outline"
    GENERATING_CHAPTERS = "generando-capitulos"
    COMPLETED = "completado"


class ChapterStatus(str, Enum):
    PENDING = "pendiente"
    GENERATING = "generando"
    COMPLETED = "completado"
    ERROR = "error"


@dataclass(frozen=True)
class BookConfiguration:
    topic: str
    genre: str
    writing_style: str
    tone: str
    target_audience: str
    chapter_count: int
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "tema": self.topic,
            "genero": self.genre,
            "estiloEscritura": self.writing_style,
            "tono": self.tone,
            "audienciaObjetivo": self.target_audience,
            "numeroCapitulos": self.chapter_count,
        }
        if self.model:
            data["modelo"] = self.model
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookConfiguration":
        """Build a configuration without validation; see :mod:`validation`."""

        return cls(
            topic=str(data.get("tema") or ""),
            genre=str(data.get("genero") or ""),
            writing_style=str(data.get("estiloEscritura") or ""),
            tone=str(data.get("tono") or ""),
            target_audience=str(data.get("audienciaObjetivo") or ""),
            chapter_count=positive_int(data.get("numeroCapitulos"), 0),
            model=(str(data["modelo"]).strip() or None) if data.get("modelo") else None,
        )


@dataclass(frozen=True)
class ChapterStub:
    number: int
    title: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {"numero": self.number, "titulo": self.title, "descripcion": self.description}


@dataclass(frozen=True)
class Character:
    name: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {"nombre": self.name, "descripcion": self.description}


@dataclass(frozen=True)
class Outline:
    title: str
    synopsis: str
    chapters: Tuple[ChapterStub, ...]
    characters: Tuple[Character, ...] = ()
    narrative_arc: str = ""

    def find_chapter(self, number: int) -> Optional[ChapterStub]:
        return next((stub for stub in self.chapters if stub.number == number), None)

    def renumbered(self, limit: Optional[int] = None) -> "Outline":
        """Return a copy whose stubs are numbered ``1..N`` in order, capped at ``limit``."""

        stubs = self.chapters[:limit] if limit is not None else self.chapters
        return replace(
            self,
            chapters=tuple(
                replace(stub, number=index) for index, stub in enumerate(stubs, start=1)
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "titulo": self.title,
            "sinopsis": self.synopsis,
            "capitulos": [stub.to_dict() for stub in self.chapters],
            "personajes": [character.to_dict() for character in self.characters],
            "arcoNarrativo": self.narrative_arc,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Outline":
        chapters = tuple(
            ChapterStub(
                number=positive_int(item.get("numero"), index),
                title=str(item.get("titulo") or ""),
                description=str(item.get("descripcion") or ""),
            )
            for index, item in enumerate(_as_list(data.get("capitulos")), start=1)
            if isinstance(item, dict)
        )
        characters = tuple(
            Character(name=str(item.get("nombre") or ""), description=str(item.get("descripcion") or ""))
            for item in _as_list(data.get("personajes"))
            if isinstance(item, dict)
        )
        return cls(
            title=str(data.get("titulo") or ""),
            synopsis=str(data.get("sinopsis") or ""),
            chapters=chapters,
            characters=characters,
            narrative_arc=str(data.get("arcoNarrativo") or ""),
        )


@dataclass
class Chapter:
    number: int
    title: str
    content: str = ""
    word_count: int = 0
    summary: str = ""
    status: ChapterStatus = ChapterStatus.PENDING

    def with_content(self, content: str, **changes: Any) -> "Chapter":
        """Return a copy carrying ``content`` with the word count recomputed."""

        return replace(self, content=content, word_count=count_words(content), **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "numero": self.number,
            "titulo": self.title,
            "contenido": self.content,
            "palabras": self.word_count,
            "resumen": self.summary,
            "estado": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], position: int = 0) -> "Chapter":
        content = str(data.get("contenido") or "")
        try:
            status = ChapterStatus(data.get("estado") or ChapterStatus.PENDING.value)
        except ValueError:
            status = ChapterStatus.PENDING
        return cls(
            number=positive_int(data.get("numero"), position),
            title=str(data.get("titulo") or ""),
            content=content,
            word_count=count_words(content),
            summary=str(data.get("resumen") or ""),
            status=status,
        )


@dataclass
class GenerationState:
    stage: Stage = Stage.CONFIGURING
    configuration: Optional[BookConfiguration] = None
    outline: Optional[Outline] = None
    chapters: List[Chapter] = field(default_factory=list)
    current_chapter: int = 0
    progress: int = 0
    error: Optional[str] = None
    generating: bool = False

    def chapter(self, number: int) -> Optional[Chapter]:
        return next((chapter for chapter in self.chapters if chapter.number == number), None)

    @property
    def completed_chapters(self) -> List[Chapter]:
        return [chapter for chapter in self.chapters if chapter.status is ChapterStatus.COMPLETED]

    @property
    def total_words(self) -> int:
        return sum(chapter.word_count for chapter in self.completed_chapters)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "etapa": self.stage.value,
            "configuracion": self.configuration.to_dict() if self.configuration else None,
            "outline": self.outline.to_dict() if self.outline else None,
            "capitulos": [chapter.to_dict() for chapter in self.chapters],
            "capituloActual": self.current_chapter,
            "progreso": self.progress,
            "error": self.error,
            "generando": self.generating,
        }
