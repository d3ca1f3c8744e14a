"""Persistent store of completed books plus the listing helpers built on it."""

from __future__ import annotations

import random
import string
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import SavedBook
from .book_types import BookConfiguration, Chapter, ChapterStatus, Outline
from .errors import ConfigurationError, PersistenceFailure
from .text_utils import round_half_up

_ID_ALPHABET = string.ascii_lowercase + string.digits

SORT_FIELDS = ("fecha", "titulo", "palabras")


@dataclass
class LibraryStats:
    total_books: int
    total_words: int
    total_chapters: int
    average_chapters_per_book: int
    average_words_per_book: int
    most_common_genre: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalLibros": self.total_books,
            "totalPalabras": self.total_words,
            "totalCapitulos": self.total_chapters,
            "promedioCapitulosPorLibro": self.average_chapters_per_book,
            "promedioPalabrasPorLibro": self.average_words_per_book,
            "generoMasComun": self.most_common_genre,
        }


def generate_book_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"book_{int(time.time() * 1000)}_{suffix}"


def _chapter_dict(chapter: Union[Chapter, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(chapter, Chapter):
        return chapter.to_dict()
    return Chapter.from_dict(dict(chapter)).to_dict()


class BookLibrary:
    """Thin gateway over the ``books`` table.

    Only completed chapters are persisted and the stored word total is their
    sum. Failed writes roll the session back and raise
    :class:`PersistenceFailure`.
    """

    def list(self, user_id: Optional[str] = None) -> List[SavedBook]:
        query = SavedBook.query
        if user_id:
            query = query.filter_by(user_id=user_id)
        try:
            return query.order_by(SavedBook.created_at.desc()).all()
        except SQLAlchemyError as exc:
            current_app.logger.exception("Unable to list saved books")
            raise PersistenceFailure("Error al obtener libros") from exc

    def get(self, book_id: str) -> Optional[SavedBook]:
        try:
            return db.session.get(SavedBook, book_id)
        except SQLAlchemyError as exc:
            current_app.logger.exception("Unable to load saved book %s", book_id)
            raise PersistenceFailure("Error al obtener el libro") from exc

    def create(
        self,
        title: str,
        synopsis: str,
        configuration: Union[BookConfiguration, Mapping[str, Any]],
        outline: Union[Outline, Mapping[str, Any]],
        chapters: Iterable[Union[Chapter, Mapping[str, Any]]],
        *,
        model: Optional[str] = None,
        cover: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> SavedBook:
        title = (title or "").strip()
        synopsis = (synopsis or "").strip()
        if (
            not title
            or not synopsis
            or configuration is None
            or outline is None
            or not isinstance(chapters, (list, tuple))
        ):
            raise ConfigurationError("Faltan datos requeridos")

        configuration_data = (
            configuration.to_dict() if isinstance(configuration, BookConfiguration) else dict(configuration)
        )
        outline_data = outline.to_dict() if isinstance(outline, Outline) else dict(outline)
        completed = [
            data
            for data in (_chapter_dict(chapter) for chapter in chapters if isinstance(chapter, (Chapter, Mapping)))
            if data["estado"] == ChapterStatus.COMPLETED.value
        ]

        book = SavedBook(
            id=generate_book_id(),
            title=title,
            synopsis=synopsis,
            configuration=configuration_data,
            outline=outline_data,
            chapters=completed,
            total_words=sum(data["palabras"] for data in completed),
            model=model or configuration_data.get("modelo"),
            cover=cover,
            user_id=user_id,
        )
        try:
            db.session.add(book)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Unable to save book '%s'", title)
            raise PersistenceFailure("Error al guardar el libro") from exc

        current_app.logger.info(
            "Saved book %s (%d chapters, %d words).", book.id, len(completed), book.total_words
        )
        return book

    def create_from_payload(self, payload: Mapping[str, Any], *, user_id: Optional[str] = None) -> SavedBook:
        """Create a book from the JSON body sent by the client."""

        return self.create(
            str(payload.get("titulo") or ""),
            str(payload.get("sinopsis") or ""),
            payload.get("configuracion"),
            payload.get("outline"),
            payload.get("capitulos"),
            model=payload.get("modelo"),
            cover=payload.get("portada"),
            user_id=user_id,
        )

    def delete(self, book_id: str) -> bool:
        book = self.get(book_id)
        if book is None:
            return False
        try:
            db.session.delete(book)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Unable to delete book %s", book_id)
            raise PersistenceFailure("Error al eliminar libro") from exc
        return True

    def stats(self, user_id: Optional[str] = None) -> LibraryStats:
        return compute_stats(self.list(user_id))


def compute_stats(books: Sequence[SavedBook]) -> LibraryStats:
    total_books = len(books)
    total_words = sum(book.total_words or 0 for book in books)
    total_chapters = sum(len(book.chapters or []) for book in books)

    genres = Counter(
        (book.configuration or {}).get("genero") or "Desconocido" for book in books
    )
    most_common = genres.most_common(1)[0][0] if genres else "N/A"

    return LibraryStats(
        total_books=total_books,
        total_words=total_words,
        total_chapters=total_chapters,
        average_chapters_per_book=round_half_up(total_chapters / total_books) if total_books else 0,
        average_words_per_book=round_half_up(total_words / total_books) if total_books else 0,
        most_common_genre=most_common,
    )


def search_books(books: Sequence[SavedBook], term: str) -> List[SavedBook]:
    """Case-insensitive match on title, synopsis or genre."""

    needle = (term or "").strip().lower()
    if not needle:
        return list(books)
    return [
        book
        for book in books
        if needle in (book.title or "").lower()
        or needle in (book.synopsis or "").lower()
        or needle in str((book.configuration or {}).get("genero") or "").lower()
    ]


def sort_books(books: Sequence[SavedBook], criterion: str = "fecha") -> List[SavedBook]:
    """Newest first for ``fecha``, alphabetical for ``titulo``, longest first for ``palabras``."""

    if criterion == "titulo":
        return sorted(books, key=lambda book: (book.title or "").lower())
    if criterion == "palabras":
        return sorted(books, key=lambda book: book.total_words or 0, reverse=True)
    if criterion == "fecha":
        return sorted(books, key=lambda book: book.created_at, reverse=True)
    raise ConfigurationError(f"Criterio de orden no soportado: {criterion}")
