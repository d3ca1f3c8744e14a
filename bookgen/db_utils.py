"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from typing import Iterable, Set

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db


def _get_column_names(table_name: str) -> Set[str]:
    inspector = inspect(db.engine)
    return {column["name"] for column in inspector.get_columns(table_name)}


def ensure_database_schema() -> None:
    """Ensure that the ``books`` table exists with every column the app reads.

    The function is intentionally light-weight so it can run on every
    application start and from the ``/api/init-db`` endpoint. Databases created
    before the ``model`` column was introduced get it added in place.
    """

    try:
        inspector = inspect(db.engine)
        table_names: Iterable[str] = inspector.get_table_names()

        if "books" not in table_names:
            # Import locally to avoid circular import issues during application setup.
            from .models import SavedBook

            SavedBook.__table__.create(bind=db.engine, checkfirst=True)
            return

        book_columns = _get_column_names("books")
        if "model" not in book_columns:
            with db.engine.begin() as connection:
                connection.execute(text("ALTER TABLE books ADD COLUMN model VARCHAR(120)"))
    except SQLAlchemyError:
        # If we fail to introspect or modify the schema we re-raise the error so
        # that the application does not continue in a partially configured state.
        raise
