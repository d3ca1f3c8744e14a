from __future__ import annotations

from typing import Any, Mapping

from flask_wtf import FlaskForm
from wtforms import IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange

from .book_types import (
    AUDIENCES,
    GENRES,
    MAX_CHAPTERS,
    MIN_CHAPTERS,
    TONES,
    WRITING_STYLES,
    BookConfiguration,
)
from .errors import ConfigurationError


class BookConfigurationForm(FlaskForm):
    tema = TextAreaField("Topic", validators=[DataRequired(message="El tema es requerido"), Length(max=5000)])
    genero = SelectField("Genre", choices=[(value, value) for value in GENRES])
    estiloEscritura = SelectField("Writing style", choices=[(value, value) for value in WRITING_STYLES])
    tono = SelectField("Tone", choices=[(value, value) for value in TONES])
    audienciaObjetivo = SelectField("Target audience", choices=[(value, value) for value in AUDIENCES])
    numeroCapitulos = IntegerField(
        "Chapter count",
        validators=[
            NumberRange(
                min=MIN_CHAPTERS,
                max=MAX_CHAPTERS,
                message=f"El número de capítulos debe estar entre {MIN_CHAPTERS} y {MAX_CHAPTERS}",
            )
        ],
    )
    modelo = StringField("Model", validators=[Length(max=120)])


def validate_configuration(payload: Mapping[str, Any] | None) -> BookConfiguration:
    """Validate a JSON configuration payload and return the immutable configuration.

    Raises :class:`ConfigurationError` carrying the first field error.
    """

    if not isinstance(payload, Mapping):
        raise ConfigurationError("La configuración del libro es requerida.")

    data = dict(payload)
    if isinstance(data.get("tema"), str):
        data["tema"] = data["tema"].strip()

    form = BookConfigurationForm(formdata=None, data=data, meta={"csrf": False})
    if not form.validate():
        # Topic and chapter count carry user-facing messages; the rest are prefixed.
        for field_name in ("tema", "numeroCapitulos"):
            if form.errors.get(field_name):
                raise ConfigurationError(form.errors[field_name][0])
        field_name, errors = next(iter(form.errors.items()))
        raise ConfigurationError(f"{field_name}: {errors[0]}")

    return BookConfiguration(
        topic=form.tema.data,
        genre=form.genero.data,
        writing_style=form.estiloEscritura.data,
        tone=form.tono.data,
        target_audience=form.audienciaObjetivo.data,
        chapter_count=form.numeroCapitulos.data,
        model=(form.modelo.data or "").strip() or None,
    )
