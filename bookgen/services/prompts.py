"""Prompt builders for every LLM request the pipeline issues.

All functions here are pure: they only format text from the configuration and
the state handed to them.
"""

from __future__ import annotations

from typing import Iterator, Sequence, Tuple, Union

from .book_types import BookConfiguration, Outline
from .errors import PromptBuildError

PriorSummary = Union[str, Tuple[int, str]]

NARRATIVE_STAGES = (
    (
        0.25,
        "opening",
        "Este capítulo pertenece a la apertura del libro: presenta el mundo, los personajes "
        "y el conflicto central sin revelar demasiado.",
    ),
    (
        0.50,
        "rising",
        "Este capítulo pertenece al desarrollo: intensifica los obstáculos y profundiza en "
        "las motivaciones de los personajes.",
    ),
    (
        0.75,
        "climax",
        "Este capítulo se acerca al clímax: eleva la tensión al máximo y fuerza decisiones "
        "con consecuencias.",
    ),
    (
        1.0,
        "resolution",
        "Este capítulo pertenece a la resolución: cierra los arcos abiertos y muestra las "
        "consecuencias del clímax.",
    ),
)

OUTLINE_JSON_SCHEMA = """{
  "titulo": "string",
  "sinopsis": "string",
  "capitulos": [
    {
      "numero": 1,
      "titulo": "string",
      "descripcion": "string"
    }
  ],
  "personajes": [
    {
      "nombre": "string",
      "descripcion": "string"
    }
  ],
  "arcoNarrativo": "string"
}"""


def build_outline_prompt(config: BookConfiguration) -> str:
    count = config.chapter_count
    return f"""Eres un profesional creador de esquemas de libros y guionista experto. Vas a crear un esquema detallado para un libro basado en la siguiente descripción del usuario.

DESCRIPCIÓN/HISTORIA DEL USUARIO:
"{config.topic}"

ESPECIFICACIONES TÉCNICAS:
- Género: {config.genre}
- Estilo de escritura: {config.writing_style}
- Tono: {config.tone}
- Audiencia objetivo: {config.target_audience}
- Número de capítulos: {count}

INSTRUCCIONES:
1. Analiza cuidadosamente la descripción proporcionada por el usuario
2. Extrae personajes, trama, conflictos y elementos clave mencionados
3. Usa estos elementos como base fundamental para crear el esquema
4. Si el usuario menciona nombres específicos, úsalos exactamente como se proporcionaron
5. Respeta cualquier detalle específico mencionado (lugares, objetos, eventos, relaciones)
6. Si falta información, complétala de manera coherente con lo descrito

Genera un esquema completo que incluya:
1. **Título del libro**: Creativo, atractivo y que refleje la esencia de la historia descrita
2. **Sinopsis**: 200-250 palabras que capturen fielmente la descripción del usuario
3. **Capítulos**: Exactamente {count} capítulos con títulos descriptivos y descripciones de 2-4 oraciones sobre eventos clave, desarrollo de personajes y avance de la trama
4. **Personajes principales**: (si aplica) nombre exacto y descripción detallada (personalidad, motivaciones, rol en la historia)
5. **Arco narrativo**: Estructura general del libro que refleje la historia descrita (150-200 palabras)

IMPORTANTE: Responde ÚNICAMENTE con JSON válido en este formato exacto:
{OUTLINE_JSON_SCHEMA}

No incluyas ningún texto adicional fuera del JSON. El array de capítulos debe tener exactamente {count} elementos. Si el género no requiere personajes (como no ficción), deja el array de personajes vacío."""


def narrative_stage(number: int, total: int) -> str:
    """Classify a chapter position into opening/rising/climax/resolution bands."""

    return _stage_entry(number, total)[1]


def _stage_entry(number: int, total: int):
    position = number / total if total else 1.0
    for threshold, name, guidance in NARRATIVE_STAGES:
        if position <= threshold:
            return threshold, name, guidance
    return NARRATIVE_STAGES[-1]


def _numbered_summaries(prior_summaries: Sequence[PriorSummary]) -> Iterator[Tuple[int, str]]:
    for index, item in enumerate(prior_summaries, start=1):
        if isinstance(item, tuple):
            yield item
        else:
            yield index, item


def build_chapter_prompt(
    number: int,
    outline: Outline,
    config: BookConfiguration,
    prior_summaries: Sequence[PriorSummary],
) -> str:
    """Build the prompt for chapter ``number``.

    ``prior_summaries`` holds either plain summaries, labelled by their
    position, or ``(chapter_number, summary)`` pairs labelled by that number.
    """

    stub = outline.find_chapter(number)
    if stub is None:
        available = ", ".join(str(item.number) for item in outline.chapters) or "ninguno"
        raise PromptBuildError(
            f"No se encontró información para el capítulo {number} (capítulos disponibles: {available})"
        )

    _, _, stage_guidance = _stage_entry(number, len(outline.chapters))

    lines = [
        f"Eres un escritor profesional talentoso escribiendo el Capítulo {number} de un libro.",
        "",
        "CONTEXTO DEL LIBRO:",
        f"- Título: {outline.title}",
        f"- Género: {config.genre}",
        f"- Estilo de escritura: {config.writing_style}",
        f"- Tono: {config.tone}",
        f"- Audiencia objetivo: {config.target_audience}",
        f"- Sinopsis: {outline.synopsis}",
        "",
        "ARCO NARRATIVO GENERAL:",
        outline.narrative_arc,
    ]

    if outline.characters:
        lines.extend(["", "PERSONAJES PRINCIPALES:"])
        lines.extend(f"- {character.name}: {character.description}" for character in outline.characters)

    if prior_summaries:
        lines.extend(["", "RESUMEN DE CAPÍTULOS ANTERIORES:"])
        for label, summary in _numbered_summaries(prior_summaries):
            lines.extend(["", f"Capítulo {label}:", summary])

    lines.extend(
        [
            "",
            f"OBJETIVO DEL CAPÍTULO {number}:",
            f'Título: "{stub.title}"',
            f"Descripción: {stub.description}",
            "",
            "MOMENTO DE LA HISTORIA:",
            stage_guidance,
            "",
            "INSTRUCCIONES:",
            "Escribe el capítulo completo con las siguientes características:",
            "- Apertura atractiva que enganche al lector",
            "- Contenido bien desarrollado (2000-3500 palabras aproximadamente)",
            "- Flujo natural desde los capítulos anteriores (si aplica)",
            "- Diálogos naturales y descripciones inmersivas",
            "- Avance de la trama o desarrollo de temas clave",
            "- Final del capítulo que invite a seguir leyendo",
            "- Mantén consistencia en estilo, tono y voz narrativa",
            "",
            "Escribe de manera profesional y apropiada para el género y audiencia especificados. "
            "NO incluyas el título del capítulo en tu respuesta, solo el contenido narrativo.",
            "",
            "Comienza a escribir el capítulo ahora:",
        ]
    )
    return "\n".join(lines)


def build_revision_prompt(content: str, instructions: str) -> str:
    return f"""Eres un editor profesional de libros. Tu tarea es revisar y mejorar el siguiente capítulo según las instrucciones específicas proporcionadas.

CAPÍTULO ORIGINAL:
{content}

INSTRUCCIONES DE REVISIÓN:
{instructions}

Por favor, revisa el capítulo aplicando las mejoras solicitadas. Mantén la esencia y estructura general del capítulo mientras implementas los cambios necesarios. Asegúrate de:

1. Mantener la coherencia narrativa
2. Preservar el tono y estilo del texto original
3. Aplicar las mejoras específicas solicitadas
4. Mantener o mejorar la calidad literaria

Proporciona ÚNICAMENTE el capítulo revisado y mejorado, sin explicaciones adicionales, comentarios o introducciones. Comienza directamente con el contenido revisado:"""


def build_prompt_improvement_prompt(description: str) -> str:
    return f"""Eres un asistente experto en desarrollo de historias y conceptos narrativos. Tu tarea es tomar la descripción inicial de un usuario para un libro y mejorarla, haciéndola más detallada, coherente y atractiva.

DESCRIPCIÓN ORIGINAL DEL USUARIO:
{description}

Por favor, mejora esta descripción siguiendo estas pautas:

1. **Mantén la idea central**: No cambies la esencia de lo que el usuario quiere escribir
2. **Añade detalles específicos**: Profundiza en personajes, ambientación, conflictos y motivaciones
3. **Estructura narrativa clara**: Asegúrate de que haya un inicio, desarrollo y conflicto bien definidos
4. **Conflicto central claro**: Define bien qué está en juego y qué obstáculos enfrentarán los personajes
5. **Longitud apropiada**: Expande la descripción a 3-5 párrafos bien desarrollados

IMPORTANTE:
- Proporciona ÚNICAMENTE la descripción mejorada, sin introducciones, explicaciones o comentarios meta
- Comienza directamente con la descripción mejorada del libro

Descripción mejorada:"""
