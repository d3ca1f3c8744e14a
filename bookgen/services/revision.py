"""One-shot, non-streaming rewrite requests."""

from __future__ import annotations

from typing import Any, Optional

from flask import current_app

from .errors import ConfigurationError, RevisionError
from .llm import generation_parameters_for, get_text_generator
from .prompts import build_prompt_improvement_prompt, build_revision_prompt


def revise_chapter(
    content: str,
    instructions: str,
    *,
    generator: Optional[Any] = None,
    model: Optional[str] = None,
) -> str:
    """Return a full replacement for ``content`` following ``instructions``."""

    cleaned_content = (content or "").strip()
    if not cleaned_content:
        raise ConfigurationError("El contenido del capítulo es requerido")
    cleaned_instructions = (instructions or "").strip()
    if not cleaned_instructions:
        raise ConfigurationError("Las instrucciones de revisión son requeridas")

    prompt = build_revision_prompt(cleaned_content, cleaned_instructions)
    return _one_shot(prompt, "revision", generator=generator, model=model)


def improve_description(
    description: str,
    *,
    generator: Optional[Any] = None,
    model: Optional[str] = None,
) -> str:
    """Expand a short book description into a richer topic for the outline stage."""

    cleaned = (description or "").strip()
    if not cleaned:
        raise ConfigurationError("El prompt es requerido")

    prompt = build_prompt_improvement_prompt(cleaned)
    return _one_shot(prompt, "prompt_improvement", generator=generator, model=model)


def _one_shot(prompt: str, stage: str, *, generator: Optional[Any], model: Optional[str]) -> str:
    if generator is None:
        generator = get_text_generator(model)
    generation_kwargs = generation_parameters_for(stage)

    try:
        result_text = generator.generate_response(prompt, **generation_kwargs)
    except Exception as exc:
        current_app.logger.warning("LLM %s request failed: %s", stage, exc)
        raise RevisionError(str(exc) or "Error desconocido") from exc

    result_text = (result_text or "").strip()
    if not result_text:
        raise RevisionError("El modelo devolvió una respuesta vacía.")
    return result_text
