from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from flask import current_app

from .book_types import BookConfiguration, Outline
from .errors import ConfigurationError, OutlineGenerationError, UpstreamParseError
from .llm import generation_parameters_for, get_text_generator
from .outline_parser import parse_outline
from .prompts import build_outline_prompt

PROMPT_KEY = "outline"


@dataclass
class OutlineResult:
    outline: Outline
    prompt: str
    requested_chapters: int
    count_mismatch: bool


def generate_outline(config: BookConfiguration, *, generator: Optional[Any] = None) -> OutlineResult:
    """Request the book outline for ``config`` and return it parsed and renumbered.

    Parameters
    ----------
    config:
        A validated configuration; the topic must be non-empty and the chapter
        count within range.
    generator:
        Optional client exposing ``generate_response``. Defaults to the
        application's configured generator.

    A chapter count different from the requested one is logged as a warning
    and flagged on the result; the stubs are trimmed to the requested count and
    renumbered ``1..N``.
    """

    if not config.topic.strip():
        raise ConfigurationError("El tema es requerido")

    final_prompt = build_outline_prompt(config)
    if generator is None:
        generator = get_text_generator(config.model)
    generation_kwargs = generation_parameters_for(PROMPT_KEY)

    current_app.logger.info(
        "Requesting outline for %d chapters (genre=%s).", config.chapter_count, config.genre
    )
    try:
        raw_response = generator.generate_response(final_prompt, **generation_kwargs)
    except ConfigurationError:
        raise
    except Exception as exc:
        current_app.logger.warning("LLM outline generation failed: %s", exc)
        raise OutlineGenerationError(f"Error generando outline: {exc}") from exc

    parsed = parse_outline(raw_response or "")

    returned = len(parsed.chapters)
    if returned == 0:
        raise UpstreamParseError("El outline generado no contiene capítulos")
    count_mismatch = returned != config.chapter_count
    if count_mismatch:
        current_app.logger.warning(
            "Outline returned %d chapters but %d were requested; continuing with %d.",
            returned,
            config.chapter_count,
            min(returned, config.chapter_count),
        )

    return OutlineResult(
        outline=parsed.renumbered(limit=config.chapter_count),
        prompt=final_prompt,
        requested_chapters=config.chapter_count,
        count_mismatch=count_mismatch,
    )
