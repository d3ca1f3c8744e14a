"""Repair and parse the JSON outline returned by the model.

Models often wrap the object in prose or markdown fences, leave it truncated,
or emit typographic quotes. :func:`parse_outline` applies a fixed sequence of
heuristic repairs and either returns a validated :class:`Outline` or raises
:class:`UpstreamParseError`. It never fabricates a default outline.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional

from .book_types import ChapterStub, Character, Outline, positive_int
from .errors import UpstreamParseError

LOGGER = logging.getLogger(__name__)

_WHITESPACE_RUN = re.compile(r"\s+")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_OUTSIDE_SAFE_RANGE = re.compile(r"[^\x20-\x7e\xa0-\u017f]")

_SMART_QUOTES = {
    ord("\u201C"): '"',  # left double quote
    ord("\u201D"): '"',  # right double quote
    ord("\u201E"): '"',  # double low-9 quote
    ord("\u201F"): '"',  # double high-reversed-9 quote
    ord("\u2033"): '"',  # double prime
    ord("\u2018"): "'",  # left single quote
    ord("\u2019"): "'",  # right single quote
    ord("\u201A"): "'",  # single low-9 quote
    ord("\u201B"): "'",  # single high-reversed-9 quote
    ord("\u2032"): "'",  # prime
}


def parse_outline(raw_text: str) -> Outline:
    """Extract, repair and validate the outline object contained in ``raw_text``."""

    candidate = extract_json_object(raw_text)
    candidate = balance_braces(candidate)
    candidate = normalize_json_text(candidate)

    data = _loads_with_retry(candidate)
    return outline_from_payload(data)


def extract_json_object(raw_text: str) -> str:
    text = raw_text or ""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise UpstreamParseError("No se encontró JSON en la respuesta del modelo")
    return text[start : end + 1]


def balance_braces(candidate: str) -> str:
    """Close unterminated containers when the text has more ``{`` than ``}``.

    Slicing at the last ``}`` can also drop a trailing ``]``, so the closers are
    derived from the open containers outside string literals, innermost first.
    """

    if candidate.count("}") >= candidate.count("{"):
        return candidate

    stack: List[str] = []
    in_string = False
    escaped = False
    for char in candidate:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]":
            while stack and stack.pop() != char:
                pass

    closers = "".join(reversed(stack))
    missing_braces = candidate.count("{") - candidate.count("}")
    if closers.count("}") < missing_braces:
        closers += "}" * (missing_braces - closers.count("}"))
    return candidate + closers


def normalize_json_text(candidate: str) -> str:
    text = _WHITESPACE_RUN.sub(" ", candidate)
    text = _TRAILING_COMMA.sub(r"\1", text)
    return text.translate(_SMART_QUOTES)


def _loads_with_retry(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as first_error:
        LOGGER.warning("Outline JSON failed to parse (%s); retrying with a restricted charset.", first_error.msg)

    stripped = _OUTSIDE_SAFE_RANGE.sub("", candidate)
    try:
        return json.loads(stripped)
    except json.JSONDecodeError as exc:
        raise UpstreamParseError(f"El modelo produjo JSON inválido: {exc.msg}") from exc


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return _WHITESPACE_RUN.sub(" ", str(value)).strip()


def outline_from_payload(data: Any) -> Outline:
    if not isinstance(data, dict):
        raise UpstreamParseError("Estructura de outline inválida: se esperaba un objeto JSON")

    title = data.get("titulo")
    synopsis = data.get("sinopsis")
    chapters_raw = data.get("capitulos")
    if not title or not synopsis or not isinstance(chapters_raw, list):
        raise UpstreamParseError("Estructura de outline inválida: faltan titulo, sinopsis o capitulos")

    chapters = tuple(
        ChapterStub(
            number=positive_int(item.get("numero"), index),
            title=_clean(item.get("titulo")),
            description=_clean(item.get("descripcion")),
        )
        for index, item in enumerate(chapters_raw, start=1)
        if isinstance(item, dict)
    )

    characters_raw: Optional[Any] = data.get("personajes")
    if not isinstance(characters_raw, list):
        characters_raw = []
    characters = tuple(
        Character(name=_clean(item.get("nombre")), description=_clean(item.get("descripcion")))
        for item in characters_raw
        if isinstance(item, dict)
    )

    return Outline(
        title=_clean(title),
        synopsis=_clean(synopsis),
        chapters=chapters,
        characters=characters,
        narrative_arc=_clean(data.get("arcoNarrativo")),
    )
