"""Streamed chapter generation and the server-sent-event framing it travels in.

A chapter stream is a generator of :class:`ChunkEvent` items terminated by
exactly one :class:`CompleteEvent` or :class:`ErrorEvent`. On the wire every
event is one ``data: {"tipo": ..., "contenido": ...}`` frame.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Union

from .book_types import BookConfiguration, Outline
from .llm import generation_parameters_for, get_text_generator
from .prompts import PriorSummary, build_chapter_prompt

LOGGER = logging.getLogger(__name__)

PROMPT_KEY = "chapter"
CHUNK_LOG_INTERVAL = 50


@dataclass(frozen=True)
class ChunkEvent:
    text: str
    tipo = "chunk"

    def to_payload(self) -> Dict[str, Any]:
        return {"tipo": self.tipo, "contenido": self.text}


@dataclass(frozen=True)
class CompleteEvent:
    full_text: str
    tipo = "completo"

    def to_payload(self) -> Dict[str, Any]:
        return {"tipo": self.tipo, "contenido": self.full_text}


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    tipo = "error"

    def to_payload(self) -> Dict[str, Any]:
        return {"tipo": self.tipo, "contenido": self.message}


ChapterEvent = Union[ChunkEvent, CompleteEvent, ErrorEvent]


def is_terminal(event: ChapterEvent) -> bool:
    return isinstance(event, (CompleteEvent, ErrorEvent))


def stream_chapter(
    number: int,
    outline: Outline,
    config: BookConfiguration,
    prior_summaries: Sequence[PriorSummary],
    *,
    generator: Optional[Any] = None,
) -> Iterator[ChapterEvent]:
    """Stream chapter ``number`` from the model.

    A missing stub raises :class:`PromptBuildError` and missing credentials
    raise :class:`ConfigurationError`; both abort before any request. Provider
    failures become a single terminal :class:`ErrorEvent`. Chunks already
    yielded are never retracted, so consumers discard partial text on error.
    """

    prompt = build_chapter_prompt(number, outline, config, list(prior_summaries))
    if generator is None:
        generator = get_text_generator(config.model)
    generation_kwargs = generation_parameters_for(PROMPT_KEY)

    LOGGER.info(
        "Streaming chapter %d/%d (%d prior summaries, prompt %d chars).",
        number,
        len(outline.chapters),
        len(prior_summaries),
        len(prompt),
    )

    collected: List[str] = []
    try:
        deltas = iter(generator.stream_response(prompt, **generation_kwargs))
    except Exception as exc:
        LOGGER.warning("Chapter %d stream could not start: %s", number, exc)
        yield ErrorEvent(_error_message(exc))
        return

    while True:
        try:
            delta = next(deltas)
        except StopIteration:
            break
        except Exception as exc:
            LOGGER.warning("Chapter %d stream failed after %d chunks: %s", number, len(collected), exc)
            yield ErrorEvent(_error_message(exc))
            return

        if not delta:
            continue
        collected.append(delta)
        if len(collected) % CHUNK_LOG_INTERVAL == 0:
            LOGGER.debug("Chapter %d: %d chunks received.", number, len(collected))
        yield ChunkEvent(delta)

    full_text = "".join(collected)
    LOGGER.info("Chapter %d stream completed: %d chunks, %d chars.", number, len(collected), len(full_text))
    yield CompleteEvent(full_text)


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


# ---------------- SSE framing ----------------
def encode_sse(payload: Union[ChapterEvent, Dict[str, Any]]) -> str:
    data = payload.to_payload() if hasattr(payload, "to_payload") else payload
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


def event_from_payload(payload: Any) -> Optional[ChapterEvent]:
    if not isinstance(payload, dict):
        return None
    kind = payload.get("tipo")
    content = payload.get("contenido")
    content = "" if content is None else str(content)
    if kind == ChunkEvent.tipo:
        return ChunkEvent(content)
    if kind == CompleteEvent.tipo:
        return CompleteEvent(content)
    if kind == ErrorEvent.tipo:
        return ErrorEvent(content)
    return None


def iter_sse_events(chunks: Iterable[Union[bytes, str]]) -> Iterator[ChapterEvent]:
    """Decode a transport stream of SSE frames into chapter events.

    Frames may be split arbitrarily across ``chunks``. Frames that are not
    ``data:`` lines or whose JSON cannot be decoded are logged and skipped; a
    trailing frame without the blank-line terminator is still processed.
    """

    decoder = codecs.getincrementaldecoder("utf-8")()
    buffer = ""
    for chunk in chunks:
        buffer += decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        frames = buffer.split("\n\n")
        buffer = frames.pop()
        for frame in frames:
            event = _decode_frame(frame)
            if event is not None:
                yield event

    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        event = _decode_frame(buffer)
        if event is not None:
            yield event


def _decode_frame(frame: str) -> Optional[ChapterEvent]:
    line = frame.strip()
    if not line.startswith("data:"):
        return None
    raw = line[len("data:") :].strip()
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Skipping undecodable stream frame (%s): %s", exc.msg, raw[:100])
        return None
    return event_from_payload(payload)
