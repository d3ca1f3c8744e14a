"""Drive a full book generation run: outline first, then chapters in order.

The run state is a single :class:`GenerationState` owned by a
:class:`GenerationOrchestrator`. It only changes through :func:`reduce`, which
maps the current state and one action from a closed set to the next state.
Chapters are generated strictly one after another because every chapter
prompt carries the summaries of the chapters before it.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from .book_types import BookConfiguration, Chapter, ChapterStatus, GenerationState, Outline, Stage
from .chapter_stream import ChunkEvent, CompleteEvent, ErrorEvent, stream_chapter
from .errors import BookGenerationError, RegenerationNotConfirmed, RunStateError, StreamFailure
from .revision import revise_chapter
from .story_outline import generate_outline
from .text_utils import SUMMARY_CHAR_LIMIT, calculate_progress, summarize

LOGGER = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Generación interrumpida antes de terminar"

NumberedSummary = Tuple[int, str]


# ---------------- actions ----------------
@dataclass(frozen=True)
class StartOutline:
    configuration: BookConfiguration


@dataclass(frozen=True)
class OutlineCompleted:
    outline: Outline


@dataclass(frozen=True)
class StartChapter:
    number: int


@dataclass(frozen=True)
class UpdateChapterContent:
    number: int
    content: str


@dataclass(frozen=True)
class ChapterCompleted:
    number: int
    content: str
    summary: str
    continue_run: bool = True


@dataclass(frozen=True)
class EditChapter:
    number: int
    content: str
    summary_limit: int = SUMMARY_CHAR_LIMIT


@dataclass(frozen=True)
class ResetChapter:
    number: int


@dataclass(frozen=True)
class Fail:
    error: str


@dataclass(frozen=True)
class Restart:
    pass


Action = Union[
    StartOutline,
    OutlineCompleted,
    StartChapter,
    UpdateChapterContent,
    ChapterCompleted,
    EditChapter,
    ResetChapter,
    Fail,
    Restart,
]


def _update_chapter(state: GenerationState, number: int, update: Callable[[Chapter], Chapter]) -> List[Chapter]:
    return [update(chapter) if chapter.number == number else chapter for chapter in state.chapters]


def _progress(chapters: List[Chapter]) -> int:
    done = sum(1 for chapter in chapters if chapter.status is ChapterStatus.COMPLETED)
    return calculate_progress(done, len(chapters))


def reduce(state: GenerationState, action: Action) -> GenerationState:
    """Return the state that follows ``state`` after ``action``."""

    if isinstance(action, StartOutline):
        return GenerationState(
            stage=Stage.GENERATING_OUTLINE,
            configuration=action.configuration,
            generating=True,
        )

    if isinstance(action, OutlineCompleted):
        outline = action.outline.renumbered()
        chapters = [Chapter(number=stub.number, title=stub.title) for stub in outline.chapters]
        return replace(
            state,
            stage=Stage.GENERATING_CHAPTERS,
            outline=outline,
            chapters=chapters,
            current_chapter=1,
            progress=0,
        )

    if isinstance(action, StartChapter):
        return replace(
            state,
            current_chapter=action.number,
            chapters=_update_chapter(
                state, action.number, lambda chapter: replace(chapter, status=ChapterStatus.GENERATING)
            ),
        )

    if isinstance(action, UpdateChapterContent):
        return replace(
            state,
            chapters=_update_chapter(state, action.number, lambda chapter: chapter.with_content(action.content)),
        )

    if isinstance(action, ChapterCompleted):
        chapters = _update_chapter(
            state,
            action.number,
            lambda chapter: chapter.with_content(
                action.content, summary=action.summary, status=ChapterStatus.COMPLETED
            ),
        )
        all_done = all(chapter.status is ChapterStatus.COMPLETED for chapter in chapters)
        return replace(
            state,
            chapters=chapters,
            stage=Stage.COMPLETED if all_done else state.stage,
            generating=action.continue_run and not all_done,
            progress=_progress(chapters),
        )

    if isinstance(action, EditChapter):

        def edit(chapter: Chapter) -> Chapter:
            summary = chapter.summary
            if chapter.status is ChapterStatus.COMPLETED:
                summary = summarize(action.content, action.summary_limit)
            return chapter.with_content(action.content, summary=summary)

        return replace(state, chapters=_update_chapter(state, action.number, edit))

    if isinstance(action, ResetChapter):
        chapters = _update_chapter(
            state,
            action.number,
            lambda chapter: chapter.with_content("", summary="", status=ChapterStatus.GENERATING),
        )
        return replace(
            state,
            stage=Stage.GENERATING_CHAPTERS,
            chapters=chapters,
            current_chapter=action.number,
            generating=True,
            error=None,
            progress=_progress(chapters),
        )

    if isinstance(action, Fail):
        chapters = [
            replace(chapter, status=ChapterStatus.ERROR) if chapter.status is ChapterStatus.GENERATING else chapter
            for chapter in state.chapters
        ]
        return replace(state, chapters=chapters, error=action.error, generating=False)

    if isinstance(action, Restart):
        return GenerationState()

    raise TypeError(f"Unknown action: {action!r}")


# ---------------- observable events ----------------
@dataclass(frozen=True)
class RunEvent:
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {"tipo": self.kind, **self.data}


Listener = Callable[[Action, GenerationState], None]


class GenerationOrchestrator:
    """Single writer of one generation session's state."""

    def __init__(
        self,
        *,
        generator: Optional[Any] = None,
        listener: Optional[Listener] = None,
        summary_limit: int = SUMMARY_CHAR_LIMIT,
        outline_client: Callable[..., Any] = generate_outline,
        chapter_client: Callable[..., Iterator[Any]] = stream_chapter,
    ) -> None:
        self._generator = generator
        self._listener = listener
        self._summary_limit = summary_limit
        self._outline_client = outline_client
        self._chapter_client = chapter_client
        self._lock = threading.Lock()
        self.state = GenerationState()

    def dispatch(self, action: Action) -> GenerationState:
        self.state = reduce(self.state, action)
        if self._listener is not None:
            self._listener(action, self.state)
        return self.state

    # ---------------- full run ----------------
    def run(self, configuration: BookConfiguration) -> Iterator[RunEvent]:
        """Start a run and return the stream of its events.

        The state moves to ``generating-outline`` immediately; the outline and
        chapter requests happen as the returned iterator is consumed.
        """

        with self._lock:
            if self.state.generating:
                raise RunStateError("Ya hay una generación en curso")
            self.dispatch(StartOutline(configuration))
        return self._guarded(self._run(configuration))

    def _run(self, configuration: BookConfiguration) -> Iterator[RunEvent]:
        yield RunEvent("stage", {"etapa": self.state.stage.value})

        try:
            result = self._outline_client(configuration, generator=self._generator)
        except BookGenerationError as exc:
            yield from self._fail(str(exc))
            return
        except Exception as exc:
            LOGGER.exception("Unexpected error while generating the outline")
            yield from self._fail(str(exc) or "Error desconocido")
            return

        self.dispatch(OutlineCompleted(result.outline))
        yield RunEvent(
            "outline",
            {"outline": result.outline.to_dict(), "advertencia": bool(getattr(result, "count_mismatch", False))},
        )
        yield RunEvent("stage", {"etapa": self.state.stage.value})

        summaries: List[NumberedSummary] = []
        for chapter in list(self.state.chapters):
            completed = yield from self._generate_chapter(chapter.number, summaries, continue_run=True)
            if not completed:
                return
            summaries.append((chapter.number, self.state.chapter(chapter.number).summary))

        LOGGER.info("Run completed: %d chapters, %d words.", len(self.state.chapters), self.state.total_words)
        yield RunEvent(
            "completed",
            {"palabrasTotales": self.state.total_words, "progreso": self.state.progress},
        )

    # ---------------- single chapter ----------------
    def regenerate_chapter(self, number: int, *, confirm: bool) -> Iterator[RunEvent]:
        """Discard chapter ``number`` and stream it again.

        Regeneration is destructive, so ``confirm`` must be true. The prior
        summaries are rebuilt from the completed chapters numbered below
        ``number``.
        """

        if not confirm:
            raise RegenerationNotConfirmed(
                f"Regenerar el capítulo {number} descartará su contenido actual; confirma la operación."
            )

        with self._lock:
            if self.state.outline is None or self.state.configuration is None:
                raise RunStateError("No hay un libro generado para regenerar.")
            if self.state.generating:
                raise RunStateError("Ya hay una generación en curso")
            if self.state.chapter(number) is None:
                raise RunStateError(f"El capítulo {number} no existe.")

            prior = [
                (chapter.number, summarize(chapter.content, self._summary_limit))
                for chapter in sorted(self.state.chapters, key=lambda item: item.number)
                if chapter.number < number and chapter.status is ChapterStatus.COMPLETED
            ]
            self.dispatch(ResetChapter(number))
        LOGGER.info("Regenerating chapter %d with %d prior summaries.", number, len(prior))
        return self._guarded(self._generate_chapter(number, prior, continue_run=False))

    def _generate_chapter(
        self, number: int, prior_summaries: List[NumberedSummary], *, continue_run: bool
    ) -> Iterator[RunEvent]:
        self.dispatch(StartChapter(number))
        yield RunEvent("chapter-start", {"numero": number})

        accumulated = ""
        try:
            events = self._chapter_client(
                number,
                self.state.outline,
                self.state.configuration,
                list(prior_summaries),
                generator=self._generator,
            )
            for event in events:
                if isinstance(event, ChunkEvent):
                    accumulated += event.text
                    self.dispatch(UpdateChapterContent(number, accumulated))
                    yield RunEvent("chunk", {"numero": number, "contenido": event.text})
                elif isinstance(event, CompleteEvent):
                    if event.full_text != accumulated:
                        raise StreamFailure(
                            f"El texto final del capítulo {number} no coincide con los fragmentos recibidos."
                        )
                    summary = summarize(event.full_text, self._summary_limit)
                    self.dispatch(ChapterCompleted(number, event.full_text, summary, continue_run=continue_run))
                    chapter = self.state.chapter(number)
                    yield RunEvent(
                        "chapter-complete",
                        {"numero": number, "palabras": chapter.word_count, "resumen": summary},
                    )
                    yield RunEvent("progress", {"progreso": self.state.progress})
                    return True
                elif isinstance(event, ErrorEvent):
                    yield from self._fail(event.message)
                    return False
        except BookGenerationError as exc:
            yield from self._fail(str(exc))
            return False
        except Exception as exc:
            LOGGER.exception("Unexpected error while streaming chapter %d", number)
            yield from self._fail(str(exc) or "Error desconocido")
            return False

        yield from self._fail(f"El stream del capítulo {number} terminó sin evento final.")
        return False

    def _fail(self, message: str) -> Iterator[RunEvent]:
        LOGGER.warning("Generation run failed: %s", message)
        self.dispatch(Fail(message))
        yield RunEvent("error", {"error": message})

    def _guarded(self, events: Iterator[RunEvent]) -> Iterator[RunEvent]:
        try:
            yield from events
        finally:
            self.abandon()

    def abandon(self) -> bool:
        """Fail the run if it is still marked in flight with nobody driving it.

        Called when an event stream is closed before its terminal event, or
        discarded without ever being consumed. Returns whether the state changed.
        """

        with self._lock:
            if not self.state.generating:
                return False
            LOGGER.warning("Generation interrupted at chapter %d.", self.state.current_chapter)
            self.dispatch(Fail(INTERRUPTED_MESSAGE))
        return True

    # ---------------- edits ----------------
    def edit_chapter(self, number: int, content: str) -> Chapter:
        """Replace a chapter's content directly; its status is left unchanged."""

        with self._lock:
            self._require_idle_chapter(number)
            self.dispatch(EditChapter(number, content, self._summary_limit))
        return self.state.chapter(number)

    def improve_chapter(self, number: int, instructions: str) -> Chapter:
        """Rewrite a chapter with the model following ``instructions``, then apply it as an edit."""

        chapter = self._require_idle_chapter(number)
        model = self.state.configuration.model if self.state.configuration else None
        revised = revise_chapter(chapter.content, instructions, generator=self._generator, model=model)
        return self.edit_chapter(number, revised)

    def _require_idle_chapter(self, number: int) -> Chapter:
        if self.state.generating:
            raise RunStateError("No se puede editar mientras hay una generación en curso.")
        chapter = self.state.chapter(number)
        if chapter is None:
            raise RunStateError(f"El capítulo {number} no existe.")
        return chapter

    # ---------------- session ----------------
    def save(self, gateway: Any) -> Any:
        """Persist the completed book through ``gateway.create``."""

        state = self.state
        if state.stage is not Stage.COMPLETED or state.outline is None or state.configuration is None:
            raise RunStateError("El libro debe estar completo antes de guardarlo.")
        return gateway.create(
            state.outline.title,
            state.outline.synopsis,
            state.configuration,
            state.outline,
            state.chapters,
        )

    def reset(self) -> GenerationState:
        with self._lock:
            return self.dispatch(Restart())


class RunRegistry:
    """In-process map of run identifiers to orchestrators for the HTTP layer.

    At most ``max_runs`` runs are kept. Creating one more evicts the oldest
    run that is not generating; discarded runs have their parked stream closed
    and their in-flight flag cleared.
    """

    def __init__(
        self,
        factory: Callable[[], GenerationOrchestrator] = GenerationOrchestrator,
        max_runs: Optional[int] = None,
    ) -> None:
        self._factory = factory
        self._max_runs = max_runs
        self._runs: "OrderedDict[str, GenerationOrchestrator]" = OrderedDict()
        self._streams: Dict[str, Iterator[RunEvent]] = {}
        self._lock = threading.Lock()

    def create(self) -> Tuple[str, GenerationOrchestrator]:
        run_id = uuid.uuid4().hex
        orchestrator = self._factory()
        with self._lock:
            evicted = self._evict_idle()
            self._runs[run_id] = orchestrator
        for old_id, old_orchestrator, stream in evicted:
            self._release(old_id, old_orchestrator, stream)
        return run_id, orchestrator

    def get(self, run_id: str) -> Optional[GenerationOrchestrator]:
        with self._lock:
            return self._runs.get(run_id)

    def attach_stream(self, run_id: str, events: Iterator[RunEvent]) -> None:
        """Park the event stream of a started run until a client consumes it."""

        with self._lock:
            self._streams[run_id] = events

    def take_stream(self, run_id: str) -> Optional[Iterator[RunEvent]]:
        with self._lock:
            return self._streams.pop(run_id, None)

    def discard(self, run_id: str) -> bool:
        with self._lock:
            stream = self._streams.pop(run_id, None)
            orchestrator = self._runs.pop(run_id, None)
        if orchestrator is None:
            return False
        self._release(run_id, orchestrator, stream)
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)

    def _evict_idle(self) -> List[Tuple[str, GenerationOrchestrator, Optional[Iterator[RunEvent]]]]:
        evicted = []
        if self._max_runs is None:
            return evicted
        for run_id in list(self._runs):
            if len(self._runs) < self._max_runs:
                break
            orchestrator = self._runs[run_id]
            if orchestrator.state.generating and run_id not in self._streams:
                continue
            del self._runs[run_id]
            evicted.append((run_id, orchestrator, self._streams.pop(run_id, None)))
        return evicted

    @staticmethod
    def _release(
        run_id: str, orchestrator: GenerationOrchestrator, stream: Optional[Iterator[RunEvent]]
    ) -> None:
        close = getattr(stream, "close", None)
        if close is not None:
            close()
        orchestrator.abandon()
        LOGGER.info("Discarded generation run %s.", run_id)
