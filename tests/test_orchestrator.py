import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from bookgen import create_app
from bookgen.config import TestConfig
from bookgen.services.book_types import (
    BookConfiguration,
    ChapterStatus,
    ChapterStub,
    GenerationState,
    Outline,
    Stage,
)
from bookgen.services.chapter_stream import ChunkEvent, CompleteEvent, ErrorEvent
from bookgen.services.errors import RegenerationNotConfirmed, RunStateError, UpstreamParseError
from bookgen.services.orchestrator import (
    INTERRUPTED_MESSAGE,
    ChapterCompleted,
    GenerationOrchestrator,
    OutlineCompleted,
    RunRegistry,
    StartOutline,
    reduce,
)
from bookgen.services.story_outline import OutlineResult
from bookgen.services.text_utils import summarize


CONFIG = BookConfiguration(
    topic="Un faro abandonado",
    genre="Misterio",
    writing_style="Descriptivo",
    tone="Oscuro",
    target_audience="Adultos",
    chapter_count=3,
)


def _outline(count: int) -> Outline:
    return Outline(
        title="La luz apagada",
        synopsis="Una guardiana vuelve al faro.",
        chapters=tuple(ChapterStub(number, f"Capítulo {number}", f"Sucede {number}") for number in range(1, count + 1)),
    )


class FakeClients:
    def __init__(self, contents, fail_on=None):
        self.contents = dict(contents)
        self.fail_on = fail_on
        self.chapter_calls = []

    def outline(self, config, *, generator=None):
        count = len(self.contents)
        return OutlineResult(
            outline=_outline(count), prompt="prompt", requested_chapters=config.chapter_count, count_mismatch=False
        )

    def chapter(self, number, outline, config, prior_summaries, *, generator=None):
        self.chapter_calls.append((number, list(prior_summaries)))
        if number == self.fail_on:
            yield ChunkEvent("texto parcial")
            yield ErrorEvent("se cortó la conexión")
            return
        text = self.contents[number]
        half = len(text) // 2
        yield ChunkEvent(text[:half])
        yield ChunkEvent(text[half:])
        yield CompleteEvent(text)


def _contents():
    return {
        1: "palabra " * 100 + "fin del primero",
        2: "segundo capítulo con varias palabras",
        3: "tercer capítulo cierra la historia",
    }


def _orchestrator(clients, **kwargs):
    return GenerationOrchestrator(outline_client=clients.outline, chapter_client=clients.chapter, **kwargs)


def _completed_run(clients):
    orchestrator = _orchestrator(clients)
    list(orchestrator.run(CONFIG))
    return orchestrator


def test_chapters_run_strictly_in_order():
    clients = FakeClients(_contents())
    orchestrator = _orchestrator(clients)

    events = list(orchestrator.run(CONFIG))

    starts = [event.data["numero"] for event in events if event.kind == "chapter-start"]
    assert starts == [1, 2, 3]
    boundaries = [
        (event.kind, event.data["numero"]) for event in events if event.kind in {"chapter-start", "chapter-complete"}
    ]
    assert boundaries == [
        ("chapter-start", 1),
        ("chapter-complete", 1),
        ("chapter-start", 2),
        ("chapter-complete", 2),
        ("chapter-start", 3),
        ("chapter-complete", 3),
    ]
    assert events[-1].kind == "completed"


def test_successful_run_completes_every_chapter():
    clients = FakeClients(_contents())

    state = _completed_run(clients).state

    assert state.stage is Stage.COMPLETED
    assert state.progress == 100
    assert state.generating is False
    assert [chapter.number for chapter in state.chapters] == [1, 2, 3]
    assert all(chapter.status is ChapterStatus.COMPLETED for chapter in state.chapters)
    assert state.chapter(1).summary == summarize(_contents()[1])
    assert state.total_words == sum(len(text.split()) for text in _contents().values())


def test_prior_summaries_accumulate_across_chapters():
    clients = FakeClients(_contents())

    _completed_run(clients)

    first_summary = summarize(_contents()[1])
    assert clients.chapter_calls == [
        (1, []),
        (2, [(1, first_summary)]),
        (3, [(1, first_summary), (2, _contents()[2])]),
    ]


def test_listener_sees_every_transition():
    seen = []
    clients = FakeClients(_contents())
    orchestrator = _orchestrator(clients, listener=lambda action, state: seen.append((type(action).__name__, state)))

    list(orchestrator.run(CONFIG))

    names = [name for name, _ in seen]
    assert names[0] == "StartOutline"
    assert names[1] == "OutlineCompleted"
    assert names[-1] == "ChapterCompleted"
    start_two = names.index("StartChapter", names.index("ChapterCompleted"))
    assert seen[start_two - 1][1].chapter(1).status is ChapterStatus.COMPLETED


def test_stream_error_stops_the_run_and_keeps_finished_chapters():
    clients = FakeClients(_contents(), fail_on=2)
    orchestrator = _orchestrator(clients)

    events = list(orchestrator.run(CONFIG))

    state = orchestrator.state
    assert events[-1].kind == "error"
    assert state.error == "se cortó la conexión"
    assert state.generating is False
    assert state.chapter(1).status is ChapterStatus.COMPLETED
    assert state.chapter(2).status is ChapterStatus.ERROR
    assert state.chapter(3).status is ChapterStatus.PENDING
    assert [number for number, _ in clients.chapter_calls] == [1, 2]


def test_outline_failure_ends_in_error_state():
    def failing_outline(config, *, generator=None):
        raise UpstreamParseError("No se encontró JSON en la respuesta del modelo")

    orchestrator = GenerationOrchestrator(outline_client=failing_outline)

    events = list(orchestrator.run(CONFIG))

    assert [event.kind for event in events] == ["stage", "error"]
    assert orchestrator.state.error == "No se encontró JSON en la respuesta del modelo"
    assert orchestrator.state.chapters == []


def test_second_run_while_generating_is_rejected():
    clients = FakeClients(_contents())
    orchestrator = _orchestrator(clients)
    orchestrator.run(CONFIG)

    with pytest.raises(RunStateError):
        orchestrator.run(CONFIG)


def test_regenerating_middle_chapter_leaves_neighbours_untouched():
    clients = FakeClients(_contents())
    orchestrator = _completed_run(clients)
    before_first = orchestrator.state.chapter(1).content
    before_third = orchestrator.state.chapter(3).content
    clients.contents[2] = "una versión nueva del segundo"

    events = list(orchestrator.regenerate_chapter(2, confirm=True))

    state = orchestrator.state
    assert clients.chapter_calls[-1] == (2, [(1, summarize(before_first))])
    assert state.chapter(1).content == before_first
    assert state.chapter(3).content == before_third
    assert state.chapter(2).content == "una versión nueva del segundo"
    assert state.stage is Stage.COMPLETED
    assert state.progress == 100
    assert [event.kind for event in events][0] == "chapter-start"


def test_regeneration_requires_confirmation():
    clients = FakeClients(_contents())
    orchestrator = _completed_run(clients)
    calls_before = len(clients.chapter_calls)

    with pytest.raises(RegenerationNotConfirmed):
        orchestrator.regenerate_chapter(2, confirm=False)

    assert len(clients.chapter_calls) == calls_before
    assert orchestrator.state.chapter(2).status is ChapterStatus.COMPLETED


def test_regeneration_without_outline_is_rejected():
    with pytest.raises(RunStateError):
        GenerationOrchestrator().regenerate_chapter(1, confirm=True)


def test_manual_edit_recomputes_word_count_and_keeps_status():
    orchestrator = _completed_run(FakeClients(_contents()))

    chapter = orchestrator.edit_chapter(3, "solo cuatro palabras aquí")

    assert chapter.word_count == 4
    assert chapter.status is ChapterStatus.COMPLETED
    assert chapter.summary == "solo cuatro palabras aquí"


def test_save_requires_a_completed_book():
    class Gateway:
        def __init__(self):
            self.calls = []

        def create(self, *args):
            self.calls.append(args)
            return "saved"

    gateway = Gateway()
    failed = _orchestrator(FakeClients(_contents(), fail_on=3))
    list(failed.run(CONFIG))

    with pytest.raises(RunStateError):
        failed.save(gateway)

    completed = _completed_run(FakeClients(_contents()))
    assert completed.save(gateway) == "saved"
    title, synopsis, config, outline, chapters = gateway.calls[0]
    assert title == "La luz apagada"
    assert config is CONFIG
    assert len(chapters) == 3


def test_reset_returns_initial_state():
    orchestrator = _completed_run(FakeClients(_contents()))

    state = orchestrator.reset()

    assert state == GenerationState()


def test_reducer_returns_new_state_objects():
    initial = GenerationState()
    started = reduce(initial, StartOutline(CONFIG))
    outlined = reduce(started, OutlineCompleted(_outline(2)))
    completed = reduce(outlined, ChapterCompleted(1, "hola mundo", "hola mundo"))

    assert initial.stage is Stage.CONFIGURING
    assert started.stage is Stage.GENERATING_OUTLINE
    assert outlined.chapter(1).status is ChapterStatus.PENDING
    assert completed.chapter(1).word_count == 2
    assert completed.progress == 50


def test_outline_completed_renumbers_chapters():
    outline = Outline(
        title="T",
        synopsis="S",
        chapters=(ChapterStub(5, "a", ""), ChapterStub(9, "b", "")),
    )

    state = reduce(reduce(GenerationState(), StartOutline(CONFIG)), OutlineCompleted(outline))

    assert [chapter.number for chapter in state.chapters] == [1, 2]


def test_improve_chapter_applies_revision():
    app = create_app(TestConfig)
    prompts = []

    class DummyGenerator:
        def generate_response(self, prompt: str, **_: object) -> str:
            prompts.append(prompt)
            return "  versión pulida del capítulo  "

    clients = FakeClients(_contents())
    orchestrator = _orchestrator(clients, generator=DummyGenerator())
    list(orchestrator.run(CONFIG))

    with app.app_context():
        chapter = orchestrator.improve_chapter(2, "más tensión")

    assert chapter.content == "versión pulida del capítulo"
    assert "más tensión" in prompts[0]
    assert orchestrator.state.chapter(1).content == _contents()[1]


def test_registry_creates_and_discards_runs():
    registry = RunRegistry()

    run_id, orchestrator = registry.create()
    registry.attach_stream(run_id, iter(()))

    assert registry.get(run_id) is orchestrator
    assert registry.take_stream(run_id) is not None
    assert registry.take_stream(run_id) is None
    assert registry.discard(run_id) is True
    assert registry.get(run_id) is None
    assert len(registry) == 0


def test_regeneration_after_failed_run_leaves_the_run_idle():
    clients = FakeClients(_contents(), fail_on=2)
    orchestrator = _orchestrator(clients)
    list(orchestrator.run(CONFIG))
    clients.fail_on = None

    events = list(orchestrator.regenerate_chapter(2, confirm=True))

    state = orchestrator.state
    assert events[-1].kind == "progress"
    assert state.generating is False
    assert state.error is None
    assert state.stage is Stage.GENERATING_CHAPTERS
    assert state.chapter(2).status is ChapterStatus.COMPLETED
    assert state.chapter(3).status is ChapterStatus.PENDING
    assert state.progress == 67

    list(orchestrator.regenerate_chapter(3, confirm=True))

    assert clients.chapter_calls[-1] == (3, [(1, summarize(_contents()[1])), (2, _contents()[2])])
    assert orchestrator.state.stage is Stage.COMPLETED
    assert orchestrator.state.generating is False


def test_closing_the_event_stream_fails_the_run():
    clients = FakeClients(_contents())
    orchestrator = _orchestrator(clients)
    events = orchestrator.run(CONFIG)

    for event in events:
        if event.kind == "chapter-complete":
            break
    events.close()

    state = orchestrator.state
    assert state.generating is False
    assert state.error == INTERRUPTED_MESSAGE
    assert state.chapter(1).status is ChapterStatus.COMPLETED
    assert state.chapter(2).status is ChapterStatus.PENDING

    list(orchestrator.regenerate_chapter(2, confirm=True))
    assert orchestrator.state.chapter(2).status is ChapterStatus.COMPLETED


def test_closing_a_regeneration_mid_chapter_marks_it_failed():
    clients = FakeClients(_contents())
    orchestrator = _completed_run(clients)

    events = orchestrator.regenerate_chapter(2, confirm=True)
    assert next(events).kind == "chapter-start"
    assert next(events).kind == "chunk"
    events.close()

    assert orchestrator.state.generating is False
    assert orchestrator.state.chapter(2).status is ChapterStatus.ERROR
    assert orchestrator.edit_chapter(2, "texto a mano").content == "texto a mano"


def test_unconsumed_run_can_be_abandoned():
    orchestrator = _orchestrator(FakeClients(_contents()))
    orchestrator.run(CONFIG)

    assert orchestrator.abandon() is True
    assert orchestrator.state.generating is False
    assert orchestrator.state.error == INTERRUPTED_MESSAGE
    assert orchestrator.abandon() is False


def test_complete_text_must_match_the_streamed_chunks():
    class MismatchedClients(FakeClients):
        def chapter(self, number, outline, config, prior_summaries, *, generator=None):
            yield ChunkEvent("texto ")
            yield ChunkEvent("emitido")
            yield CompleteEvent("otro texto")

    orchestrator = _orchestrator(MismatchedClients(_contents()))

    events = list(orchestrator.run(CONFIG))

    state = orchestrator.state
    assert events[-1].kind == "error"
    assert "no coincide" in events[-1].data["error"]
    assert state.chapter(1).status is ChapterStatus.ERROR
    assert state.chapter(2).status is ChapterStatus.PENDING
    assert state.generating is False


def test_registry_evicts_the_oldest_idle_run_beyond_its_limit():
    registry = RunRegistry(lambda: _orchestrator(FakeClients(_contents())), max_runs=2)
    first_id, first = registry.create()
    registry.attach_stream(first_id, first.run(CONFIG))
    second_id, second = registry.create()
    second.run(CONFIG)

    third_id, _ = registry.create()

    assert len(registry) == 2
    assert registry.get(first_id) is None
    assert first.state.generating is False
    assert registry.get(second_id) is second
    assert registry.get(third_id) is not None
