import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from bookgen import create_app
from bookgen.config import TestConfig
from bookgen.services import story_outline
from bookgen.services.book_types import BookConfiguration
from bookgen.services.errors import (
    ConfigurationError,
    MissingCredentialsError,
    OutlineGenerationError,
    UpstreamParseError,
)


@pytest.fixture
def app_ctx():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


def _config(chapters: int = 2, topic: str = "Un detective en París") -> BookConfiguration:
    return BookConfiguration(
        topic=topic,
        genre="Misterio",
        writing_style="Descriptivo",
        tone="Serio",
        target_audience="Adultos",
        chapter_count=chapters,
    )


def _outline_json(chapters: int) -> str:
    return json.dumps(
        {
            "titulo": "Sombras sobre el Sena",
            "sinopsis": "Un inspector persigue a un ladrón de arte.",
            "capitulos": [
                {"numero": index * 10, "titulo": f"Parte {index}", "descripcion": f"Sucede {index}"}
                for index in range(1, chapters + 1)
            ],
            "personajes": [{"nombre": "Inspector Moreau", "descripcion": "Veterano cansado"}],
            "arcoNarrativo": "Del robo a la captura",
        }
    )


def test_generate_outline_uses_generator_and_prompt_parameters(app_ctx):
    calls = []

    class DummyGenerator:
        def generate_response(self, prompt: str, **kwargs: object) -> str:
            calls.append((prompt, kwargs))
            return "Aquí tienes el esquema:\n" + _outline_json(2)

    result = story_outline.generate_outline(_config(), generator=DummyGenerator())

    assert len(calls) == 1
    prompt, kwargs = calls[0]
    assert "Un detective en París" in prompt
    assert kwargs["max_new_tokens"] == 4000
    assert result.outline.title == "Sombras sobre el Sena"
    assert [stub.number for stub in result.outline.chapters] == [1, 2]
    assert result.count_mismatch is False


def test_extra_chapters_are_trimmed_with_warning(app_ctx):
    class DummyGenerator:
        def generate_response(self, prompt: str, **_: object) -> str:
            return _outline_json(4)

    result = story_outline.generate_outline(_config(chapters=3), generator=DummyGenerator())

    assert result.count_mismatch is True
    assert [stub.title for stub in result.outline.chapters] == ["Parte 1", "Parte 2", "Parte 3"]


def test_fewer_chapters_are_kept(app_ctx):
    class DummyGenerator:
        def generate_response(self, prompt: str, **_: object) -> str:
            return _outline_json(2)

    result = story_outline.generate_outline(_config(chapters=5), generator=DummyGenerator())

    assert result.count_mismatch is True
    assert len(result.outline.chapters) == 2


def test_outline_without_chapters_is_a_parse_error(app_ctx):
    class DummyGenerator:
        def generate_response(self, prompt: str, **_: object) -> str:
            return _outline_json(0)

    with pytest.raises(UpstreamParseError):
        story_outline.generate_outline(_config(), generator=DummyGenerator())


def test_provider_failure_is_wrapped(app_ctx):
    class FailingGenerator:
        def generate_response(self, prompt: str, **_: object) -> str:
            raise RuntimeError("rate limited")

    with pytest.raises(OutlineGenerationError, match="rate limited"):
        story_outline.generate_outline(_config(), generator=FailingGenerator())


def test_empty_topic_is_rejected_before_any_request(app_ctx):
    with pytest.raises(ConfigurationError):
        story_outline.generate_outline(_config(topic="   "))


def test_missing_api_key_is_reported(app_ctx):
    app_ctx.config["OPENAI_API_KEY"] = None
    app_ctx.config.pop("_TEXT_GENERATOR_INSTANCE", None)

    with pytest.raises(MissingCredentialsError):
        story_outline.generate_outline(_config())
