import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from bookgen.services.errors import UpstreamParseError
from bookgen.services.outline_parser import balance_braces, normalize_json_text, parse_outline


def test_truncated_outline_is_repaired():
    raw = 'noise {"titulo":"A","sinopsis":"B","capitulos":[{"numero":1,"titulo":"C","descripcion":"D"}]'

    outline = parse_outline(raw)

    assert outline.title == "A"
    assert outline.synopsis == "B"
    assert len(outline.chapters) == 1
    assert outline.chapters[0].title == "C"
    assert outline.characters == ()


def test_text_without_braces_raises_parse_error():
    with pytest.raises(UpstreamParseError):
        parse_outline("Lo siento, no puedo generar un outline ahora mismo.")


def test_unparseable_json_raises_instead_of_fabricating():
    with pytest.raises(UpstreamParseError):
        parse_outline('{"titulo": "A", "sinopsis": }')


def test_missing_mandatory_fields_raise():
    with pytest.raises(UpstreamParseError):
        parse_outline('{"titulo": "A", "capitulos": []}')


def test_markdown_fences_smart_quotes_and_trailing_commas():
    raw = (
        "```json\n"
        "{\n  “titulo”: “La   ciudad”,\n"
        '  "sinopsis": "Una\n historia",\n'
        '  "capitulos": [\n    {"numero": 1, "titulo": "  Inicio  ", "descripcion": "Todo\tempieza",},\n  ],\n'
        '  "personajes": "no es una lista",\n'
        "}\n```"
    )

    outline = parse_outline(raw)

    assert outline.title == "La ciudad"
    assert outline.synopsis == "Una historia"
    assert outline.chapters[0].title == "Inicio"
    assert outline.chapters[0].description == "Todo empieza"
    assert outline.characters == ()


def test_characters_and_arc_are_cleaned():
    raw = (
        '{"titulo": "T", "sinopsis": "S", "capitulos": [], '
        '"personajes": [{"nombre": " Ana ", "descripcion": "Detective\\n  retirada"}], '
        '"arcoNarrativo": "  Caída y  redención "}'
    )

    outline = parse_outline(raw)

    assert outline.characters[0].name == "Ana"
    assert outline.characters[0].description == "Detective retirada"
    assert outline.narrative_arc == "Caída y redención"


def test_balance_braces_leaves_balanced_text_alone():
    text = '{"a": {"b": 1}}'

    assert balance_braces(text) == text


def test_normalize_collapses_whitespace_and_trailing_commas():
    assert normalize_json_text('{"a": [1,\n 2, ],\n}') == '{"a": [1, 2]}'
