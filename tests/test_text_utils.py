import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from bookgen.services.text_utils import (
    calculate_progress,
    count_words,
    estimate_tokens,
    slugify_filename,
    summarize,
)


def test_count_words_matches_whitespace_tokenisation():
    text = "  Uno dos\ttres\n\ncuatro  "

    assert count_words(text) == len(text.split()) == 4
    assert count_words(text) == count_words(text)
    assert count_words("") == 0


def test_summary_returns_short_content_unchanged():
    content = "a" * 500

    assert summarize(content) == content


def test_summary_keeps_the_tail_of_long_content():
    content = "b" * 200 + "c" * 500

    summary = summarize(content)

    assert len(summary) == 503
    assert summary == "..." + "c" * 500


def test_progress_rounds_half_up():
    assert calculate_progress(0, 0) == 0
    assert calculate_progress(1, 3) == 33
    assert calculate_progress(1, 8) == 13
    assert calculate_progress(3, 3) == 100


def test_slugify_filename_replaces_non_alphanumerics():
    assert slugify_filename("El Misterio de París!", "epub") == "el_misterio_de_par_s_.epub"


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("abcde") == 2
