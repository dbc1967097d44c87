from __future__ import annotations

import re

import pytest

from groupkeeper_bot.terms import matcher
from groupkeeper_bot.terms.matcher import (
    contains_abusive_term,
    find_abusive_terms,
    find_first_term,
    normalize_term,
)


def test_obfuscated_spelling_requires_literal_term() -> None:
    text = "you are a f*ck idiot"
    assert contains_abusive_term(text, ["fuck"]) is False
    assert contains_abusive_term(text, ["fuck", "f*ck"]) is True


def test_match_is_case_insensitive() -> None:
    assert contains_abusive_term("What a BASTARD move", ["bastard"])


@pytest.mark.parametrize(
    "text",
    [
        "scunthorpe is a town",
        "classic assessment",
        "shitake3",
        "dick2",
    ],
)
def test_term_glued_to_letters_or_digits_does_not_match(text: str) -> None:
    assert not contains_abusive_term(text, ["cunt", "ass", "shit", "dick"])


@pytest.mark.parametrize(
    "text",
    [
        "ass",
        "(ass)",
        "what an ass!",
        "ass_hat",
        "ass-hat",
        "«ass»",
    ],
)
def test_term_bounded_by_punctuation_matches(text: str) -> None:
    assert contains_abusive_term(text, ["ass"])


def test_non_latin_boundaries() -> None:
    assert contains_abusive_term("ты дурак!", ["дурак"])
    assert not contains_abusive_term("дураками", ["дурак"])


def test_regex_metacharacters_are_literal() -> None:
    assert contains_abusive_term("a.b", ["a.b"])
    assert not contains_abusive_term("axb", ["a.b"])


@pytest.mark.parametrize("text", ["", None, 42, b"fuck"])
def test_empty_or_non_string_text_is_clean(text) -> None:
    assert contains_abusive_term(text, ["fuck"]) is False
    assert find_abusive_terms(text, ["fuck"]) == []
    assert find_first_term(text, ["fuck"]) is None


def test_first_match_short_circuits_in_term_order() -> None:
    assert find_first_term("shit and fuck", ["fuck", "shit"]) == "fuck"


def test_find_all_terms_deduplicates_and_normalizes() -> None:
    found = find_abusive_terms("SHIT, fuck, shit", [" Shit ", "fuck", "shit", "", "cunt"])
    assert found == ["shit", "fuck"]


def test_empty_term_list_never_matches() -> None:
    assert not contains_abusive_term("anything at all", [])


def test_falls_back_to_substring_when_pattern_fails(monkeypatch) -> None:
    def broken(term: str):
        raise re.error("boom")

    monkeypatch.setattr(matcher, "_boundary_pattern", broken)
    assert contains_abusive_term("scunthorpe", ["cunt"])
    assert not contains_abusive_term("hello", ["cunt"])


def test_normalize_term() -> None:
    assert normalize_term("  FoO ") == "foo"
