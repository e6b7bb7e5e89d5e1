"""Spoken number parsing tests."""
import pytest

from control_plane.number_parser import normalize_answer, parse_spoken_number


@pytest.mark.parametrize(
    "text,expected",
    [
        ("seven", 7),
        ("Nineteen", 19),
        ("forty", 40),
        ("forty-two", 42),
        ("forty two", 42),
        ("forty and two", 42),
        ("Ninety nine!", 99),
        ("42", 42),
        ("42 please", 42),
        ("zero.", 0),
    ],
)
def test_parse_spoken_number(text, expected):
    assert parse_spoken_number(text) == expected


@pytest.mark.parametrize("text", [None, "", "banana", "one hundred", "two forty", "forty two three"])
def test_parse_spoken_number_rejects(text):
    assert parse_spoken_number(text) is None


def test_transcript_wins_over_number():
    assert normalize_answer(41, "forty two") == 42


def test_transcript_fills_missing_number():
    assert normalize_answer(None, "twelve") == 12


def test_number_kept_when_transcript_unparseable():
    assert normalize_answer(41, "I think it's that one") == 41
    assert normalize_answer(41, None) == 41
