"""
Spoken number parsing for agent transcripts.

The voice agent reports both a numeric field and the raw transcript; the
transcript is treated as ground truth, so it is parsed independently here.
"""
import re
from typing import Optional

ONES = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4,
    "five": 5, "six": 6, "seven": 7, "eight": 8, "nine": 9,
    "ten": 10, "eleven": 11, "twelve": 12, "thirteen": 13,
    "fourteen": 14, "fifteen": 15, "sixteen": 16, "seventeen": 17,
    "eighteen": 18, "nineteen": 19,
}

TENS = {
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50,
    "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
}

_PUNCTUATION = re.compile(r"[.,!?]")
_LEADING_INT = re.compile(r"^[+-]?\d+")
_WORD_SPLIT = re.compile(r"[\s-]+")


def parse_spoken_number(text: Optional[str]) -> Optional[int]:
    """
    Parse a transcript into an integer.

    Accepts leading digits ("42", "42 please"), single words ("seven",
    "forty") and tens+ones compounds ("forty-two", "forty two",
    "forty and two"). Returns None when nothing matches.
    """
    if not text:
        return None

    normalized = _PUNCTUATION.sub("", text.lower().strip())

    direct = _LEADING_INT.match(normalized)
    if direct:
        return int(direct.group())

    if normalized in ONES:
        return ONES[normalized]
    if normalized in TENS:
        return TENS[normalized]

    words = [w for w in _WORD_SPLIT.split(normalized) if w]

    if len(words) == 2:
        tens_word, ones_word = words
        if tens_word in TENS and ones_word in ONES:
            return TENS[tens_word] + ONES[ones_word]

    if len(words) == 3 and words[1] == "and":
        tens_word, ones_word = words[0], words[2]
        if tens_word in TENS and ones_word in ONES:
            return TENS[tens_word] + ONES[ones_word]

    return None


def normalize_answer(number: Optional[int], transcription: Optional[str]) -> Optional[int]:
    """
    Pick the answer to broadcast.

    A transcript that parses wins over a missing or disagreeing numeric
    field; otherwise the numeric field is used as-is.
    """
    if transcription:
        parsed = parse_spoken_number(transcription)
        if parsed is not None:
            return parsed
    return number
