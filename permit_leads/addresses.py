"""Address canonicalisation and fuzzy matching."""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

STREET_TYPE_ABBREVIATIONS = {
    "street": "st",
    "avenue": "ave",
    "boulevard": "blvd",
    "road": "rd",
    "drive": "dr",
    "lane": "ln",
    "parkway": "pkwy",
    "court": "ct",
    "place": "pl",
    "circle": "cir",
    "highway": "hwy",
    "freeway": "fwy",
}
STREET_TYPES = frozenset(STREET_TYPE_ABBREVIATIONS.values())

DIRECTION_ABBREVIATIONS = {
    "north": "n",
    "south": "s",
    "east": "e",
    "west": "w",
    "northeast": "ne",
    "northwest": "nw",
    "southeast": "se",
    "southwest": "sw",
}
DIRECTIONS = frozenset(DIRECTION_ABBREVIATIONS.values())

_TOKEN_ABBREVIATIONS = {**STREET_TYPE_ABBREVIATIONS, **DIRECTION_ABBREVIATIONS}

# Multiplier applied when both addresses carry a house number / street type and they disagree.
HOUSE_NUMBER_MISMATCH_FACTOR = 0.45
STREET_TYPE_MISMATCH_FACTOR = 0.45

# Street names that differ by a whole word never reach this score.
DIFFERENT_STREET_CEILING = 49
# Score for names that agree up to single-character typos in long tokens.
TYPO_MATCH_SCORE = 90
TYPO_MIN_TOKEN_LENGTH = 6

_PUNCTUATION = re.compile(r"[^\w\s#-]")
_UNIT_DESIGNATOR = re.compile(
    r"(?:\b(?:suite|ste|unit|apt|apartment|bldg)\b|#)\s*[\w-]+",
    re.IGNORECASE,
)
_LEFTOVER_SYMBOLS = re.compile(r"[#_-]")
_WHITESPACE = re.compile(r"\s+")
_HOUSE_NUMBER = re.compile(r"^\d+[a-z]?$")


def _normalize_once(text: str) -> str:
    text = _PUNCTUATION.sub(" ", text.lower())
    text = _UNIT_DESIGNATOR.sub(" ", text)
    text = _LEFTOVER_SYMBOLS.sub(" ", text)
    tokens = [_TOKEN_ABBREVIATIONS.get(token, token) for token in text.split()]
    return _WHITESPACE.sub(" ", " ".join(tokens)).strip()


def normalize_address(raw: Optional[str]) -> str:
    """Canonical lowercase form with unit designators removed and street types
    and compass directions abbreviated.

    Idempotent: the result is reapplied until it stops changing, so
    ``normalize_address(normalize_address(x)) == normalize_address(x)``.
    """

    if not raw:
        return ""
    current = str(raw)
    for _ in range(8):
        updated = _normalize_once(current)
        if updated == current:
            break
        current = updated
    return current


def split_address(normalized: str) -> Tuple[str, str, str]:
    """Split a normalised address into (house number, street name, street type).

    Directional tokens are dropped from the street name unless the direction
    is the whole name (``100 e st``).
    """

    tokens = normalized.split()
    number = ""
    street_type = ""
    if tokens and _HOUSE_NUMBER.match(tokens[0]):
        number = tokens.pop(0)
    if len(tokens) > 1 and tokens[-1] in STREET_TYPES:
        street_type = tokens.pop()
    named = [token for token in tokens if token not in DIRECTIONS]
    if named:
        tokens = named
    return number, " ".join(tokens), street_type


def _is_typo(first: str, second: str) -> bool:
    # Prefixes are different words (elm/elms, park/parker), not typos.
    if min(len(first), len(second)) < TYPO_MIN_TOKEN_LENGTH:
        return False
    if first.startswith(second) or second.startswith(first):
        return False
    return Levenshtein.distance(first, second, score_cutoff=1) <= 1


def _names_agree_up_to_typos(tokens1: List[str], tokens2: List[str]) -> bool:
    if len(tokens1) != len(tokens2):
        return False
    return all(a == b or _is_typo(a, b) for a, b in zip(tokens1, tokens2))


def similarity(addr1: Optional[str], addr2: Optional[str]) -> int:
    """Score 0-100 for how likely two addresses name the same site.

    Street names match exactly (100), up to a single-character typo in each
    long token (90), or not at all, in which case the fuzzy ratio is capped
    below 50.  A conflicting house number or street type (when both sides
    carry one) scales the score down further.
    """

    norm1 = normalize_address(addr1)
    norm2 = normalize_address(addr2)
    if not norm1 or not norm2:
        return 0
    if norm1 == norm2:
        return 100

    number1, name1, type1 = split_address(norm1)
    number2, name2, type2 = split_address(norm2)
    tokens1 = sorted(name1.split())
    tokens2 = sorted(name2.split())

    if tokens1 == tokens2:
        score = 100.0
    elif _names_agree_up_to_typos(tokens1, tokens2):
        score = float(TYPO_MATCH_SCORE)
    else:
        score = min(fuzz.token_sort_ratio(name1, name2), DIFFERENT_STREET_CEILING)
    if number1 and number2 and number1 != number2:
        score *= HOUSE_NUMBER_MISMATCH_FACTOR
    if type1 and type2 and type1 != type2:
        score *= STREET_TYPE_MISMATCH_FACTOR
    return int(round(score))


__all__ = [
    "DIRECTION_ABBREVIATIONS",
    "STREET_TYPE_ABBREVIATIONS",
    "normalize_address",
    "similarity",
    "split_address",
]
