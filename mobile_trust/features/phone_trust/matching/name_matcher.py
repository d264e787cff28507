"""
Fuzzy person-name matching tuned to West African naming conventions.

Names arrive from different evidence (ID card, Mobile Money profile
screen) with inconsistent casing, accents, honorifics, particles and
given/family name order. The score blends a Jaro-Winkler comparison of
the whole normalized strings with a greedy token alignment, so
"Kouadio Jean" and "Jean Kouadio" still match.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum

# Whole-token prefixes, longest variants first so "el hadji" beats "el hadj"
HONORIFIC_TITLES = (
    "el hadji",
    "el hadj",
    "hadji",
    "hadj",
    "mlle",
    "mme",
    "mr",
    "dr",
    "prof",
    "pr",
    "maitre",
    "cheikh",
    "imam",
    "pasteur",
    "pere",
    "soeur",
    "frere",
)

NAME_PARTICLES = frozenset(
    {"de", "du", "des", "le", "la", "les", "el", "al", "ben", "ibn", "bint", "ould", "dit"}
)

TOKEN_MATCH_THRESHOLD = 0.7
STRONG_TOKEN_MATCH = 0.9
WINKLER_SCALE = 0.1
WINKLER_MAX_PREFIX = 4

_SEPARATORS = re.compile(r"['‘’`\-–—]")
_WHITESPACE = re.compile(r"\s+")


class MatchConfidence(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(slots=True)
class NameMatchResult:
    score: int
    confidence: MatchConfidence
    details: list[str] = field(default_factory=list)


def normalize_name(name: str) -> str:
    """Lowercase, strip accents and separators, drop leading honorifics."""
    decomposed = unicodedata.normalize("NFD", name.lower())
    text = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    text = _SEPARATORS.sub(" ", text)
    text = _WHITESPACE.sub(" ", text).strip()

    stripped = True
    while stripped:
        stripped = False
        for title in HONORIFIC_TITLES:
            if text.startswith(title + " "):
                text = text[len(title) + 1 :].lstrip()
                stripped = True
                break
    return text


def name_tokens(name: str) -> list[str]:
    """Normalized tokens with standalone particles and initials removed."""
    return [
        token
        for token in normalize_name(name).split(" ")
        if len(token) > 1 and token not in NAME_PARTICLES
    ]


def jaro_similarity(s1: str, s2: str) -> float:
    if s1 == s2:
        return 1.0
    len1, len2 = len(s1), len(s2)
    if len1 == 0 or len2 == 0:
        return 0.0

    window = max(max(len1, len2) // 2 - 1, 0)
    s1_matched = [False] * len1
    s2_matched = [False] * len2

    matches = 0
    for i, ch in enumerate(s1):
        start = max(0, i - window)
        end = min(i + window + 1, len2)
        for j in range(start, end):
            if s2_matched[j] or s2[j] != ch:
                continue
            s1_matched[i] = s2_matched[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    s2_sequence = iter(s2[j] for j in range(len2) if s2_matched[j])
    half_transpositions = sum(
        1 for i in range(len1) if s1_matched[i] and s1[i] != next(s2_sequence)
    )
    transpositions = half_transpositions / 2

    return (matches / len1 + matches / len2 + (matches - transpositions) / matches) / 3


def jaro_winkler_similarity(s1: str, s2: str) -> float:
    jaro = jaro_similarity(s1, s2)

    prefix = 0
    for a, b in zip(s1[:WINKLER_MAX_PREFIX], s2[:WINKLER_MAX_PREFIX]):
        if a != b:
            break
        prefix += 1

    return jaro + prefix * WINKLER_SCALE * (1 - jaro)


def _confidence_for(score: int) -> MatchConfidence:
    if score >= 90:
        return MatchConfidence.HIGH
    if score >= 75:
        return MatchConfidence.MEDIUM
    if score >= 60:
        return MatchConfidence.LOW
    return MatchConfidence.NONE


def match_names(name1: str, name2: str) -> NameMatchResult:
    """
    Compare two person names and return a 0-100 score.

    score = 40% whole-string Jaro-Winkler + 40% mean of aligned token
    similarities + 20% share of tokens that found a partner.
    """
    if name1 is None or name2 is None:
        raise TypeError("match_names() requires two names")

    parts1 = name_tokens(name1)
    parts2 = name_tokens(name2)

    if not parts1 or not parts2:
        return NameMatchResult(
            score=0,
            confidence=MatchConfidence.NONE,
            details=["One or both names are empty"],
        )

    # Align from a canonical side so match_names(a, b) == match_names(b, a)
    if (" ".join(parts2), len(parts2)) < (" ".join(parts1), len(parts1)):
        parts1, parts2 = parts2, parts1

    details: list[str] = []
    full_match = jaro_winkler_similarity(" ".join(parts1), " ".join(parts2))

    used: set[int] = set()
    accepted: list[float] = []
    for token in parts1:
        best_score = 0.0
        best_index = -1
        for index, candidate in enumerate(parts2):
            if index in used:
                continue
            similarity = jaro_winkler_similarity(token, candidate)
            if similarity > best_score:
                best_score = similarity
                best_index = index

        if best_index >= 0 and best_score > TOKEN_MATCH_THRESHOLD:
            used.add(best_index)
            accepted.append(best_score)
            if best_score > STRONG_TOKEN_MATCH:
                details.append(
                    f'"{token}" ~ "{parts2[best_index]}" ({round(best_score * 100)}%)'
                )

    mean_pair_score = sum(accepted) / len(accepted) if accepted else 0.0
    pair_ratio = len(accepted) / max(len(parts1), len(parts2))

    score = round((full_match * 0.4 + mean_pair_score * 0.4 + pair_ratio * 0.2) * 100)

    if len(parts1) != len(parts2):
        details.append(f"Different number of name parts ({len(parts1)} vs {len(parts2)})")

    return NameMatchResult(score=score, confidence=_confidence_for(score), details=details)


def are_names_same_person(name1: str, name2: str, threshold: int = 85) -> bool:
    return match_names(name1, name2).score >= threshold
