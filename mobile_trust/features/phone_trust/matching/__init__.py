"""
Person-name matching used to cross-validate declared identities.
"""

from .name_matcher import (
    MatchConfidence,
    NameMatchResult,
    are_names_same_person,
    jaro_winkler_similarity,
    match_names,
    normalize_name,
)

__all__ = [
    "MatchConfidence",
    "NameMatchResult",
    "are_names_same_person",
    "jaro_winkler_similarity",
    "match_names",
    "normalize_name",
]
