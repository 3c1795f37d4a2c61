"""File-name matching: normalization, substring filter, fuzzy fallback.

Queries and candidate names go through the same normalize() before
comparison. When nothing contains the query, one of two fallback policies
applies:

  nearest  pick the candidate closest to the query by Levenshtein distance
           and filter again using that candidate's name as the query
  all      return every candidate unfiltered
"""

import re

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

FALLBACK_NEAREST = "nearest"
FALLBACK_ALL = "all"

_SEPARATORS_RE = re.compile(r"[._\-\s]+")
_SEPARATORS_AND_DIGITS_RE = re.compile(r"[._\-\s\d]+")


def normalize(text, strip_digits=True):
    """Case-fold and drop separators (. _ - whitespace), optionally digits."""
    pattern = _SEPARATORS_AND_DIGITS_RE if strip_digits else _SEPARATORS_RE
    return pattern.sub("", text.casefold())


def substring_filter(query, candidates, strip_digits=True):
    """Candidates whose normalized name contains the normalized query.

    Order and duplicates of `candidates` are preserved. A query that
    normalizes to "" matches everything.
    """
    needle = normalize(query, strip_digits)
    if not needle:
        return list(candidates)
    return [c for c in candidates if needle in normalize(c, strip_digits)]


def nearest_candidate(query, candidates, max_distance=None):
    """Candidate with the smallest edit distance to query, or None.

    Comparison is case-insensitive. Ties go to the earliest candidate.
    Candidates further than max_distance edits away are ignored.
    """
    if not candidates:
        return None
    best = process.extractOne(
        query,
        candidates,
        scorer=Levenshtein.distance,
        processor=str.casefold,
        score_cutoff=max_distance,
    )
    if best is None:
        return None
    return best[0]


def find(query, candidates, fallback=FALLBACK_NEAREST, strip_digits=True, max_distance=None):
    """Match query against candidates, applying the fallback policy on no match."""
    candidates = list(candidates)
    matches = substring_filter(query, candidates, strip_digits)
    if matches:
        return matches

    if fallback == FALLBACK_ALL:
        return candidates
    if fallback != FALLBACK_NEAREST:
        raise ValueError(f"unknown fallback policy {fallback!r}")

    if not query:
        return []
    nearest = nearest_candidate(query, candidates, max_distance)
    if nearest is None:
        return []
    return substring_filter(nearest, candidates, strip_digits)
