"""Edit-distance based fuzzy matching for group tags and person names."""
from dataclasses import dataclass
from typing import Iterable, List

from processor.models import Group

SUBSTRING_BOOST = 0.3
MIN_SCORE = 0.2


@dataclass
class FuzzyMatch:
    """A ranked candidate group."""
    group_id: str
    short_name: str
    score: float


def _normalize(value: str) -> str:
    return ' '.join((value or '').lower().split())


def edit_distance(a: str, b: str) -> int:
    """
    Compute the Levenshtein distance between two strings.

    Args:
        a: First string
        b: Second string

    Returns:
        Minimum number of single-character inserts, deletes and substitutions
    """
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost
            )
        previous = current
    return previous[len(b)]


def _similarity(a: str, b: str) -> float:
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 0.0
    return 1 - edit_distance(a, b) / max_len


def name_similarity(a: str, b: str) -> float:
    """
    Compare two names case- and whitespace-insensitively.

    Args:
        a: First name
        b: Second name

    Returns:
        Score in [0, 1]; 1 for an exact match, 0 if either side is empty
    """
    na = _normalize(a)
    nb = _normalize(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    return _similarity(na, nb)


def _candidate_names(group: Group) -> List[str]:
    names = [group.short_name]
    if group.full_name:
        names.append(group.full_name)
    names.extend(sorted(group.aliases))
    return [_normalize(name) for name in names if name]


def rank_candidates(
    value: str,
    candidates: Iterable[Group],
    limit: int = 5
) -> List[FuzzyMatch]:
    """
    Rank groups by similarity to a free-text tag.

    Each group scores the best of its short name, full name and aliases.
    A name containing the tag (or contained by it) gets a substring boost.
    Scores are capped at 1; anything at or below 0.2 is dropped.

    Args:
        value: Raw tag text
        candidates: Groups to score
        limit: Maximum number of matches to return

    Returns:
        Matches sorted by descending score
    """
    normalized = _normalize(value)
    if not normalized:
        return []

    scored = []
    for group in candidates:
        best = 0.0
        for name in _candidate_names(group):
            if name == normalized:
                best = 1.0
                break
            boost = SUBSTRING_BOOST if (name in normalized or normalized in name) else 0.0
            best = max(best, _similarity(name, normalized) + boost)
        scored.append(FuzzyMatch(group.id, group.short_name, min(best, 1.0)))

    survivors = [match for match in scored if match.score > MIN_SCORE]
    survivors.sort(key=lambda match: match.score, reverse=True)
    return survivors[:limit]
