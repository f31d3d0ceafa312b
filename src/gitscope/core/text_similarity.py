"""Ranking of commit emails against a platform username.

The score combines a normalized Levenshtein similarity of the alphanumeric
forms with bonuses for the shapes usernames usually take inside email local
parts (``jdoe``, ``john.doe``, ``dev-jdoe``). Results are deterministic: equal
scores are ordered by email.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_PART_SPLIT = re.compile(r"[._+\-]")

COMMON_AFFIXES = ("dev", "admin", "user", "test", "demo", "temp")


@dataclass(frozen=True)
class EmailSuggestion:
    email: str
    score: float


def normalize(text: str) -> str:
    """Lower-case and keep only ASCII letters and digits."""
    return _NON_ALNUM.sub("", text.lower())


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def _common_prefix_length(a: str, b: str) -> int:
    length = 0
    for ca, cb in zip(a, b):
        if ca != cb:
            break
        length += 1
    return length


def string_similarity(a: str, b: str) -> float:
    """Similarity in [0, 1] of two normalized strings."""
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    longest = max(len(a), len(b))
    score = 1.0 - levenshtein(a, b) / longest
    if a in b or b in a:
        score += 0.2
    score += _common_prefix_length(a, b) / longest * 0.1
    return min(score, 1.0)


def username_pattern_bonus(local_part: str, username: str) -> float:
    """Bonus for local parts that embed the username in a common way."""
    local = local_part.lower()
    user = normalize(username)
    if not user:
        return 0.0

    compact = normalize(local)
    if compact == user:
        return 0.3

    bonus = 0.0
    for affix in COMMON_AFFIXES:
        if compact == f"{affix}{user}" or compact == f"{user}{affix}":
            bonus = 0.2
            break

    parts = [normalize(p) for p in _PART_SPLIT.split(local) if normalize(p)]
    if len(parts) > 1:
        bonus += 0.15 * sum(1 for part in parts if part == user or (len(part) > 2 and part in user))
    return bonus


def email_similarity(email: str, username: str) -> float:
    """Score how likely ``email`` belongs to the account ``username``."""
    local_part = email.split("@", 1)[0]
    score = string_similarity(normalize(local_part), normalize(username))
    score += username_pattern_bonus(local_part, username)
    return round(min(score, 1.0), 6)


def rank_emails(username: str, emails: Iterable[str], limit: int = 10) -> list[EmailSuggestion]:
    """Return the best-matching emails for ``username``, highest score first."""
    unique = sorted({e.strip().lower() for e in emails if e and e.strip()})
    suggestions = [EmailSuggestion(email=e, score=email_similarity(e, username)) for e in unique]
    suggestions.sort(key=lambda s: (-s.score, s.email))
    return suggestions[:limit] if limit else suggestions
