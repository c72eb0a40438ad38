from typing import Iterable, List


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings, case-insensitive."""
    a = str(a or "").lower()
    b = str(b or "").lower()
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1.0 for identical strings down to 0.0, scaled by the longer length."""
    longer, shorter = (a, b) if len(a or "") >= len(b or "") else (b, a)
    if not longer:
        return 1.0
    return (len(longer) - levenshtein_distance(longer, shorter)) / len(longer)


def find_similar(
    query: str,
    candidates: Iterable[str],
    *,
    max_results: int = 3,
    threshold: float = 0.4,
) -> List[str]:
    """Candidates close to ``query``, best first.

    A candidate qualifies when either string contains the other, or when both
    are at least two characters long and their similarity exceeds ``threshold``.
    """
    needle = str(query or "").strip().lower()
    if not needle:
        return []

    scored = []
    for candidate in candidates:
        name = str(candidate or "").strip().lower()
        if not name:
            continue
        score = similarity(name, needle)
        contained = name in needle or needle in name
        if contained or (min(len(name), len(needle)) >= 2 and score > threshold):
            scored.append((score, name))

    # Stable sort keeps registration order among equal scores.
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [name for _, name in scored[: max(0, int(max_results))]]
