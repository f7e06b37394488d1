"""
String distance helpers used by OCR correction and duplicate detection.
"""


def levenshtein_distance(first: str, second: str) -> int:
    """Edit distance with unit cost for insert, delete and substitute."""
    if first == second:
        return 0
    if not first:
        return len(second)
    if not second:
        return len(first)

    previous = list(range(len(second) + 1))
    for i, char_a in enumerate(first, start=1):
        current = [i] + [0] * len(second)
        for j, char_b in enumerate(second, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost
            )
        previous = current

    return previous[-1]


def levenshtein_similarity(first: str, second: str) -> float:
    """1 - distance / max length, in [0, 1]."""
    max_length = max(len(first), len(second))
    if max_length == 0:
        return 1.0
    return 1.0 - levenshtein_distance(first, second) / max_length
