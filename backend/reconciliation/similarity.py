"""
Description similarity for transaction matching.

similarity = (len(longer) - levenshtein(longer, shorter)) / len(longer)

computed over lowercased descriptions; two empty descriptions are
identical (1.0).
"""


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j - 1], previous[j], current[j - 1]) + 1)
        previous = current
    return previous[-1]


def description_similarity(first: str, second: str) -> float:
    """Similarity in [0, 1] between two transaction descriptions."""
    first = (first or "").lower()
    second = (second or "").lower()
    longer, shorter = (first, second) if len(first) > len(second) else (second, first)

    if not longer:
        return 1.0

    return (len(longer) - levenshtein_distance(longer, shorter)) / len(longer)
