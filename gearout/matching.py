from __future__ import annotations

from typing import List


def distance(a: str, b: str) -> int:
    """Levenshtein edit distance (insert, delete, substitute all cost 1)."""
    rows, cols = len(a) + 1, len(b) + 1
    matrix: List[List[int]] = [[0] * cols for _ in range(rows)]
    for i in range(rows):
        matrix[i][0] = i
    for j in range(cols):
        matrix[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            matrix[i][j] = min(
                matrix[i - 1][j] + 1,         # deletion
                matrix[i][j - 1] + 1,         # insertion
                matrix[i - 1][j - 1] + cost,  # substitution
            )
    return matrix[-1][-1]


def similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - distance(a, b) / longest


def is_similar(a: str, b: str, threshold: float = 0.70, min_length: int = 4) -> bool:
    """Fuzzy comparison for codes; never fires on short codes."""
    if len(a) < min_length or len(b) < min_length:
        return False
    return similarity(a, b) >= threshold
