"""Token estimation for memory budgeting."""

import math
from typing import Protocol


class TokenEstimator(Protocol):
    def __call__(self, text: str) -> int: ...


def estimate_tokens(text: str) -> int:
    """Roughly four characters per token; at least one for non-empty text."""
    if not text:
        return 0
    return max(1, math.ceil(len(text) / 4))


def truncate_to_tokens(text: str, max_tokens: int, estimator: TokenEstimator = estimate_tokens) -> str:
    """Cut ``text`` until ``estimator`` fits it into ``max_tokens``."""
    if max_tokens <= 0:
        return ""
    if estimator(text) <= max_tokens:
        return text
    cut = text[: max_tokens * 4]
    while cut and estimator(cut) > max_tokens:
        cut = cut[: max(0, len(cut) - max(1, len(cut) // 10))]
    return cut.rstrip()
