from __future__ import annotations

from typing import Iterable

from selfheal.core.metadata import SelectorCandidate, SelectorStrategy

SMOOTHING_FACTOR = 0.2


def update_success_rate(rate: float, success: bool, alpha: float = SMOOTHING_FACTOR) -> float:
    """Exponential moving average of selector reliability, clamped to [0, 1]."""

    updated = rate * (1 - alpha) + (alpha if success else 0.0)
    return min(1.0, max(0.0, updated))


def filter_candidates(
    candidates: Iterable[SelectorCandidate],
    threshold: float,
    strategies: Iterable[SelectorStrategy] | None = None,
) -> list[SelectorCandidate]:
    """Drops candidates under the threshold and orders the rest by confidence.

    The sort is stable, so equal confidences keep their incoming order.
    """

    allowed = set(strategies) if strategies is not None else None
    kept = [
        candidate
        for candidate in candidates
        if candidate.confidence >= threshold and (allowed is None or candidate.strategy in allowed)
    ]
    kept.sort(key=lambda item: item.confidence, reverse=True)
    return kept
