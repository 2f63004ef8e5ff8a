from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

from selfheal.core.exceptions import AmbiguousMatchError, CandidateRejectedError, NoMatchError
from selfheal.core.metadata import SelectorCandidate
from selfheal.utils.wait import call_with_timeout

log = logging.getLogger(__name__)


@dataclass(slots=True)
class ValidationOutcome:
    """Result of validating a ranked candidate list.

    ``attempts`` is the 1-based rank of the winner, or the number of
    candidates tried when none was accepted.
    """

    winner: SelectorCandidate | None
    attempts: int
    tried: list[SelectorCandidate] = field(default_factory=list)
    rejections: dict[str, Exception] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.winner is not None


class CandidateValidator:
    """Accepts a candidate only when it resolves to exactly one element."""

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout

    async def validate(self, page, candidate: SelectorCandidate) -> SelectorCandidate:
        count = await call_with_timeout(page.count(candidate.selector), self.timeout)
        if count == 0:
            raise NoMatchError(candidate.selector, count)
        if count > 1:
            raise AmbiguousMatchError(candidate.selector, count)
        return candidate

    async def validate_ranked(
        self,
        page,
        candidates: Sequence[SelectorCandidate],
        limit: int,
    ) -> ValidationOutcome:
        """Validates the top ``limit`` candidates concurrently.

        The winner is the best-ranked accepted candidate; completion order
        never matters. A failing or timed-out probe only rejects its own
        candidate.
        """

        selected = list(candidates[:limit])
        if not selected:
            return ValidationOutcome(winner=None, attempts=0)
        results = await asyncio.gather(
            *(self.validate(page, candidate) for candidate in selected),
            return_exceptions=True,
        )
        rejections: dict[str, Exception] = {}
        for rank, (candidate, result) in enumerate(zip(selected, results), start=1):
            if isinstance(result, SelectorCandidate):
                log.debug("Candidate %d/%d accepted: %s", rank, len(selected), candidate.selector)
                return ValidationOutcome(winner=candidate, attempts=rank, tried=selected[:rank], rejections=rejections)
            if isinstance(result, asyncio.CancelledError):
                raise result
            rejections[candidate.selector] = result
            if isinstance(result, CandidateRejectedError):
                log.debug("Candidate %d/%d rejected: %s", rank, len(selected), result)
            else:
                log.debug("Candidate %d/%d could not be probed: %r", rank, len(selected), result)
        return ValidationOutcome(winner=None, attempts=len(selected), tried=selected, rejections=rejections)
