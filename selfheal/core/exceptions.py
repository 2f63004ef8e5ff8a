class HealingError(RuntimeError):
    """Base class for every healing failure."""

    retryable = False


class CandidateRejectedError(HealingError):
    """Raised when a candidate locator does not resolve to exactly one element."""

    def __init__(self, locator: str, match_count: int, message: str | None = None) -> None:
        super().__init__(message or f"Candidate {locator!r} matched {match_count} elements")
        self.locator = locator
        self.match_count = match_count


class NoMatchError(CandidateRejectedError):
    """Raised when a candidate matches no element."""


class AmbiguousMatchError(CandidateRejectedError):
    """Raised when a candidate matches more than one element."""


class GenerationError(HealingError):
    """Raised when the generative backend call fails."""


class SelectorValidationError(GenerationError):
    """Raised when the backend response does not have the expected shape."""


class StoreNotReadyError(HealingError):
    """Raised when the selector store is used before it finished initializing."""

    retryable = True


class StoreInitializationError(HealingError):
    """Raised when the selector store could not be initialized."""


class ElementNotFoundError(HealingError):
    """Raised when a locator matches nothing and healing did not recover it."""

    def __init__(self, locator: str, message: str | None = None) -> None:
        super().__init__(message or f"No elements found for selector: {locator}")
        self.locator = locator
