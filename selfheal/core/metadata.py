from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SelectorStrategy(StrEnum):
    CSS = "css"
    XPATH = "xpath"
    TEXT = "text"
    ATTRIBUTE = "attribute"
    STRUCTURAL = "structural"
    AI_VISUAL = "ai-visual"


class HealingMode(StrEnum):
    AUTO = "auto"
    MANUAL = "manual"
    DISABLED = "disabled"


class HealState(StrEnum):
    """Lifecycle of a single heal request.

    PENDING -> {CACHE_HIT, GENERATING} -> VALIDATING -> {HEALED, EXHAUSTED}.
    DISABLED is only reachable from PENDING.
    """

    PENDING = "pending"
    DISABLED = "disabled"
    CACHE_HIT = "cache_hit"
    GENERATING = "generating"
    VALIDATING = "validating"
    HEALED = "healed"
    EXHAUSTED = "exhausted"


class SelectorCandidate(BaseModel):
    """A replacement locator proposed by the generative backend."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    selector: str
    strategy: SelectorStrategy
    confidence: float = Field(ge=0.0, le=1.0, strict=True)
    reasoning: str

    @field_validator("selector")
    @classmethod
    def validate_selector(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("selector must not be empty")
        if "\n" in stripped or "\r" in stripped:
            raise ValueError("selector must be a single line")
        return stripped


@dataclass(slots=True)
class ElementContext:
    attributes: dict[str, str] = field(default_factory=dict)
    text: str | None = None
    position: dict[str, float] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.attributes:
            payload["attributes"] = self.attributes
        if self.text:
            payload["text"] = self.text
        if self.position:
            payload["position"] = self.position
        return payload


@dataclass(slots=True)
class BatchItem:
    locator: str
    error_message: str
    element_context: ElementContext = field(default_factory=ElementContext)


@dataclass(slots=True)
class SelectorRecord:
    id: str
    original_locator: str
    strategy: SelectorStrategy
    page_url: str
    element_attributes: dict[str, str] = field(default_factory=dict)
    success_rate: float = 1.0
    confidence: float | None = None
    usage_count: int = 0
    last_used: float = field(default_factory=time.time)
    created_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class HealingAttempt:
    selector_id: str
    original_locator: str
    success: bool
    attempts: int
    healed_locator: str | None = None
    strategy: SelectorStrategy | None = None
    confidence: float | None = None
    reasoning: str | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass(slots=True)
class HealingResult:
    success: bool
    original_locator: str
    attempts: int
    state: HealState
    healed_locator: str | None = None
    strategy: SelectorStrategy | None = None
    confidence: float | None = None
    reasoning: str | None = None
    error: str | None = None
    from_cache: bool = False
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def failure(
        cls,
        original_locator: str,
        attempts: int,
        state: HealState,
        error: str,
    ) -> HealingResult:
        return cls(
            success=False,
            original_locator=original_locator,
            attempts=attempts,
            state=state,
            error=error,
        )
