from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from selfheal.config.schema import HealingConfig
from selfheal.core.metadata import (
    BatchItem,
    ElementContext,
    HealingAttempt,
    HealingResult,
    HealState,
    SelectorCandidate,
    SelectorRecord,
)
from selfheal.core.validator import CandidateValidator, ValidationOutcome
from selfheal.logging.audit import HealingAuditLogger
from selfheal.storage.repository import SelectorRepository
from selfheal.utils.dom_extract import DomContextExtractor
from selfheal.utils.identity import selector_id
from selfheal.utils.scoring import filter_candidates
from selfheal.utils.wait import call_with_timeout

log = logging.getLogger(__name__)

CACHE_REASONING = "Used cached alternative"


class Healer:
    """Coordinates cache lookup, candidate generation, validation and outcome recording."""

    def __init__(
        self,
        config: HealingConfig,
        repository: SelectorRepository,
        generator,
        extractor: DomContextExtractor | None = None,
        validator: CandidateValidator | None = None,
        audit_logger: HealingAuditLogger | None = None,
    ) -> None:
        self.config = config
        self.repository = repository
        self.generator = generator
        self.extractor = extractor or DomContextExtractor()
        self.validator = validator or CandidateValidator(config.validation_timeout_seconds)
        self.audit_logger = audit_logger or HealingAuditLogger()

    async def heal_one(self, page, locator: str, error_message: str) -> HealingResult:
        if not self.config.enabled:
            log.debug("Healing disabled, skipping %s", locator)
            return HealingResult.failure(locator, 0, HealState.DISABLED, "Disabled")

        page_url = await page.current_url()
        identity = selector_id(locator, page_url)
        self.audit_logger.attempt(locator, 1, self.config.max_attempts)

        cached = await self._heal_from_cache(page, identity, locator, page_url)
        if cached is not None:
            return cached

        log.debug("%s: %s -> %s", locator, HealState.PENDING, HealState.GENERATING)
        page_html = await self.extractor.page_context(page)
        element_context = await self.extractor.element_context(page, locator)
        try:
            candidates = await call_with_timeout(
                self.generator.generate(locator, page_html, element_context, error_message),
                self.config.generation_timeout_seconds,
            )
        except Exception as exc:  # noqa: BLE001 - generation failures never escape the healer.
            return self._generation_failed(identity, locator, exc)

        return await self._validate_generated(
            page, identity, locator, page_url, _candidate_list(candidates), element_context
        )

    async def heal_batch(
        self,
        page,
        failures: Sequence[tuple[str, str]],
    ) -> dict[str, HealingResult]:
        """Heals several failed locators with one shared generation call.

        Locators that a cached alternative still resolves never reach the
        backend, so the backend is called at most once: exactly once when any
        locator misses the cache, and not at all when every locator hits it.
        Every input locator gets a result entry.
        """

        ordered: dict[str, str] = {}
        for locator, error_message in failures:
            ordered.setdefault(locator, error_message)
        if not ordered:
            return {}
        if not self.config.enabled:
            return {
                locator: HealingResult.failure(locator, 0, HealState.DISABLED, "Disabled")
                for locator in ordered
            }

        page_url = await page.current_url()
        identities = {locator: selector_id(locator, page_url) for locator in ordered}
        cache_results = await asyncio.gather(
            *(self._heal_from_cache(page, identities[locator], locator, page_url) for locator in ordered)
        )
        results: dict[str, HealingResult] = {
            locator: result for locator, result in zip(ordered, cache_results) if result is not None
        }
        pending = [locator for locator in ordered if locator not in results]
        if not pending:
            return results

        page_html = await self.extractor.page_context(page)
        contexts = await asyncio.gather(*(self.extractor.element_context(page, locator) for locator in pending))
        items = [
            BatchItem(locator=locator, error_message=ordered[locator], element_context=context)
            for locator, context in zip(pending, contexts)
        ]
        log.info("Requesting alternatives for %d locators in one batch", len(items))
        try:
            generated = await call_with_timeout(
                self.generator.generate_batch(items, page_html),
                self.config.generation_timeout_seconds,
            )
        except Exception as exc:  # noqa: BLE001 - generation failures never escape the healer.
            for locator in pending:
                results[locator] = self._generation_failed(identities[locator], locator, exc)
            return {locator: results[locator] for locator in ordered}

        if not isinstance(generated, dict):
            log.warning("Batch generation returned %s instead of a mapping", type(generated).__name__)
            generated = {}
        healed = await asyncio.gather(
            *(
                self._validate_generated(
                    page,
                    identities[item.locator],
                    item.locator,
                    page_url,
                    _candidate_list(generated.get(item.locator)),
                    item.element_context,
                )
                for item in items
            )
        )
        results.update(zip(pending, healed))
        return {locator: results[locator] for locator in ordered}

    async def _heal_from_cache(
        self,
        page,
        identity: str,
        locator: str,
        page_url: str,
    ) -> HealingResult | None:
        cached = filter_candidates(
            self.repository.get_alternatives(identity),
            self.config.confidence_threshold,
            self.config.strategies,
        )
        if not cached:
            return None
        log.debug("Found %d cached alternatives for %s", len(cached), locator)
        log.debug("%s: %s -> %s", locator, HealState.PENDING, HealState.CACHE_HIT)
        outcome = await self.validator.validate_ranked(page, cached, self.config.max_attempts)
        self._record_candidate_outcomes(identity, outcome)
        if not outcome.success:
            log.debug("No cached alternative for %s still validates", locator)
            return None
        result = self._healed_result(locator, outcome.winner, outcome, from_cache=True)
        self.audit_logger.cache_hit(locator, result.healed_locator or "")
        self._record(identity, locator, page_url, result, ElementContext())
        return result

    async def _validate_generated(
        self,
        page,
        identity: str,
        locator: str,
        page_url: str,
        candidates: list[SelectorCandidate],
        element_context: ElementContext,
    ) -> HealingResult:
        usable = filter_candidates(candidates, self.config.confidence_threshold, self.config.strategies)
        log.info("Generated %d alternative selectors for %s, %d above threshold", len(candidates), locator, len(usable))
        if not usable:
            result = HealingResult.failure(locator, 0, HealState.EXHAUSTED, "NoCandidates")
            self.audit_logger.failure(locator, 0, "no candidate cleared the confidence threshold")
            self._record(identity, locator, page_url, result, element_context)
            return result

        self.repository.save_alternatives(identity, usable)
        log.debug("%s: %s -> %s", locator, HealState.GENERATING, HealState.VALIDATING)
        outcome = await self.validator.validate_ranked(page, usable, self.config.max_attempts)
        self._record_candidate_outcomes(identity, outcome)
        if outcome.success:
            result = self._healed_result(locator, outcome.winner, outcome, from_cache=False)
            self.audit_logger.success(locator, result.healed_locator or "", result.confidence)
        else:
            result = HealingResult.failure(locator, outcome.attempts, HealState.EXHAUSTED, "Exhausted")
            self.audit_logger.failure(locator, outcome.attempts, "every candidate was rejected")
        self._record(identity, locator, page_url, result, element_context)
        return result

    def _generation_failed(self, identity: str, locator: str, exc: Exception) -> HealingResult:
        log.error("Healing failed for %s: %s", locator, exc)
        result = HealingResult.failure(locator, self.config.max_attempts, HealState.EXHAUSTED, "GenerationFailure")
        result.reasoning = f"Generation failed: {exc}"
        self.repository.save_healing_history(
            HealingAttempt(
                selector_id=identity,
                original_locator=locator,
                success=False,
                attempts=result.attempts,
                reasoning=result.reasoning,
                timestamp=result.timestamp,
            )
        )
        return result

    @staticmethod
    def _healed_result(
        locator: str,
        winner: SelectorCandidate,
        outcome: ValidationOutcome,
        from_cache: bool,
    ) -> HealingResult:
        return HealingResult(
            success=True,
            original_locator=locator,
            attempts=outcome.attempts,
            state=HealState.HEALED,
            healed_locator=winner.selector,
            strategy=winner.strategy,
            confidence=winner.confidence,
            reasoning=CACHE_REASONING if from_cache else winner.reasoning,
            from_cache=from_cache,
        )

    def _record_candidate_outcomes(self, identity: str, outcome: ValidationOutcome) -> None:
        for candidate in outcome.tried:
            self.repository.record_alternative_outcome(
                identity,
                candidate.selector,
                candidate is outcome.winner,
            )

    def _record(
        self,
        identity: str,
        locator: str,
        page_url: str,
        result: HealingResult,
        element_context: ElementContext,
    ) -> None:
        self.repository.save_healing_history(
            HealingAttempt(
                selector_id=identity,
                original_locator=locator,
                success=result.success,
                attempts=result.attempts,
                healed_locator=result.healed_locator,
                strategy=result.strategy,
                confidence=result.confidence,
                reasoning=result.reasoning,
                timestamp=result.timestamp,
            )
        )
        if result.success and result.healed_locator and result.strategy is not None:
            existing = self.repository.get_selector(identity)
            self.repository.save_selector(
                SelectorRecord(
                    id=identity,
                    original_locator=result.healed_locator,
                    strategy=result.strategy,
                    page_url=page_url,
                    element_attributes=element_context.attributes or (existing.element_attributes if existing else {}),
                    success_rate=1.0,
                    confidence=result.confidence,
                    usage_count=existing.usage_count if existing else 0,
                    last_used=result.timestamp,
                    created_at=existing.created_at if existing else result.timestamp,
                )
            )


def _candidate_list(entries) -> list[SelectorCandidate]:
    if not isinstance(entries, list):
        return []
    return [entry for entry in entries if isinstance(entry, SelectorCandidate)]
