from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from selfheal.config.schema import HealingConfig
from selfheal.core.exceptions import ElementNotFoundError
from selfheal.core.metadata import HealingMode, HealingResult, SelectorRecord, SelectorStrategy
from selfheal.llm.parser import infer_selector_type
from selfheal.utils.identity import selector_id

log = logging.getLogger(__name__)


class SafeFinder:
    """Centralized element lookup with automatic healing.

    A healed locator is only substituted in ``auto`` mode, or in ``manual``
    mode with ``auto_apply`` set. Otherwise the original lookup error is
    raised after the heal has been recorded. While the selector store is
    still initializing no heal is attempted and the lookup error is raised.
    """

    def __init__(self, page, healer, repository, config: HealingConfig) -> None:
        self.page = page
        self.healer = healer
        self.repository = repository
        self.config = config
        self.selector_overrides: dict[str, str] = {}

    async def locate(self, locator: str) -> str:
        page_url = await self.page.current_url()
        resolved, error = await self._resolve(locator, page_url)
        if resolved is not None:
            return resolved
        if not self.repository.ready:
            log.warning("Selector store is not ready, not healing %s", locator)
            raise error
        log.warning("Selector failed: %s, attempting to heal...", locator)
        result = await self.healer.heal_one(self.page, locator, str(error))
        applied = self._apply(locator, result)
        if applied is None:
            raise error
        return applied

    async def locate_many(self, locators: Sequence[str]) -> dict[str, str]:
        """Resolves several locators, healing all misses with one batch request."""

        unique = list(dict.fromkeys(locators))
        page_url = await self.page.current_url()
        outcomes = await asyncio.gather(*(self._resolve(locator, page_url) for locator in unique))
        resolved: dict[str, str] = {}
        errors: dict[str, ElementNotFoundError] = {}
        for locator, (found, error) in zip(unique, outcomes):
            if found is not None:
                resolved[locator] = found
            else:
                errors[locator] = error
        if errors and not self.repository.ready:
            log.warning("Selector store is not ready, not healing %d selectors", len(errors))
        elif errors:
            log.warning("%d selectors failed, attempting to heal as a batch", len(errors))
            results = await self.healer.heal_batch(
                self.page,
                [(locator, str(error)) for locator, error in errors.items()],
            )
            for locator, result in results.items():
                applied = self._apply(locator, result)
                if applied is not None:
                    resolved[locator] = applied
                    errors.pop(locator)
        for locator in unique:
            if locator in errors:
                raise errors[locator]
        return resolved

    async def _resolve(self, locator: str, page_url: str) -> tuple[str | None, ElementNotFoundError | None]:
        target = self.selector_overrides.get(locator, locator)
        identity = selector_id(locator, page_url)
        try:
            count = await self.page.count(target)
        except Exception as exc:  # noqa: BLE001 - an unusable locator is treated as a miss.
            log.debug("Lookup for %s raised %r", target, exc)
            count = 0
        if count > 0:
            self._record_resolution(identity, locator, target, page_url)
            return target, None
        if self.repository.ready:
            self.repository.update_success_rate(identity, False)
        if target != locator:
            self.selector_overrides.pop(locator, None)
        return None, ElementNotFoundError(locator)

    def _record_resolution(self, identity: str, locator: str, target: str, page_url: str) -> None:
        if not self.repository.ready:
            return
        if self.repository.update_success_rate(identity, True) is None:
            self.repository.save_selector(
                SelectorRecord(
                    id=identity,
                    original_locator=target,
                    strategy=SelectorStrategy(infer_selector_type(target)),
                    page_url=page_url,
                    usage_count=1,
                )
            )

    def _apply(self, locator: str, result: HealingResult) -> str | None:
        if not result.success or not result.healed_locator:
            return None
        if self.config.mode is HealingMode.AUTO or self.config.auto_apply:
            log.info("Using healed selector: %s", result.healed_locator)
            self.selector_overrides[locator] = result.healed_locator
            return result.healed_locator
        self.healer.audit_logger.suggestion(locator, result.healed_locator)
        return None
