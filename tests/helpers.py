from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import pytest
from selenium.common.exceptions import WebDriverException

from selfheal.config.schema import BrowserConfig, FrameworkConfig
from selfheal.core.browser import BrowserSession, SeleniumPage
from selfheal.core.metadata import SelectorCandidate, SelectorStrategy
from selfheal.core.runtime import HealingRuntime, create_runtime
from selfheal.utils.dom_extract import ELEMENT_CONTEXT_SCRIPT, PAGE_CONTEXT_SCRIPT

PAGE_URL = "https://shop.example.com/login"
PAGE_HTML = '<form id="login"><input name="email"><button data-testid="submit">Sign in</button></form>'


def candidate(
    selector: str,
    confidence: float,
    strategy: SelectorStrategy | str = SelectorStrategy.CSS,
    reasoning: str = "matches the submit button",
) -> SelectorCandidate:
    return SelectorCandidate(selector=selector, strategy=strategy, confidence=confidence, reasoning=reasoning)


class FakePage:
    """In-memory page whose match counts and probe latencies are scripted per locator."""

    def __init__(
        self,
        matches: dict[str, int] | None = None,
        url: str = PAGE_URL,
        html: str = PAGE_HTML,
        element: dict | None = None,
        delays: dict[str, float] | None = None,
        errors: dict[str, Exception] | None = None,
    ) -> None:
        self.url = url
        self.matches = dict(matches or {})
        self.html = html
        self.element = element or {}
        self.delays = dict(delays or {})
        self.errors = dict(errors or {})
        self.probed: list[str] = []
        self.completed: list[str] = []
        self.evaluations: list[str] = []
        self.url_reads = 0

    async def current_url(self) -> str:
        self.url_reads += 1
        return self.url

    async def count(self, locator: str) -> int:
        self.probed.append(locator)
        delay = self.delays.get(locator)
        if delay:
            await asyncio.sleep(delay)
        self.completed.append(locator)
        if locator in self.errors:
            raise self.errors[locator]
        return self.matches.get(locator, 0)

    async def evaluate(self, script: str, *args):
        self.evaluations.append(script)
        if script == PAGE_CONTEXT_SCRIPT:
            return self.html[: args[0]]
        if script == ELEMENT_CONTEXT_SCRIPT:
            return self.element
        raise AssertionError("Unexpected script")


class FakeGenerator:
    """Scripted generative backend that records every call."""

    provider_name = "fake"

    def __init__(
        self,
        candidates: list[SelectorCandidate] | None = None,
        batch: dict | None = None,
        error: Exception | None = None,
    ) -> None:
        self.candidates = list(candidates or [])
        self.batch = dict(batch or {})
        self.error = error
        self.calls: list[dict] = []
        self.batch_calls: list[list[str]] = []

    async def generate(self, locator, page_html, element_context, error_message):
        self.calls.append(
            {
                "locator": locator,
                "page_html": page_html,
                "element_context": element_context,
                "error_message": error_message,
            }
        )
        if self.error is not None:
            raise self.error
        return list(self.candidates)

    async def generate_batch(self, items, page_html):
        self.batch_calls.append([item.locator for item in items])
        if self.error is not None:
            raise self.error
        return dict(self.batch)

    @property
    def total_calls(self) -> int:
        return len(self.calls) + len(self.batch_calls)


class UntouchableRepository:
    """Fails the test on any store access."""

    ready = True

    def __getattr__(self, name):
        raise AssertionError(f"Selector store was accessed: {name}")


@asynccontextmanager
async def managed_runtime(config: FrameworkConfig, generator) -> AsyncIterator[HealingRuntime]:
    browser_session = BrowserSession(config.browser)
    try:
        driver = browser_session.start()
    except WebDriverException as exc:
        pytest.skip(f"WebDriver could not start for {config.browser.browser}: {exc}")
    runtime = await create_runtime(config, SeleniumPage(driver), generator=generator)
    try:
        yield runtime
    finally:
        runtime.close()
        driver.quit()


def headless_config(tmp_path) -> FrameworkConfig:
    return FrameworkConfig.model_validate(
        {
            "healing": {"mode": "auto", "confidence_threshold": 0.5, "max_attempts": 3},
            "database": {"path": str(tmp_path / "selectors.db")},
            "browser": BrowserConfig(headless=True).model_dump(),
        }
    )


def inject_dynamic_id_change(runtime: HealingRuntime) -> None:
    runtime.page.driver.execute_script(
        """
        const button = document.querySelector('#login-button');
        if (button) {
          button.id = 'login-button-mutated';
        }
        """
    )
