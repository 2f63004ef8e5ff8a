from __future__ import annotations

import asyncio
import logging
import threading

import pytest
from selenium.common.exceptions import StaleElementReferenceException
from selenium.webdriver.common.by import By

from selfheal.config.schema import ContextConfig, FrameworkConfig, LoggingConfig
from selfheal.core.actions import SafeActions
from selfheal.core.browser import SeleniumPage, to_selenium_locator
from selfheal.core.exceptions import AmbiguousMatchError, NoMatchError
from selfheal.core.runtime import create_runtime
from selfheal.core.validator import CandidateValidator
from selfheal.logging.audit import HealingAuditLogger, configure_logging
from selfheal.utils.dom_extract import DomContextExtractor
from selfheal.utils.identity import sanitize_selector, selector_id
from selfheal.utils.scoring import filter_candidates, update_success_rate
from selfheal.utils.wait import call_with_timeout, retry_with_backoff
from tests.helpers import FakeGenerator, FakePage, candidate


def test_selector_id_is_deterministic_and_page_scoped():
    assert selector_id("#a", "https://shop.example.com/login") == "efe91a712b024c1c"
    assert selector_id("#a", "https://shop.example.com/login") == selector_id("#a", "https://shop.example.com/login")
    assert selector_id("#a", "https://shop.example.com/cart") == "ad65ce2fc8ee0b69"


def test_sanitize_selector_bounds_length():
    assert sanitize_selector("#short") == "#short"
    shortened = sanitize_selector("//div" * 40)
    assert len(shortened) == 100
    assert shortened.endswith("...")


def test_success_rate_is_an_exponential_moving_average():
    assert update_success_rate(0.5, True) == pytest.approx(0.6)
    assert update_success_rate(0.5, False) == pytest.approx(0.4)
    assert update_success_rate(1.0, True) == 1.0
    assert update_success_rate(0.0, False) == 0.0
    assert update_success_rate(1.7, True) == 1.0


def test_filter_candidates_applies_threshold_and_stable_order():
    kept = filter_candidates(
        [
            candidate("#low", 0.4),
            candidate("#first-tie", 0.8),
            candidate("#best", 0.95),
            candidate("#second-tie", 0.8),
            candidate("#edge", 0.75),
        ],
        threshold=0.75,
    )
    assert [item.selector for item in kept] == ["#best", "#first-tie", "#second-tie", "#edge"]


def test_filter_candidates_restricts_strategies():
    kept = filter_candidates(
        [candidate("#css", 0.9), candidate("//xpath", 0.9, "xpath")],
        threshold=0.5,
        strategies=["xpath"],
    )
    assert [item.selector for item in kept] == ["//xpath"]


@pytest.mark.asyncio
async def test_retry_with_backoff_returns_first_success():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "ok"

    assert await retry_with_backoff(flaky, max_attempts=3, initial_delay=0) == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_with_backoff_reraises_last_error():
    async def broken():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await retry_with_backoff(broken, max_attempts=2, initial_delay=0)
    with pytest.raises(ValueError):
        await retry_with_backoff(broken, max_attempts=0)


@pytest.mark.asyncio
async def test_call_with_timeout():
    assert await call_with_timeout(asyncio.sleep(0, result="done"), None) == "done"
    with pytest.raises(TimeoutError):
        await call_with_timeout(asyncio.sleep(1), 0.01)


@pytest.mark.asyncio
async def test_validator_requires_exactly_one_match():
    validator = CandidateValidator()
    page = FakePage(matches={"#one": 1, ".many": 3})

    assert (await validator.validate(page, candidate("#one", 0.9))).selector == "#one"
    with pytest.raises(AmbiguousMatchError) as ambiguous:
        await validator.validate(page, candidate(".many", 0.9))
    assert ambiguous.value.match_count == 3
    with pytest.raises(NoMatchError):
        await validator.validate(page, candidate("#none", 0.9))


@pytest.mark.asyncio
async def test_slow_probe_times_out_without_cancelling_others():
    validator = CandidateValidator(timeout=0.05)
    page = FakePage(matches={"#slow": 1, "#fast": 1}, delays={"#slow": 1.0})

    outcome = await validator.validate_ranked(page, [candidate("#slow", 0.9), candidate("#fast", 0.8)], limit=3)

    assert outcome.winner.selector == "#fast"
    assert outcome.attempts == 2
    assert isinstance(outcome.rejections["#slow"], TimeoutError)
    assert "#fast" in page.completed


@pytest.mark.asyncio
async def test_validate_ranked_with_nothing_to_try():
    outcome = await CandidateValidator().validate_ranked(FakePage(), [], limit=3)

    assert not outcome.success
    assert outcome.attempts == 0


@pytest.mark.asyncio
async def test_context_extractor_bounds_page_and_element_context():
    extractor = DomContextExtractor(ContextConfig(max_page_chars=12, max_element_text_chars=4))
    page = FakePage(
        html="<main>" + "x" * 40 + "</main>",
        element={"attributes": {"id": "login", "tabindex": 0}, "text": "Sign in now", "position": {"x": 1, "y": 2}},
    )

    html = await extractor.page_context(page)
    context = await extractor.element_context(page, "#login")

    assert len(html) == 12
    assert context.attributes == {"id": "login", "tabindex": "0"}
    assert context.text == "Sign"
    assert context.position == {"x": 1, "y": 2}


@pytest.mark.asyncio
async def test_context_extractor_tolerates_script_errors():
    class BrokenPage(FakePage):
        async def evaluate(self, script, *args):
            raise RuntimeError("javascript error")

    extractor = DomContextExtractor()

    assert await extractor.page_context(BrokenPage()) == ""
    context = await extractor.element_context(BrokenPage(), "#login")
    assert context.attributes == {}
    assert context.text is None


def test_selenium_locator_translation():
    assert to_selenium_locator("#login") == (By.CSS_SELECTOR, "#login")
    assert to_selenium_locator("//button[@type='submit']") == (By.XPATH, "//button[@type='submit']")
    assert to_selenium_locator("xpath=//a") == (By.XPATH, "//a")
    assert to_selenium_locator("text=Sign in") == (By.XPATH, "//*[normalize-space(text())='Sign in']")
    assert to_selenium_locator("text=Don't go") == (By.XPATH, '//*[normalize-space(text())="Don\'t go"]')


def test_configure_logging_adds_file_handler(tmp_path):
    log_path = tmp_path / "logs" / "framework.log"
    logger = configure_logging(LoggingConfig(level="debug", to_file=True, file_path=str(log_path)))
    try:
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2
        assert log_path.exists()
    finally:
        logger.setLevel(logging.NOTSET)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()


def test_audit_logger_reports_confidence(caplog):
    audit = HealingAuditLogger()

    with caplog.at_level(logging.INFO, logger="selfheal.healing"):
        audit.success("#old", "#new", 0.9)
        audit.failure("#gone", 3, "Exhausted")

    assert "Healed #old -> #new (confidence: 90.0%)" in caplog.text
    assert "Failed to heal #gone after 3 attempts (Exhausted)" in caplog.text


class FakeElement:
    def __init__(self, stale_clicks: int = 0) -> None:
        self.stale_clicks = stale_clicks
        self.clicks = 0
        self.typed: list[str] = []

    def click(self) -> None:
        if self.stale_clicks:
            self.stale_clicks -= 1
            raise StaleElementReferenceException("detached")
        self.clicks += 1

    def clear(self) -> None:
        self.typed.clear()

    def send_keys(self, value: str) -> None:
        self.typed.append(value)


class ElementPage(FakePage):
    def __init__(self, element: FakeElement, **kwargs) -> None:
        super().__init__(**kwargs)
        self.found = element
        self.lookups: list[str] = []

    async def find(self, locator: str):
        self.lookups.append(locator)
        return self.found


@pytest.mark.asyncio
async def test_runtime_wires_finder_and_actions():
    config = FrameworkConfig.model_validate({"database": {"path": ":memory:"}})
    element = FakeElement(stale_clicks=1)
    page = ElementPage(element, matches={"[data-testid='submit']": 1})
    generator = FakeGenerator(candidates=[candidate("[data-testid='submit']", 0.9)])

    runtime = await create_runtime(config, page, generator=generator)
    try:
        await runtime.actions.click("#submit-old")
        await runtime.actions.fill("#submit-old", "secret")
    finally:
        runtime.close()

    assert element.clicks == 1
    assert element.typed == ["secret"]
    assert page.lookups[-1] == "[data-testid='submit']"
    assert len(generator.calls) == 1
    assert not runtime.repository.ready


@pytest.mark.asyncio
async def test_disabled_runtime_needs_no_backend():
    config = FrameworkConfig.model_validate({"healing": {"mode": "disabled"}, "database": {"path": ":memory:"}})

    runtime = await create_runtime(config, FakePage())
    try:
        assert runtime.healer.generator is None
        assert isinstance(runtime.actions, SafeActions)
    finally:
        runtime.close()


@pytest.mark.asyncio
async def test_selenium_page_reads_url_off_the_event_loop():
    class RecordingDriver:
        def __init__(self) -> None:
            self.threads: list[int] = []

        @property
        def current_url(self) -> str:
            self.threads.append(threading.get_ident())
            return "https://shop.example.com/login"

    driver = RecordingDriver()

    assert await SeleniumPage(driver).current_url() == "https://shop.example.com/login"
    assert driver.threads and driver.threads[0] != threading.get_ident()
