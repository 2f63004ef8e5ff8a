from __future__ import annotations

import asyncio
from typing import Any, Protocol

from selenium import webdriver
from selenium.webdriver import ChromeOptions, FirefoxOptions
from selenium.webdriver.common.by import By

from selfheal.config.schema import BrowserConfig
from selfheal.core.exceptions import ElementNotFoundError
from selfheal.llm.parser import infer_selector_type


class PageLike(Protocol):
    """What the healing core needs from a live page."""

    async def current_url(self) -> str: ...

    async def count(self, locator: str) -> int: ...

    async def evaluate(self, script: str, *args: Any) -> Any: ...


class BrowserSession:
    """Creates browser instances using Selenium Manager."""

    def __init__(self, config: BrowserConfig) -> None:
        self.config = config

    def start(self, browser_name: str | None = None):
        normalized = (browser_name or self.config.browser).lower()
        if normalized == "chrome":
            options = ChromeOptions()
            if self.config.headless:
                options.add_argument("--headless=new")
            options.add_argument("--window-size=1440,1200")
            driver = webdriver.Chrome(options=options)
        elif normalized == "firefox":
            options = FirefoxOptions()
            if self.config.headless:
                options.add_argument("-headless")
            driver = webdriver.Firefox(options=options)
        else:
            raise ValueError(f"Unsupported browser: {browser_name}")
        driver.set_page_load_timeout(self.config.default_timeout_seconds)
        driver.implicitly_wait(0)
        return driver


class SeleniumPage:
    """Async adapter over a Selenium driver; blocking calls run in worker threads."""

    def __init__(self, driver) -> None:
        self.driver = driver

    async def current_url(self) -> str:
        return await asyncio.to_thread(getattr, self.driver, "current_url")

    async def count(self, locator: str) -> int:
        by, value = to_selenium_locator(locator)
        matches = await asyncio.to_thread(self.driver.find_elements, by, value)
        return len(matches)

    async def evaluate(self, script: str, *args: Any) -> Any:
        return await asyncio.to_thread(self.driver.execute_script, script, *args)

    async def find(self, locator: str):
        by, value = to_selenium_locator(locator)
        matches = await asyncio.to_thread(self.driver.find_elements, by, value)
        if not matches:
            raise ElementNotFoundError(locator)
        return matches[0]


def to_selenium_locator(locator: str) -> tuple[str, str]:
    selector = locator.strip()
    selector_type = infer_selector_type(selector)
    if selector_type == "xpath":
        return By.XPATH, selector.removeprefix("xpath=")
    if selector_type == "text":
        text = selector.removeprefix("text=").strip().strip("\"'")
        return By.XPATH, f"//*[normalize-space(text())={_xpath_literal(text)}]"
    return By.CSS_SELECTOR, selector


def _xpath_literal(value: str) -> str:
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    parts = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{part}'" for part in parts) + ")"
