from __future__ import annotations

import asyncio

from selenium.common.exceptions import (
    ElementNotInteractableException,
    StaleElementReferenceException,
)


class SafeActions:
    """High-level browser actions routed through the healing finder."""

    def __init__(self, page, finder) -> None:
        self.page = page
        self.finder = finder

    async def click(self, locator: str) -> None:
        element = await self._element(locator)
        try:
            await asyncio.to_thread(element.click)
        except (ElementNotInteractableException, StaleElementReferenceException):
            element = await self._element(locator)
            await asyncio.to_thread(element.click)

    async def fill(self, locator: str, value: str, clear_first: bool = True) -> None:
        element = await self._element(locator)
        try:
            await self._type(element, value, clear_first)
        except (ElementNotInteractableException, StaleElementReferenceException):
            element = await self._element(locator)
            await self._type(element, value, clear_first)

    async def text_content(self, locator: str) -> str:
        element = await self._element(locator)
        return await asyncio.to_thread(lambda: element.text)

    async def is_visible(self, locator: str) -> bool:
        element = await self._element(locator)
        return await asyncio.to_thread(element.is_displayed)

    async def _element(self, locator: str):
        resolved = await self.finder.locate(locator)
        return await self.page.find(resolved)

    @staticmethod
    async def _type(element, value: str, clear_first: bool) -> None:
        if clear_first:
            await asyncio.to_thread(element.clear)
        await asyncio.to_thread(element.send_keys, value)
