from __future__ import annotations

import logging

from selfheal.config.schema import ContextConfig
from selfheal.core.metadata import ElementContext

log = logging.getLogger(__name__)

PAGE_CONTEXT_SCRIPT = r"""
const body = document.body;
return body ? body.innerHTML.substring(0, arguments[0]) : "";
"""

ELEMENT_CONTEXT_SCRIPT = r"""
const selector = arguments[0];
const maxText = arguments[1];
const patterns = [
  selector.replace(/\[.*?\]/g, ""),
  selector.split(" ")[0],
  selector.split(">")[0],
];
for (const pattern of patterns) {
  if (!pattern || !pattern.trim()) continue;
  let node = null;
  try {
    node = document.querySelector(pattern.trim());
  } catch (e) {
    continue;
  }
  if (!node) continue;
  const rect = node.getBoundingClientRect();
  return {
    attributes: Array.from(node.attributes).reduce((acc, attr) => {
      acc[attr.name] = attr.value;
      return acc;
    }, {}),
    text: (node.textContent || "").trim().slice(0, maxText),
    position: { x: rect.x, y: rect.y },
  };
}
return {};
"""


class DomContextExtractor:
    """Captures bounded page HTML and best-effort context for a failing locator."""

    def __init__(self, config: ContextConfig | None = None) -> None:
        self.config = config or ContextConfig()

    async def page_context(self, page) -> str:
        try:
            html = await page.evaluate(PAGE_CONTEXT_SCRIPT, self.config.max_page_chars)
        except Exception as exc:  # noqa: BLE001 - a missing snapshot only weakens the prompt.
            log.error("Error getting page context: %s", exc)
            return ""
        return (html or "")[: self.config.max_page_chars]

    async def element_context(self, page, locator: str) -> ElementContext:
        try:
            raw = await page.evaluate(ELEMENT_CONTEXT_SCRIPT, locator, self.config.max_element_text_chars)
        except Exception as exc:  # noqa: BLE001 - element context is optional.
            log.debug("Could not extract element context for %s: %s", locator, exc)
            return ElementContext()
        if not isinstance(raw, dict):
            return ElementContext()
        attributes = raw.get("attributes") or {}
        text = raw.get("text") or None
        position = raw.get("position") or None
        return ElementContext(
            attributes={str(key): str(value) for key, value in attributes.items()},
            text=text[: self.config.max_element_text_chars] if text else None,
            position=position,
        )
