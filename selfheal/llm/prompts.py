from __future__ import annotations

import json
from typing import Iterable

from selfheal.core.metadata import BatchItem, ElementContext

_RESPONSE_SHAPE = """{
  "selector": "string",
  "strategy": "css|xpath|text|attribute|structural|ai-visual",
  "confidence": 0.0-1.0,
  "reasoning": "string"
}"""

SYSTEM_PROMPT = f"""You are an expert in web automation and DOM analysis. Your task is to generate alternative CSS selectors and XPath expressions for web elements when the original selector fails.

Rules:
1. Use only elements present in the provided HTML. Do not invent tags, attributes, text, or hierarchy.
2. Generate multiple selector strategies (CSS, XPath, text-based, attribute-based, structural).
3. Prioritize selectors that are stable, unique to the element, and simple.
4. Provide a confidence score between 0 and 1 for each selector and explain your reasoning.
5. Text selectors use the form text=Visible label.
6. Respond with a single JSON object and nothing else.

Response format:
{{
  "candidates": [
    {_RESPONSE_SHAPE}
  ]
}}"""

BATCH_SYSTEM_PROMPT = f"""You are an expert in web automation and DOM analysis. Several selectors failed on the same page. For each failed selector, generate alternative selectors that locate the element it was meant to find.

Rules:
1. Use only elements present in the provided HTML. Do not invent tags, attributes, text, or hierarchy.
2. Key every list of candidates by the failed selector exactly as given.
3. Provide a confidence score between 0 and 1 for each selector and explain your reasoning.
4. Text selectors use the form text=Visible label.
5. Respond with a single JSON object and nothing else.

Response format:
{{
  "results": {{
    "<failed selector>": [
      {_RESPONSE_SHAPE}
    ]
  }}
}}"""


def truncate_html(page_html: str, max_chars: int) -> str:
    if len(page_html) <= max_chars:
        return page_html
    return page_html[:max_chars] + "\n... (truncated)"


def build_user_prompt(
    locator: str,
    page_html: str,
    element_context: ElementContext,
    error_message: str,
    max_html_chars: int = 10000,
) -> str:
    lines = [f'The original selector "{locator}" failed with error: "{error_message}"', "", "Element Context:"]
    if element_context.attributes:
        lines.append(f"- Attributes: {json.dumps(element_context.attributes, sort_keys=True)}")
    if element_context.text:
        lines.append(f'- Text: "{element_context.text}"')
    if element_context.position:
        lines.append(f"- Position: ({element_context.position.get('x')}, {element_context.position.get('y')})")
    lines.extend(
        [
            "",
            "Page HTML (relevant section):",
            "```html",
            truncate_html(page_html, max_html_chars),
            "```",
            "",
            "Generate 5-7 alternative selectors that can locate this element, using different strategies.",
            "Provide your response in the specified JSON format.",
        ]
    )
    return "\n".join(lines)


def build_batch_prompt(items: Iterable[BatchItem], page_html: str, max_html_chars: int = 10000) -> str:
    """Formats every failed selector against one shared page snapshot."""

    failures = [
        {
            "selector": item.locator,
            "error": item.error_message,
            "element_context": item.element_context.to_payload(),
        }
        for item in items
    ]
    return "\n".join(
        [
            "Failed selectors:",
            json.dumps(failures, indent=2, sort_keys=True),
            "",
            "Page HTML (relevant section):",
            "```html",
            truncate_html(page_html, max_html_chars),
            "```",
            "",
            "Generate 3-5 alternative selectors for each failed selector.",
            "Provide your response in the specified JSON format.",
        ]
    )
