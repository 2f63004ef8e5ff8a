from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from pydantic import ValidationError

from selfheal.core.exceptions import SelectorValidationError
from selfheal.core.metadata import SelectorCandidate

log = logging.getLogger(__name__)


def infer_selector_type(selector: str) -> str:
    stripped = selector.strip()
    if stripped.startswith("xpath=") or stripped.startswith("/") or stripped.startswith("("):
        return "xpath"
    if stripped.startswith("text="):
        return "text"
    return "css"


def parse_candidates(response: str) -> list[SelectorCandidate]:
    payload = _load_object(response)
    entries = payload.get("candidates")
    if not isinstance(entries, list):
        raise SelectorValidationError("LLM response is missing a 'candidates' list")
    return _validate_entries(entries)


def parse_batch_candidates(response: str, locators: Iterable[str]) -> dict[str, list[SelectorCandidate]]:
    """Splits one batch response into a candidate list per requested locator.

    Locators the response does not mention, or mentions with something other
    than a list, map to an empty list.
    """

    payload = _load_object(response)
    results = payload.get("results")
    if not isinstance(results, dict):
        raise SelectorValidationError("LLM response is missing a 'results' object")
    parsed: dict[str, list[SelectorCandidate]] = {}
    for locator in locators:
        entries = results.get(locator)
        if not isinstance(entries, list):
            if entries is not None:
                log.warning("Discarding malformed batch entry for %s", locator)
            parsed[locator] = []
            continue
        parsed[locator] = _validate_entries(entries)
    return parsed


def _load_object(response: str) -> dict[str, Any]:
    text = response.strip()
    if not text:
        raise SelectorValidationError("LLM returned an empty response")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SelectorValidationError("LLM returned a response that is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise SelectorValidationError("LLM returned JSON that is not an object")
    return payload


def _validate_entries(entries: list[Any]) -> list[SelectorCandidate]:
    candidates: list[SelectorCandidate] = []
    for index, entry in enumerate(entries):
        try:
            candidates.append(SelectorCandidate.model_validate(entry))
        except ValidationError as exc:
            log.warning("Discarding malformed candidate #%d: %s", index, exc.errors(include_url=False))
    return candidates
