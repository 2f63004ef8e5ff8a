from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Sequence
from urllib import error, parse, request

from selfheal.config.schema import ContextConfig, LLMConfig
from selfheal.core.exceptions import GenerationError
from selfheal.core.metadata import BatchItem, ElementContext, SelectorCandidate
from selfheal.llm.parser import parse_batch_candidates, parse_candidates
from selfheal.llm.prompts import BATCH_SYSTEM_PROMPT, SYSTEM_PROMPT, build_batch_prompt, build_user_prompt
from selfheal.utils.wait import retry_with_backoff

log = logging.getLogger(__name__)


class CandidateGenerator(ABC):
    """Provider-neutral interface for generating replacement locators.

    Providers only implement ``complete``; prompting and strict response
    parsing are shared. Confidence filtering is left to the caller.
    """

    provider_name = "unknown"

    def __init__(self, config: LLMConfig, context: ContextConfig | None = None) -> None:
        self.config = config
        self.context = context or ContextConfig()

    @abstractmethod
    def complete(self, system_prompt: str, user_prompt: str) -> str:
        raise NotImplementedError

    async def generate(
        self,
        locator: str,
        page_html: str,
        element_context: ElementContext,
        error_message: str,
    ) -> list[SelectorCandidate]:
        prompt = build_user_prompt(
            locator,
            page_html,
            element_context,
            error_message,
            max_html_chars=self.context.max_prompt_html_chars,
        )
        log.debug("Requesting alternative selectors for %s from %s", locator, self.provider_name)
        response = await self._complete_async(SYSTEM_PROMPT, prompt)
        return parse_candidates(response)

    async def generate_batch(
        self,
        items: Sequence[BatchItem],
        page_html: str,
    ) -> dict[str, list[SelectorCandidate]]:
        prompt = build_batch_prompt(items, page_html, max_html_chars=self.context.max_prompt_html_chars)
        log.debug("Requesting alternative selectors for %d locators from %s", len(items), self.provider_name)
        response = await self._complete_async(BATCH_SYSTEM_PROMPT, prompt)
        return parse_batch_candidates(response, [item.locator for item in items])

    async def _complete_async(self, system_prompt: str, user_prompt: str) -> str:
        try:
            return await retry_with_backoff(
                lambda: asyncio.to_thread(self.complete, system_prompt, user_prompt),
                max_attempts=self.config.max_retries,
            )
        except GenerationError:
            raise
        except Exception as exc:  # noqa: BLE001 - providers surface arbitrary transport errors.
            raise GenerationError(f"{self.provider_name} request failed: {exc}") from exc


class OpenAICandidateGenerator(CandidateGenerator):
    provider_name = "openai"
    endpoint = "https://api.openai.com/v1/chat/completions"

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        url = f"{self.config.base_url.rstrip('/')}/chat/completions" if self.config.base_url else self.endpoint
        response = _post_json(
            url,
            self._body(system_prompt, user_prompt),
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.config.request_timeout_seconds,
        )
        return _chat_content(response)

    def _body(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }


class AzureOpenAICandidateGenerator(OpenAICandidateGenerator):
    provider_name = "azure"

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        if not self.config.base_url or not self.config.deployment:
            raise GenerationError("Azure OpenAI requires AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_DEPLOYMENT")
        query = parse.urlencode({"api-version": self.config.api_version or "2024-06-01"})
        url = (
            f"{self.config.base_url.rstrip('/')}/openai/deployments/"
            f"{self.config.deployment}/chat/completions?{query}"
        )
        response = _post_json(
            url,
            self._body(system_prompt, user_prompt),
            headers={
                "api-key": self.config.api_key,
                "Content-Type": "application/json",
            },
            timeout=self.config.request_timeout_seconds,
        )
        return _chat_content(response)


class AnthropicCandidateGenerator(CandidateGenerator):
    provider_name = "anthropic"
    endpoint = "https://api.anthropic.com/v1/messages"

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        body = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": min(self.config.temperature, 1.0),
            "system": system_prompt,
            "messages": [
                {"role": "user", "content": user_prompt},
            ],
        }
        response = _post_json(
            self.endpoint,
            body,
            headers={
                "x-api-key": self.config.api_key,
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
            timeout=self.config.request_timeout_seconds,
        )
        parts = response.get("content") or []
        content = "".join(part.get("text", "") for part in parts if isinstance(part, dict)).strip()
        if not content:
            raise GenerationError("Anthropic returned an empty response")
        return content


class GeminiCandidateGenerator(CandidateGenerator):
    provider_name = "gemini"
    endpoint_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        body = {
            "system_instruction": {
                "parts": [
                    {"text": system_prompt},
                ]
            },
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": user_prompt},
                    ],
                }
            ],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_tokens,
                "responseMimeType": "application/json",
            },
        }
        response = _post_json(
            self.endpoint_template.format(model=self.config.model),
            body,
            headers={
                "x-goog-api-key": self.config.api_key,
                "Content-Type": "application/json",
            },
            timeout=self.config.request_timeout_seconds,
        )
        candidates = response.get("candidates", [])
        if not candidates:
            raise GenerationError("Gemini returned no candidates")
        parts = candidates[0].get("content", {}).get("parts", [])
        text_parts = [part.get("text", "") for part in parts if isinstance(part, dict)]
        content = "".join(text_parts).strip()
        if not content:
            raise GenerationError("Gemini returned an empty response")
        return content


_PROVIDERS: dict[str, type[CandidateGenerator]] = {
    "openai": OpenAICandidateGenerator,
    "azure": AzureOpenAICandidateGenerator,
    "anthropic": AnthropicCandidateGenerator,
    "gemini": GeminiCandidateGenerator,
}


def create_candidate_generator(config: LLMConfig, context: ContextConfig | None = None) -> CandidateGenerator:
    generator_class = _PROVIDERS.get(config.provider)
    if generator_class is None:
        raise RuntimeError(f"Unsupported LLM provider: {config.provider}")
    if not config.api_key:
        raise RuntimeError(f"An API key is required when LLM_PROVIDER={config.provider}")
    return generator_class(config, context)


def _chat_content(response: dict[str, Any]) -> str:
    try:
        content = response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise GenerationError("LLM response did not contain a message") from exc
    if not content:
        raise GenerationError("No response from LLM")
    return content


def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float = 30) -> dict[str, Any]:
    encoded = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=encoded, headers=headers, method="POST")
    try:
        with request.urlopen(req, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise GenerationError(f"LLM request failed with status {exc.code}: {detail}") from exc
    except error.URLError as exc:
        raise GenerationError(f"LLM request could not be completed: {exc.reason}") from exc
    except TimeoutError as exc:
        raise GenerationError("LLM request timed out") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise GenerationError("LLM endpoint returned a non-JSON body") from exc
