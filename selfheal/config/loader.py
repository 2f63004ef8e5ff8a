from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Mapping

from selfheal.config.schema import FrameworkConfig

_API_KEY_VARIABLES = {
    "openai": ("OPENAI_API_KEY",),
    "azure": ("AZURE_OPENAI_API_KEY", "OPENAI_API_KEY"),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "gemini": ("GEMINI_API_KEY",),
}

_MODEL_VARIABLES = {
    "openai": "OPENAI_MODEL",
    "azure": "OPENAI_MODEL",
    "anthropic": "ANTHROPIC_MODEL",
    "gemini": "GEMINI_MODEL",
}

_DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "azure": "gpt-4o",
    "anthropic": "claude-3-5-sonnet-latest",
    "gemini": "gemini-2.5-flash",
}


class ConfigLoader:
    """Loads and validates the framework configuration."""

    @staticmethod
    def load(path: str | Path) -> FrameworkConfig:
        config_path = Path(path)
        with config_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        return FrameworkConfig.model_validate(payload)

    @staticmethod
    def from_env(environ: Mapping[str, str] | None = None) -> FrameworkConfig:
        env = os.environ if environ is None else environ
        provider = env.get("LLM_PROVIDER", "openai").lower()

        healing: dict[str, Any] = {}
        _copy(env, healing, "HEALING_MODE", "mode")
        _copy(env, healing, "HEALING_CONFIDENCE_THRESHOLD", "confidence_threshold")
        _copy(env, healing, "HEALING_MAX_ATTEMPTS", "max_attempts")
        if "HEALING_AUTO_APPLY" in env:
            healing["auto_apply"] = _flag(env["HEALING_AUTO_APPLY"])

        llm: dict[str, Any] = {
            "provider": provider,
            "model": env.get(_MODEL_VARIABLES.get(provider, "OPENAI_MODEL"), _DEFAULT_MODELS.get(provider, "gpt-4o")),
            "api_key": next(
                (env[name] for name in _API_KEY_VARIABLES.get(provider, ()) if env.get(name)),
                "",
            ),
        }
        base_url = env.get("OPENAI_BASE_URL") or env.get("AZURE_OPENAI_ENDPOINT")
        if base_url:
            llm["base_url"] = base_url
        _copy(env, llm, "AZURE_OPENAI_DEPLOYMENT", "deployment")
        _copy(env, llm, "AZURE_OPENAI_API_VERSION", "api_version")

        database: dict[str, Any] = {}
        _copy(env, database, "DB_PATH", "path")

        logging_section: dict[str, Any] = {}
        _copy(env, logging_section, "LOG_LEVEL", "level")
        _copy(env, logging_section, "LOG_FILE_PATH", "file_path")
        if "LOG_TO_FILE" in env:
            logging_section["to_file"] = _flag(env["LOG_TO_FILE"])

        return FrameworkConfig.model_validate(
            {
                "healing": healing,
                "llm": llm,
                "database": database,
                "logging": logging_section,
            }
        )


def _copy(env: Mapping[str, str], target: dict[str, Any], variable: str, key: str) -> None:
    value = env.get(variable)
    if value:
        target[key] = value


def _flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}
