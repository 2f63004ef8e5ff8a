from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from selfheal.core.metadata import HealingMode, SelectorStrategy


class HealingConfig(BaseModel):
    mode: HealingMode = HealingMode.AUTO
    confidence_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    max_attempts: int = Field(default=3, ge=1)
    auto_apply: bool = False
    strategies: list[SelectorStrategy] = Field(default_factory=lambda: list(SelectorStrategy))
    validation_timeout_seconds: float | None = Field(default=None, gt=0)
    generation_timeout_seconds: float | None = Field(default=None, gt=0)

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @property
    def enabled(self) -> bool:
        return self.mode is not HealingMode.DISABLED


class LLMConfig(BaseModel):
    provider: str = "openai"
    model: str = "gpt-4o"
    api_key: str = ""
    base_url: str | None = None
    deployment: str | None = None
    api_version: str | None = None
    max_tokens: int = Field(default=2000, ge=1)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=1, ge=1)

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, value: str) -> str:
        allowed = {"openai", "azure", "anthropic", "gemini"}
        normalized = value.lower()
        if normalized not in allowed:
            raise ValueError(f"Unsupported LLM provider: {value}")
        return normalized


class ContextConfig(BaseModel):
    max_page_chars: int = Field(default=15000, ge=1)
    max_prompt_html_chars: int = Field(default=10000, ge=1)
    max_element_text_chars: int = Field(default=100, ge=0)


class DatabaseConfig(BaseModel):
    path: str = "./data/selectors.db"


class LoggingConfig(BaseModel):
    level: str = "info"
    to_file: bool = False
    file_path: str = "./logs/framework.log"

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        normalized = value.lower()
        if normalized == "warn":
            normalized = "warning"
        if normalized not in {"error", "warning", "info", "debug"}:
            raise ValueError(f"Unsupported log level: {value}")
        return normalized


class BrowserConfig(BaseModel):
    browser: str = "chrome"
    headless: bool = True
    default_timeout_seconds: int = 10

    @field_validator("browser")
    @classmethod
    def validate_browser(cls, value: str) -> str:
        normalized = value.lower()
        if normalized not in {"chrome", "firefox"}:
            raise ValueError(f"Unsupported browser: {value}")
        return normalized


class FrameworkConfig(BaseModel):
    healing: HealingConfig = Field(default_factory=HealingConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)

    def validate_for_generation(self) -> None:
        """Fails fast when the generative backend cannot be reached."""

        if not self.llm.api_key:
            raise ValueError(
                "LLM API key is required. Set OPENAI_API_KEY, AZURE_OPENAI_API_KEY, "
                "ANTHROPIC_API_KEY or GEMINI_API_KEY."
            )
