"""Environment-driven settings and factories for the scanning components."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from spendscan.integrations.anthropic_assistant import (
    AnthropicCategorizer,
    AnthropicShoppingAssistant,
)
from spendscan.integrations.anthropic_extractor import (
    DEFAULT_MODEL,
    AnthropicStructurer,
    AnthropicTranscriber,
)
from spendscan.integrations.base import Transcriber
from spendscan.integrations.ocr import VisionTranscriber
from spendscan.pipeline import DEFAULT_TOLERANCE, ReceiptScanner

TRANSCRIBER_BACKENDS = ("anthropic", "vision")

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Runtime configuration, normally read from the environment or a .env file."""

    anthropic_api_key: str | None = None
    model: str = DEFAULT_MODEL
    max_tokens: int = Field(default=2048, gt=0)
    transcriber: str = "anthropic"
    tolerance: float = Field(default=DEFAULT_TOLERANCE, ge=0)
    strict_totals: bool = False
    category_cache: Path = Path.home() / ".spendscan" / "categories.json"
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        values: dict[str, object] = {
            "anthropic_api_key": os.getenv("ANTHROPIC_API_KEY") or None,
            "model": os.getenv("SPENDSCAN_MODEL"),
            "max_tokens": os.getenv("SPENDSCAN_MAX_TOKENS"),
            "transcriber": os.getenv("SPENDSCAN_TRANSCRIBER"),
            "tolerance": os.getenv("SPENDSCAN_TOLERANCE"),
            "category_cache": os.getenv("SPENDSCAN_CATEGORY_CACHE"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        for flag, env_var in (
            ("strict_totals", "SPENDSCAN_STRICT_TOTALS"),
            ("log_json", "LOG_JSON"),
        ):
            raw = os.getenv(env_var)
            if raw is not None:
                values[flag] = raw.strip().lower() in _TRUTHY
        return cls(**{k: v for k, v in values.items() if v is not None})

    def require_api_key(self) -> str:
        if not self.anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY is not set")
        return self.anthropic_api_key


def get_transcriber(settings: Settings) -> Transcriber:
    """Return the configured Stage 1 backend."""
    if settings.transcriber == "anthropic":
        return AnthropicTranscriber(
            api_key=settings.require_api_key(),
            model=settings.model,
            max_tokens=settings.max_tokens,
        )
    if settings.transcriber == "vision":
        return VisionTranscriber()
    raise ValueError(f"Unknown transcriber backend: {settings.transcriber}")


def build_scanner(settings: Settings, normalize: bool = True) -> ReceiptScanner:
    structurer = AnthropicStructurer(
        api_key=settings.require_api_key(),
        model=settings.model,
        max_tokens=settings.max_tokens,
    )
    return ReceiptScanner(
        transcriber=get_transcriber(settings),
        structurer=structurer,
        tolerance=settings.tolerance,
        strict_totals=settings.strict_totals,
        normalize=normalize,
    )


def build_categorizer(settings: Settings) -> AnthropicCategorizer:
    return AnthropicCategorizer(
        api_key=settings.require_api_key(),
        model=settings.model,
        max_tokens=settings.max_tokens,
    )


def build_shopping_assistant(settings: Settings) -> AnthropicShoppingAssistant:
    return AnthropicShoppingAssistant(
        api_key=settings.require_api_key(),
        model=settings.model,
        max_tokens=settings.max_tokens,
    )
