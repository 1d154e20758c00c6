"""Spendscan integrations module."""

from spendscan.integrations.anthropic_assistant import (
    AnthropicCategorizer,
    AnthropicShoppingAssistant,
    CategorySuggester,
)
from spendscan.integrations.anthropic_extractor import (
    AnthropicStructurer,
    AnthropicTranscriber,
)
from spendscan.integrations.base import Structurer, Transcriber
from spendscan.integrations.local_export import LocalExporter
from spendscan.integrations.ocr import VisionTranscriber

__all__ = [
    "AnthropicCategorizer",
    "AnthropicShoppingAssistant",
    "AnthropicStructurer",
    "AnthropicTranscriber",
    "CategorySuggester",
    "LocalExporter",
    "Structurer",
    "Transcriber",
    "VisionTranscriber",
]
