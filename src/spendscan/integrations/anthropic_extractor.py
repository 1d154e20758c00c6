"""Anthropic API integration for the two receipt scanning stages."""

import base64
import logging
from pathlib import Path
from typing import Any

from anthropic import AsyncAnthropic
from anthropic.types.beta import (
    BetaCacheControlEphemeralParam,
    BetaMessageParam,
    BetaTextBlockParam,
)
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel

from spendscan.errors import (
    ExtractionError,
    ExtractionIncompleteError,
    ExtractionRefusedError,
)
from spendscan.models import RawReceiptContent, ReceiptImage, StructuredReceipt

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-haiku-4-5"
STRUCTURED_OUTPUTS_BETA = "structured-outputs-2025-11-13"
PROMPTS_DIR = Path(__file__).parent.parent / "prompts"


class AnthropicStage:
    """
    Shared plumbing for a single structured-output call to Claude.

    Each call renders a system and a user prompt from Jinja2 templates, sends
    them through the structured outputs beta and returns the Pydantic-validated
    output. Stages never retry: a failed call surfaces to the caller as-is.
    """

    system_template: str = ""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 2048,
        temperature: float = 0.0,
        prompts_dir: str | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        """
        Initialize the stage.

        Args:
            api_key: Anthropic API key (ignored when ``client`` is given)
            model: Model to use (default: claude-haiku-4-5)
            max_tokens: Maximum tokens for response (default: 2048)
            temperature: Sampling temperature (default: 0.0 for deterministic)
            prompts_dir: Directory containing Jinja2 templates
                (default: the package's prompts/ directory)
            client: Optional pre-configured AsyncAnthropic client
        """
        self.client = client or AsyncAnthropic(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

        self.jinja_env = Environment(
            loader=FileSystemLoader(prompts_dir or str(PROMPTS_DIR)),
            autoescape=select_autoescape(),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def _render(self, template_name: str, **context: Any) -> str:
        return self.jinja_env.get_template(template_name).render(**context)

    async def _parse(
        self,
        content: str | list[dict[str, Any]],
        output_format: type[BaseModel],
        max_tokens: int | None = None,
    ) -> Any:
        """
        Send one user turn and return the parsed structured output.

        Raises:
            ExtractionRefusedError: If the model refuses the request
            ExtractionIncompleteError: If the response is truncated
            ExtractionError: If the response carries no parsed output
        """
        messages: list[BetaMessageParam] = [
            {"role": "user", "content": content}  # type: ignore[typeddict-item]
        ]

        response = await self.client.beta.messages.parse(
            model=self.model,
            max_tokens=max_tokens or self.max_tokens,
            temperature=self.temperature,
            betas=[STRUCTURED_OUTPUTS_BETA],
            system=[
                BetaTextBlockParam(
                    type="text",
                    text=self._render(self.system_template),
                    cache_control=BetaCacheControlEphemeralParam(type="ephemeral"),
                )
            ],
            messages=messages,
            output_format=output_format,
        )

        if response.stop_reason == "refusal":
            raise ExtractionRefusedError("Model refused to process the request")

        if response.stop_reason == "max_tokens":
            raise ExtractionIncompleteError(
                "Response truncated due to token limit. Try increasing max_tokens."
            )

        logger.debug(
            "%s call used %s input / %s output tokens",
            output_format.__name__,
            response.usage.input_tokens,
            response.usage.output_tokens,
        )

        if response.parsed_output is None:
            raise ExtractionError("Model response did not contain the expected output")
        return response.parsed_output


class AnthropicTranscriber(AnthropicStage):
    """Stage 1: transcribes a receipt image to raw text with a multimodal model."""

    system_template = "transcriber_system.jinja2"

    async def transcribe(self, image: ReceiptImage) -> str:
        encoded = base64.standard_b64encode(image.data).decode("ascii")
        content = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image.mime_type,
                    "data": encoded,
                },
            },
            {"type": "text", "text": self._render("transcriber_user.jinja2")},
        ]

        parsed = await self._parse(content, RawReceiptContent)
        if not isinstance(parsed, RawReceiptContent):
            parsed = RawReceiptContent.model_validate(parsed)
        return parsed.raw_content


class AnthropicStructurer(AnthropicStage):
    """Stage 2: parses transcribed receipt text into a StructuredReceipt."""

    system_template = "structurer_system.jinja2"

    async def structure(self, raw_text: str) -> StructuredReceipt:
        """
        Structure raw receipt text.

        Output that is not already a StructuredReceipt is validated here, so a
        payload missing a required field raises ``pydantic.ValidationError``
        instead of yielding a partially populated receipt.
        """
        user_prompt = self._render("structurer_user.jinja2", RAW_RECEIPT_TEXT=raw_text)
        parsed = await self._parse(user_prompt, StructuredReceipt)
        if not isinstance(parsed, StructuredReceipt):
            parsed = StructuredReceipt.model_validate(parsed)
        return parsed
