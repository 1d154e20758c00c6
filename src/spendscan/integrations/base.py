from typing import Protocol

from spendscan.models import ReceiptImage, StructuredReceipt


class Transcriber(Protocol):
    """Stage 1: turns a receipt image into unstructured text."""

    async def transcribe(self, image: ReceiptImage) -> str: ...


class Structurer(Protocol):
    """Stage 2: turns transcribed receipt text into a validated receipt."""

    async def structure(self, raw_text: str) -> StructuredReceipt: ...
