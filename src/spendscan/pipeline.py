"""Two-stage receipt scanning pipeline: image -> raw text -> structured receipt."""

import logging
import time

from spendscan.errors import (
    STAGE_STRUCTURE,
    STAGE_TRANSCRIBE,
    ExtractionFailedError,
    MalformedInputError,
    run_classified,
)
from spendscan.integrations.base import Structurer, Transcriber
from spendscan.models import (
    ReceiptImage,
    ReconciliationReport,
    ScanResult,
    StructuredReceipt,
)
from spendscan.utils.image import normalize_image

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.05


def reconcile_totals(
    receipt: StructuredReceipt, tolerance: float = DEFAULT_TOLERANCE
) -> ReconciliationReport:
    """Compare the summed line totals against the receipt's stated total."""
    items_total = round(receipt.items_total(), 2)
    difference = round(items_total - receipt.total, 2)
    return ReconciliationReport(
        items_total=items_total,
        stated_total=receipt.total,
        difference=difference,
        tolerance=tolerance,
        within_tolerance=abs(difference) <= tolerance,
    )


class ReceiptScanner:
    """
    Sequences the transcriber and the structurer for one scan at a time.

    The scanner holds only configuration and the two stage objects, so a single
    instance can serve concurrent scans. Nothing is retried or cached: any stage
    failure ends the invocation with a classified error.
    """

    def __init__(
        self,
        transcriber: Transcriber,
        structurer: Structurer,
        tolerance: float = DEFAULT_TOLERANCE,
        strict_totals: bool = False,
        normalize: bool = True,
    ) -> None:
        """
        Args:
            transcriber: Stage 1 implementation
            structurer: Stage 2 implementation
            tolerance: Allowed gap between summed line totals and the total
            strict_totals: Reject receipts whose totals do not reconcile
            normalize: Downscale and recompress images before transcription
        """
        self.transcriber = transcriber
        self.structurer = structurer
        self.tolerance = tolerance
        self.strict_totals = strict_totals
        self.normalize = normalize

    async def scan(self, image: ReceiptImage | None) -> ScanResult:
        """
        Scan a receipt image into a validated StructuredReceipt.

        Raises:
            MalformedInputError: If no image (or an empty one) was supplied
            ServiceUnavailableError: If the hosted model is overloaded at either stage
            ExtractionFailedError: If a stage produced no usable output
        """
        if image is None or not image.data:
            raise MalformedInputError("No receipt image supplied")
        if not image.mime_type.startswith("image/"):
            raise MalformedInputError(
                f"Unsupported receipt MIME type: {image.mime_type}"
            )

        start_time = time.time()
        if self.normalize:
            image = normalize_image(image)

        raw_text = await self._transcribe(image)
        receipt = await self._structure(raw_text)

        reconciliation = reconcile_totals(receipt, self.tolerance)
        if not reconciliation.within_tolerance:
            logger.warning(
                "Line items sum to %.2f but receipt total is %.2f (difference %.2f)",
                reconciliation.items_total,
                reconciliation.stated_total,
                reconciliation.difference,
            )
            if self.strict_totals:
                raise ExtractionFailedError(
                    STAGE_STRUCTURE,
                    f"line items sum to {reconciliation.items_total:.2f} "
                    f"but the receipt total is {reconciliation.stated_total:.2f}",
                )

        processing_time = time.time() - start_time
        logger.info(
            "Scanned receipt from %s: %d items, total %.2f in %.2fs",
            receipt.store_name,
            len(receipt.items),
            receipt.total,
            processing_time,
        )
        return ScanResult(
            receipt=receipt,
            reconciliation=reconciliation,
            processing_time=processing_time,
        )

    async def _transcribe(self, image: ReceiptImage) -> str:
        logger.debug(
            "Transcribing %s image (%d bytes)", image.mime_type, len(image.data)
        )
        raw_text = await run_classified(
            STAGE_TRANSCRIBE, self.transcriber.transcribe(image)
        )

        if not raw_text or not raw_text.strip():
            logger.error("Receipt transcription produced no content")
            raise ExtractionFailedError(STAGE_TRANSCRIBE, "no content produced")
        return raw_text

    async def _structure(self, raw_text: str) -> StructuredReceipt:
        logger.debug("Structuring %d characters of receipt text", len(raw_text))
        return await run_classified(
            STAGE_STRUCTURE, self.structurer.structure(raw_text)
        )


async def scan_receipt(
    image: ReceiptImage | None, scanner: ReceiptScanner
) -> StructuredReceipt:
    """Scan ``image`` and return only the structured receipt."""
    result = await scanner.scan(image)
    return result.receipt
