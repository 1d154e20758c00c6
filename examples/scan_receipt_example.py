"""Example usage of the two-stage receipt scanner.

Scans a receipt image into line items, then structures a piece of receipt
text directly with the Stage 2 structurer.

    uv run python examples/scan_receipt_example.py path/to/receipt.jpg
"""

import asyncio
import sys

from dotenv import load_dotenv

from spendscan.config import Settings, build_scanner
from spendscan.errors import ExtractionError
from spendscan.integrations import AnthropicStructurer
from spendscan.models import ReceiptImage
from spendscan.pipeline import scan_receipt

load_dotenv()

RECEIPT_TEXT = """
FRESH GROCER
Milk              3.20
Eggs 2 @ 2.50     5.00
Bread             2.80
TOTAL            11.00
"""


async def main(image_path: str | None):
    settings = Settings.from_env()

    if image_path:
        try:
            receipt = await scan_receipt(
                ReceiptImage.from_path(image_path), build_scanner(settings)
            )
        except ExtractionError as e:
            print(f"Error during scan: {e}")
            return
        print(f"Store: {receipt.store_name}")
        print(f"Total: {receipt.total:.2f}")
        for item in receipt.items:
            print(f"  - {item.name}: {item.total_item_price:.2f}")

    # Stage 2 on its own, e.g. for text transcribed elsewhere
    structurer = AnthropicStructurer(api_key=settings.require_api_key())
    receipt = await structurer.structure(RECEIPT_TEXT)
    print(receipt.model_dump_json(by_alias=True, indent=2))


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
