"""Data models for receipt scanning and the companion expense flows."""

import mimetypes
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from spendscan.errors import MalformedInputError
from spendscan.utils.data_uri import DataURIError, build_data_uri, parse_data_uri

UNCATEGORIZED = "Uncategorized"


class WireModel(BaseModel):
    """Base for models exchanged with the hosted model in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReceiptImage(BaseModel):
    """Inline image payload for a single scan attempt. Never persisted."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    mime_type: str = "image/jpeg"

    @classmethod
    def from_data_uri(cls, uri: str) -> "ReceiptImage":
        try:
            mime_type, data = parse_data_uri(uri)
        except DataURIError as e:
            raise MalformedInputError(f"Invalid receipt image: {e}") from e
        return cls._checked(data, mime_type)

    @classmethod
    def from_path(cls, path: str | Path) -> "ReceiptImage":
        path = Path(path)
        if not path.exists() or not path.is_file():
            raise FileNotFoundError(f"Image file not found: {path}")
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls._checked(path.read_bytes(), mime_type or "image/jpeg")

    @classmethod
    def _checked(cls, data: bytes, mime_type: str) -> "ReceiptImage":
        if not data:
            raise MalformedInputError("Receipt image is empty")
        if not mime_type.startswith("image/"):
            raise MalformedInputError(f"Unsupported receipt MIME type: {mime_type}")
        return cls(data=data, mime_type=mime_type)

    def to_data_uri(self) -> str:
        return build_data_uri(self.mime_type, self.data)


class RawReceiptContent(WireModel):
    """Stage 1 output: the receipt transcribed to unstructured text."""

    raw_content: str = Field(
        description=(
            "The raw textual content extracted from the receipt, preserving its "
            "apparent structure, itemization, and any visible column headers like "
            "'Qty', 'Price', 'Amount'."
        )
    )


class LineItem(WireModel):
    """One entry in the structured receipt's item list."""

    name: str = Field(description="The name of the item.")
    quantity: float = Field(
        default=1.0,
        gt=0,
        description="The quantity of this item. If not specified or unclear, assume 1.",
    )
    unit_price: float = Field(description="The price of a single unit of the item.")
    total_item_price: float = Field(
        description="The total price for this line item (unitPrice * quantity)."
    )
    brand: str = Field(
        default="",
        description="The brand of the item, or an empty string if not identifiable.",
    )
    category: str = Field(
        default=UNCATEGORIZED,
        description=(
            "The category of the item (e.g., Food, Drink, Household). "
            'Use "Uncategorized" if unsure.'
        ),
    )


class StructuredReceipt(WireModel):
    """Stage 2 output and the final result of a scan."""

    store_name: str = Field(description="The name of the store.")
    items: list[LineItem] = Field(
        default_factory=list, description="A list of items found on the receipt."
    )
    total: float = Field(ge=0, description="The total amount on the receipt.")

    def items_total(self) -> float:
        return sum(item.total_item_price for item in self.items)


class ReconciliationReport(BaseModel):
    """Result of comparing the summed line totals with the stated total."""

    items_total: float
    stated_total: float
    difference: float
    tolerance: float
    within_tolerance: bool


class ScanResult(BaseModel):
    """Wrapper for a scanned receipt with metadata."""

    receipt: StructuredReceipt
    reconciliation: ReconciliationReport
    processing_time: float  # in seconds
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Expense(BaseModel):
    """A single expense record as stored by the caller."""

    user_id: str
    name: str
    price: float
    category: str = UNCATEGORIZED
    date: str  # YYYY-MM-DD format
    store_name: str | None = None
    brand: str = ""


class SpendingReport(BaseModel):
    """Spending totals over a set of expenses."""

    total: float = 0.0
    expense_count: int = 0
    by_category: dict[str, float] = Field(default_factory=dict)
    by_month: dict[str, float] = Field(default_factory=dict)  # "YYYY-MM" keys


class ItemCategory(WireModel):
    item: str = Field(description="The item purchased.")
    category: str = Field(description="The category of the item.")


class CategorizeExpenseOutput(WireModel):
    categories: list[ItemCategory] = Field(
        description="The categories of the items on the receipt."
    )


class ShoppingSuggestions(WireModel):
    suggested_items: list[str] = Field(
        description="An array of items to add to the shopping list."
    )


class ExpenseHistoryItem(WireModel):
    """A past purchase used to find the best price for a requested item."""

    name: str
    price: float
    brand: str | None = None
    store_name: str | None = None


class ShoppingListItem(WireModel):
    name: str = Field(description="The name of the item to add to the shopping list.")
    price: float | None = Field(
        default=None, description="The price of the item, if found in history."
    )
    brand: str | None = Field(
        default=None, description="The brand of the item, if found in history."
    )
    store_name: str | None = Field(
        default=None, description="The store name for the item, if found in history."
    )
    notes: str | None = Field(
        default=None,
        description='Relevant notes, e.g. "Cheapest: $2.99 at SuperMart (BrandX)".',
    )


class ShoppingRequestOutput(WireModel):
    items_to_add: list[ShoppingListItem] = Field(
        description="Items to add to the shopping list for the user's request."
    )
