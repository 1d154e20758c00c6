from datetime import date

from spendscan.models import UNCATEGORIZED, Expense, StructuredReceipt


def expenses_from_receipt(
    receipt: StructuredReceipt, user_id: str, today: date | None = None
) -> list[Expense]:
    """Map each line item of a confirmed receipt to its own expense record.

    Every expense is tagged with the acting user, the receipt's store and the
    current date. The line total is used as the price, so multi-unit lines are
    recorded at what was actually paid.
    """
    day = (today or date.today()).isoformat()
    return [
        Expense(
            user_id=user_id,
            name=item.name,
            price=item.total_item_price,
            category=item.category or UNCATEGORIZED,
            date=day,
            store_name=receipt.store_name,
            brand=item.brand or "",
        )
        for item in receipt.items
    ]
