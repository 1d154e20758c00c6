"""Local CSV ledger for expense records."""

import csv
import fcntl
import logging
import os
from datetime import date
from pathlib import Path

from spendscan.models import UNCATEGORIZED, Expense, ExpenseHistoryItem

logger = logging.getLogger(__name__)

CSV_HEADER = ["user_id", "date", "store_name", "name", "brand", "category", "price"]


def expense_to_row(expense: Expense) -> list[str | float]:
    """Convert an Expense to a CSV row in ``CSV_HEADER`` order."""
    return [
        expense.user_id,
        expense.date,
        expense.store_name or "",
        expense.name,
        expense.brand,
        expense.category,
        expense.price,
    ]


class LocalExporter:
    """Exporter for appending expense records to a local CSV file."""

    def export(self, expenses: list[Expense], path: Path) -> None:
        """Export expenses to a local CSV file.

        If the file doesn't exist, it will be created with headers.
        If the file exists, data will be appended to it.

        Args:
            expenses: List of Expense objects to export
            path: Path to the CSV file to write/append to

        Raises:
            PermissionError: If the file cannot be written due to permissions
            OSError: If there are filesystem-related errors
        """
        if not expenses:
            return

        path.parent.mkdir(parents=True, exist_ok=True)

        # BOM is written by hand on creation so appends never repeat it
        with open(path, mode="a", encoding="utf-8", newline="") as f:
            # Exclusive lock so concurrent scans cannot interleave rows
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                # Size is checked after acquiring the lock
                is_new_file = os.fstat(f.fileno()).st_size == 0

                if is_new_file:
                    f.write("\ufeff")  # UTF-8 BOM for Excel

                writer = csv.writer(f)
                if is_new_file:
                    writer.writerow(CSV_HEADER)

                for expense in expenses:
                    writer.writerow(expense_to_row(expense))
            finally:
                f.flush()
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

        logger.info("Exported %d expenses to %s", len(expenses), path)


def load_expenses(path: Path) -> list[Expense]:
    """Read a ledger written by LocalExporter back as expense records.

    A missing ledger means no expenses yet. Rows with an unreadable price or
    date are skipped with a warning.
    """
    if not path.exists():
        return []

    expenses = []
    with open(path, encoding="utf-8-sig", newline="") as f:
        for line_no, row in enumerate(csv.DictReader(f), start=2):
            try:
                price = float(row["price"])
                day = date.fromisoformat(row["date"] or "").isoformat()
            except (KeyError, TypeError, ValueError):
                logger.warning(
                    "Skipping ledger row %d with invalid price or date", line_no
                )
                continue
            expenses.append(
                Expense(
                    user_id=row.get("user_id") or "",
                    name=row.get("name") or "",
                    price=price,
                    category=row.get("category") or UNCATEGORIZED,
                    date=day,
                    store_name=row.get("store_name") or None,
                    brand=row.get("brand") or "",
                )
            )
    return expenses


def load_expense_history(path: Path) -> list[ExpenseHistoryItem]:
    """Read the ledger as purchase history for the shopping-request flow."""
    return [
        ExpenseHistoryItem(
            name=expense.name,
            price=expense.price,
            brand=expense.brand or None,
            store_name=expense.store_name,
        )
        for expense in load_expenses(path)
    ]
