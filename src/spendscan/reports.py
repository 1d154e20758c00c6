"""Category and monthly spending summaries over recorded expenses."""

from collections import defaultdict

from spendscan.models import UNCATEGORIZED, Expense, SpendingReport


def spending_report(expenses: list[Expense]) -> SpendingReport:
    """
    Sum expense prices per category and per calendar month.

    Categories are ordered by amount spent (largest first), months
    chronologically. Amounts are rounded to cents.
    """
    by_category: dict[str, float] = defaultdict(float)
    by_month: dict[str, float] = defaultdict(float)
    for expense in expenses:
        by_category[expense.category or UNCATEGORIZED] += expense.price
        # Dates are stored as YYYY-MM-DD
        by_month[expense.date[:7]] += expense.price

    return SpendingReport(
        total=round(sum(expense.price for expense in expenses), 2),
        expense_count=len(expenses),
        by_category={
            category: round(amount, 2)
            for category, amount in sorted(
                by_category.items(), key=lambda kv: (-kv[1], kv[0])
            )
        },
        by_month={month: round(by_month[month], 2) for month in sorted(by_month)},
    )
