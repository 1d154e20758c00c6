import asyncio
from pathlib import Path

import typer
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from spendscan.config import (
    Settings,
    build_categorizer,
    build_scanner,
    build_shopping_assistant,
)
from spendscan.errors import (
    ExtractionError,
    MalformedInputError,
    ServiceUnavailableError,
)
from spendscan.expenses import expenses_from_receipt
from spendscan.integrations.anthropic_assistant import CategorySuggester
from spendscan.integrations.local_export import (
    LocalExporter,
    load_expense_history,
    load_expenses,
)
from spendscan.logging_config import setup_logging
from spendscan.models import ReceiptImage, ScanResult
from spendscan.pipeline import ReceiptScanner
from spendscan.reports import spending_report
from spendscan.utils.category_cache import CategoryCache

app = typer.Typer(no_args_is_help=True)

RETRY_WAIT = wait_exponential(multiplier=1, min=1, max=10)


@app.callback(invoke_without_command=True)
def callback(ctx: typer.Context):
    """Spendscan CLI tool."""
    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_json)
    ctx.obj = settings
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def _fail(message: str) -> typer.Exit:
    typer.echo(message, err=True)
    return typer.Exit(code=1)


async def scan_with_retries(
    scanner: ReceiptScanner, image: ReceiptImage, retries: int = 0
) -> ScanResult:
    """Run a scan, retrying only when the hosted model reports it is unavailable.

    The pipeline never retries on its own; this is the CLI automating the
    "try again in a few moments" advice carried by ServiceUnavailableError.
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(ServiceUnavailableError),
        stop=stop_after_attempt(retries + 1),
        wait=RETRY_WAIT,
        reraise=True,
    )
    return await retrying(scanner.scan, image)


@app.command()
def scan(
    ctx: typer.Context,
    image: Path = typer.Argument(..., help="Path to the receipt image"),
    user_id: str = typer.Option(
        "local", "--user-id", "-u", help="User the expenses are recorded for"
    ),
    export: Path | None = typer.Option(
        None, "--export", "-e", help="CSV ledger to append the scanned expenses to"
    ),
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Export without asking for confirmation"
    ),
    as_json: bool = typer.Option(
        False, "--json", help="Print the receipt as camelCase JSON"
    ),
    retries: int = typer.Option(
        0,
        "--retries",
        "-r",
        min=0,
        help="Retry this many times if the AI service is unavailable",
    ),
    strict_totals: bool = typer.Option(
        False, "--strict-totals", help="Reject receipts whose items do not add up"
    ),
    no_normalize: bool = typer.Option(
        False, "--no-normalize", help="Send the image without resizing it"
    ),
):
    """Scan a receipt image into structured line items."""
    settings: Settings = ctx.obj
    if strict_totals:
        settings = settings.model_copy(update={"strict_totals": True})

    try:
        receipt_image = ReceiptImage.from_path(image)
    except (FileNotFoundError, MalformedInputError) as e:
        raise _fail(f"Error: {e}") from e

    try:
        scanner = build_scanner(settings, normalize=not no_normalize)
    except ValueError as e:
        raise _fail(f"Failed to initialize scanner: {e}") from e

    try:
        result = asyncio.run(scan_with_retries(scanner, receipt_image, retries))
    except ExtractionError as e:
        raise _fail(f"Scan failed: {e}") from e

    receipt = result.receipt
    if as_json:
        typer.echo(receipt.model_dump_json(by_alias=True, indent=2))
    else:
        typer.echo(f"Store: {receipt.store_name}")
        typer.echo(f"Total: {receipt.total:.2f}")
        typer.echo("Items:")
        for item in receipt.items:
            brand = f" [{item.brand}]" if item.brand else ""
            typer.echo(
                f"  - {item.name}{brand}: {item.quantity:g} x {item.unit_price:.2f}"
                f" = {item.total_item_price:.2f} ({item.category})"
            )

    reconciliation = result.reconciliation
    if not reconciliation.within_tolerance:
        typer.echo(
            f"Warning: items add up to {reconciliation.items_total:.2f}, "
            f"receipt total is {reconciliation.stated_total:.2f}",
            err=True,
        )

    if export is None:
        return

    expenses = expenses_from_receipt(receipt, user_id)
    if not expenses:
        typer.echo("No line items to export.")
        return
    if not yes and not typer.confirm(f"Add {len(expenses)} expenses to {export}?"):
        typer.echo("Export cancelled.")
        return

    try:
        LocalExporter().export(expenses, export)
    except OSError as e:
        raise _fail(f"Failed to write {export}: {e}") from e
    typer.echo(f"Added {len(expenses)} expenses to {export}")


@app.command()
def categorize(
    ctx: typer.Context,
    item: str = typer.Argument(..., help="Item name to categorize"),
):
    """Suggest a spending category for an item."""
    settings: Settings = ctx.obj
    try:
        suggester = CategorySuggester(
            build_categorizer(settings), CategoryCache(settings.category_cache)
        )
    except ValueError as e:
        raise _fail(f"Failed to initialize categorizer: {e}") from e

    try:
        category = asyncio.run(suggester.suggest(item))
    except ExtractionError as e:
        raise _fail(f"Categorization failed: {e}") from e

    typer.echo(category or "No category suggested.")


@app.command()
def suggest(
    ctx: typer.Context,
    purchases: list[str] = typer.Argument(..., help="Items purchased in the past"),
    count: int = typer.Option(
        3, "--count", "-n", min=1, help="Number of items to suggest"
    ),
):
    """Suggest shopping list items based on past purchases."""
    settings: Settings = ctx.obj
    try:
        assistant = build_shopping_assistant(settings)
    except ValueError as e:
        raise _fail(f"Failed to initialize assistant: {e}") from e

    try:
        items = asyncio.run(assistant.suggest_items(purchases, count))
    except ExtractionError as e:
        raise _fail(f"Suggestion failed: {e}") from e

    for item in items:
        typer.echo(f"- {item}")


@app.command()
def shop(
    ctx: typer.Context,
    request: str = typer.Argument(..., help='What you need, e.g. "eggs and milk"'),
    history: Path = typer.Option(
        ..., "--history", "-H", help="CSV ledger written by 'scan --export'"
    ),
):
    """Build shopping list items priced from your purchase history."""
    settings: Settings = ctx.obj
    try:
        assistant = build_shopping_assistant(settings)
    except ValueError as e:
        raise _fail(f"Failed to initialize assistant: {e}") from e

    expense_history = load_expense_history(history)
    try:
        items = asyncio.run(assistant.process_request(request, expense_history))
    except ExtractionError as e:
        raise _fail(f"Shopping request failed: {e}") from e

    for item in items:
        line = f"- {item.name}"
        if item.price is not None:
            line += f" {item.price:.2f}"
        if item.store_name:
            line += f" at {item.store_name}"
        if item.notes:
            line += f" ({item.notes})"
        typer.echo(line)


@app.command()
def report(
    history: Path = typer.Option(
        ..., "--history", "-H", help="CSV ledger written by 'scan --export'"
    ),
):
    """Summarize spending per category and per month."""
    summary = spending_report(load_expenses(history))
    if not summary.expense_count:
        typer.echo("No expenses recorded.")
        return

    typer.echo(f"Total: {summary.total:.2f} ({summary.expense_count} expenses)")
    typer.echo("By category:")
    for category, amount in summary.by_category.items():
        typer.echo(f"  {category}: {amount:.2f}")
    typer.echo("By month:")
    for month, amount in summary.by_month.items():
        typer.echo(f"  {month}: {amount:.2f}")


def main():
    app()


if __name__ == "__main__":
    main()
