import csv
import io
import json
import logging
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest
from PIL import Image
from tenacity import wait_none
from typer.testing import CliRunner

from spendscan.integrations.anthropic_assistant import AnthropicCategorizer
from spendscan.integrations.base import Structurer, Transcriber
from spendscan.main import app
from spendscan.models import (
    CategorizeExpenseOutput,
    ItemCategory,
    LineItem,
    ShoppingListItem,
    StructuredReceipt,
)
from spendscan.pipeline import ReceiptScanner
from tests.utils import clean_cli_output

pytestmark = pytest.mark.unit

runner = CliRunner()

GROCERY_TEXT = (
    "FRESH GROCER\nMilk $3.20\nEggs 2 @ $2.50 $5.00\nBread $2.80\nTOTAL $11.00"
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test-key-12345")
    monkeypatch.setenv("SPENDSCAN_CATEGORY_CACHE", str(tmp_path / "categories.json"))
    monkeypatch.delenv("SPENDSCAN_STRICT_TOTALS", raising=False)
    monkeypatch.delenv("SPENDSCAN_TRANSCRIBER", raising=False)
    yield
    logging.getLogger("spendscan").handlers.clear()


@pytest.fixture
def receipt_path(tmp_path):
    path = tmp_path / "receipt.png"
    buf = io.BytesIO()
    Image.new("RGB", (200, 400), color="white").save(buf, format="PNG")
    path.write_bytes(buf.getvalue())
    return path


@pytest.fixture
def grocery_receipt():
    return StructuredReceipt(
        store_name="FRESH GROCER",
        total=11.00,
        items=[
            LineItem(name="Milk", unit_price=3.20, total_item_price=3.20),
            LineItem(
                name="Eggs",
                quantity=2,
                unit_price=2.50,
                total_item_price=5.00,
                brand="Farm Co",
                category="Food",
            ),
            LineItem(name="Bread", unit_price=2.80, total_item_price=2.80),
        ],
    )


def _scanner(receipt, transcribe_side_effect=None, **kwargs) -> ReceiptScanner:
    transcriber = Mock(spec=Transcriber)
    transcriber.transcribe = AsyncMock(
        return_value=GROCERY_TEXT, side_effect=transcribe_side_effect
    )
    structurer = Mock(spec=Structurer)
    structurer.structure = AsyncMock(return_value=receipt)
    return ReceiptScanner(transcriber, structurer, normalize=False, **kwargs)


def test_commands_listed_in_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    clean_stdout = clean_cli_output(result.stdout.lower())
    for command in ("scan", "categorize", "suggest", "shop", "report"):
        assert command in clean_stdout


def test_scan_missing_image(tmp_path):
    result = runner.invoke(app, ["scan", str(tmp_path / "nope.jpg")])
    assert result.exit_code == 1
    assert "Imagefilenotfound" in clean_cli_output(result.output)


def test_scan_empty_image(tmp_path):
    empty = tmp_path / "empty.jpg"
    empty.write_bytes(b"")
    result = runner.invoke(app, ["scan", str(empty)])
    assert result.exit_code == 1
    assert "Receiptimageisempty" in clean_cli_output(result.output)


def test_scan_prints_receipt(receipt_path, grocery_receipt):
    with patch(
        "spendscan.main.build_scanner", return_value=_scanner(grocery_receipt)
    ):
        result = runner.invoke(app, ["scan", str(receipt_path)])

    assert result.exit_code == 0, result.output
    assert "Store: FRESH GROCER" in result.stdout
    assert "Total: 11.00" in result.stdout
    assert "  - Eggs [Farm Co]: 2 x 2.50 = 5.00 (Food)" in result.stdout
    assert "  - Milk: 1 x 3.20 = 3.20 (Uncategorized)" in result.stdout
    assert "Warning" not in result.output


def test_scan_json_uses_camel_case(receipt_path, grocery_receipt):
    with patch(
        "spendscan.main.build_scanner", return_value=_scanner(grocery_receipt)
    ):
        result = runner.invoke(app, ["scan", str(receipt_path), "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["storeName"] == "FRESH GROCER"
    assert payload["items"][1]["totalItemPrice"] == 5.0
    assert payload["items"][1]["unitPrice"] == 2.5


def test_scan_warns_on_mismatched_totals(receipt_path, grocery_receipt):
    receipt = grocery_receipt.model_copy(update={"total": 12.50})
    with patch("spendscan.main.build_scanner", return_value=_scanner(receipt)):
        result = runner.invoke(app, ["scan", str(receipt_path)])

    assert result.exit_code == 0
    assert "Warning:itemsaddupto11.00,receipttotalis12.50" in clean_cli_output(
        result.output
    )


def test_scan_strict_totals_flag(receipt_path, grocery_receipt):
    receipt = grocery_receipt.model_copy(update={"total": 12.50})
    with patch("spendscan.main.build_scanner") as mock_build:
        mock_build.side_effect = lambda settings, normalize: _scanner(
            receipt, strict_totals=settings.strict_totals
        )
        result = runner.invoke(app, ["scan", str(receipt_path), "--strict-totals"])

    assert result.exit_code == 1
    assert mock_build.call_args.args[0].strict_totals is True
    assert "Scanfailed:AIprocessingfailedduringthestructurestage" in (
        clean_cli_output(result.output)
    )


def test_scan_no_normalize_flag(receipt_path, grocery_receipt):
    with patch(
        "spendscan.main.build_scanner", return_value=_scanner(grocery_receipt)
    ) as mock_build:
        result = runner.invoke(app, ["scan", str(receipt_path), "--no-normalize"])

    assert result.exit_code == 0
    assert mock_build.call_args.kwargs["normalize"] is False


def test_scan_service_unavailable(receipt_path, grocery_receipt):
    scanner = _scanner(grocery_receipt, transcribe_side_effect=RuntimeError("503"))
    with patch("spendscan.main.build_scanner", return_value=scanner):
        result = runner.invoke(app, ["scan", str(receipt_path)])

    assert result.exit_code == 1
    assert "currentlyoverloadedorunavailable" in clean_cli_output(result.output)
    assert scanner.transcriber.transcribe.await_count == 1


def test_scan_retries_when_unavailable(receipt_path, grocery_receipt):
    scanner = _scanner(
        grocery_receipt,
        transcribe_side_effect=[RuntimeError("Overloaded"), GROCERY_TEXT],
    )
    with (
        patch("spendscan.main.build_scanner", return_value=scanner),
        patch("spendscan.main.RETRY_WAIT", wait_none()),
    ):
        result = runner.invoke(app, ["scan", str(receipt_path), "--retries", "2"])

    assert result.exit_code == 0, result.output
    assert "Store: FRESH GROCER" in result.stdout
    assert scanner.transcriber.transcribe.await_count == 2


def test_scan_does_not_retry_extraction_failures(receipt_path, grocery_receipt):
    scanner = _scanner(grocery_receipt, transcribe_side_effect=RuntimeError("bad"))
    with (
        patch("spendscan.main.build_scanner", return_value=scanner),
        patch("spendscan.main.RETRY_WAIT", wait_none()),
    ):
        result = runner.invoke(app, ["scan", str(receipt_path), "-r", "3"])

    assert result.exit_code == 1
    assert scanner.transcriber.transcribe.await_count == 1


def test_scan_without_api_key(receipt_path, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    result = runner.invoke(app, ["scan", str(receipt_path)])
    assert result.exit_code == 1
    assert "Failedtoinitializescanner:ANTHROPIC_API_KEYisnotset" in (
        clean_cli_output(result.output)
    )


def test_scan_export_appends_to_ledger(receipt_path, grocery_receipt, tmp_path):
    ledger = tmp_path / "expenses.csv"
    with patch(
        "spendscan.main.build_scanner", return_value=_scanner(grocery_receipt)
    ):
        result = runner.invoke(
            app,
            ["scan", str(receipt_path), "-e", str(ledger), "-y", "-u", "alice"],
        )

    assert result.exit_code == 0, result.output
    assert f"Added 3 expenses to {ledger}" in result.stdout
    with open(ledger, encoding="utf-8-sig", newline="") as f:
        rows = list(csv.DictReader(f))
    assert [row["name"] for row in rows] == ["Milk", "Eggs", "Bread"]
    assert {row["user_id"] for row in rows} == {"alice"}
    assert float(rows[1]["price"]) == 5.0


def test_scan_export_declined(receipt_path, grocery_receipt, tmp_path):
    ledger = tmp_path / "expenses.csv"
    with patch(
        "spendscan.main.build_scanner", return_value=_scanner(grocery_receipt)
    ):
        result = runner.invoke(
            app, ["scan", str(receipt_path), "--export", str(ledger)], input="n\n"
        )

    assert result.exit_code == 0
    assert "Export cancelled." in result.stdout
    assert not ledger.exists()


def test_scan_export_empty_receipt(receipt_path, tmp_path):
    receipt = StructuredReceipt(store_name="Nowhere", total=0, items=[])
    ledger = tmp_path / "expenses.csv"
    with patch("spendscan.main.build_scanner", return_value=_scanner(receipt)):
        result = runner.invoke(app, ["scan", str(receipt_path), "-e", str(ledger)])

    assert result.exit_code == 0
    assert "No line items to export." in result.stdout
    assert not ledger.exists()


def test_categorize_uses_model_then_cache(tmp_path):
    categorizer = MagicMock(spec=AnthropicCategorizer)
    categorizer.categorize = AsyncMock(
        return_value=CategorizeExpenseOutput(
            categories=[ItemCategory(item="Bus ticket", category="Transportation")]
        )
    )
    with patch("spendscan.main.build_categorizer", return_value=categorizer):
        first = runner.invoke(app, ["categorize", "Bus ticket"])
        second = runner.invoke(app, ["categorize", "bus TICKET"])

    assert first.exit_code == 0
    assert first.stdout.strip() == "Transportation"
    assert second.stdout.strip() == "Transportation"
    categorizer.categorize.assert_awaited_once()
    cache = json.loads((tmp_path / "categories.json").read_text(encoding="utf-8"))
    assert cache == {"bus ticket": "Transportation"}


def test_categorize_no_suggestion():
    categorizer = MagicMock(spec=AnthropicCategorizer)
    categorizer.categorize = AsyncMock(
        return_value=CategorizeExpenseOutput(categories=[])
    )
    with patch("spendscan.main.build_categorizer", return_value=categorizer):
        result = runner.invoke(app, ["categorize", "???"])

    assert result.exit_code == 0
    assert "No category suggested." in result.stdout


def test_suggest_prints_items():
    assistant = MagicMock()
    assistant.suggest_items = AsyncMock(return_value=["Butter", "Jam"])
    with patch("spendscan.main.build_shopping_assistant", return_value=assistant):
        result = runner.invoke(app, ["suggest", "Bread", "Milk", "-n", "2"])

    assert result.exit_code == 0
    assert result.stdout.splitlines() == ["- Butter", "- Jam"]
    assistant.suggest_items.assert_awaited_once_with(["Bread", "Milk"], 2)


def test_shop_reads_history(tmp_path):
    ledger = tmp_path / "expenses.csv"
    ledger.write_text(
        "user_id,date,store_name,name,brand,category,price\n"
        "local,2026-01-02,SuperMart,Eggs,,Food,4.49\n",
        encoding="utf-8",
    )
    assistant = MagicMock()
    assistant.process_request = AsyncMock(
        return_value=[
            ShoppingListItem(
                name="Eggs", price=4.49, store_name="SuperMart", notes="Cheapest"
            ),
            ShoppingListItem(name="Milk", notes="No price history found."),
        ]
    )
    with patch("spendscan.main.build_shopping_assistant", return_value=assistant):
        result = runner.invoke(app, ["shop", "eggs and milk", "-H", str(ledger)])

    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == [
        "- Eggs 4.49 at SuperMart (Cheapest)",
        "- Milk (No price history found.)",
    ]
    history = assistant.process_request.call_args.args[1]
    assert history[0].name == "Eggs"
    assert history[0].store_name == "SuperMart"


def test_shop_requires_history():
    result = runner.invoke(app, ["shop", "eggs"])
    assert result.exit_code != 0
    assert "history" in clean_cli_output(result.output)


def test_report_summarizes_ledger(tmp_path):
    ledger = tmp_path / "expenses.csv"
    ledger.write_text(
        "user_id,date,store_name,name,brand,category,price\n"
        "local,2024-06-28,Power Co,Electricity Bill,,Utilities,120.00\n"
        "local,2024-07-12,SuperMart,Groceries,,Food,75.50\n"
        "local,2024-07-15,Cafe,Coffee,,Food,5.00\n",
        encoding="utf-8",
    )

    result = runner.invoke(app, ["report", "--history", str(ledger)])

    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == [
        "Total: 200.50 (3 expenses)",
        "By category:",
        "  Utilities: 120.00",
        "  Food: 80.50",
        "By month:",
        "  2024-06: 120.00",
        "  2024-07: 80.50",
    ]


def test_report_empty_ledger(tmp_path):
    result = runner.invoke(app, ["report", "-H", str(tmp_path / "missing.csv")])

    assert result.exit_code == 0
    assert "No expenses recorded." in result.stdout
