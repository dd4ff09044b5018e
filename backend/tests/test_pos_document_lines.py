from datetime import datetime, timezone

from backend.app.fiscal.lines import build_invoice_lines, build_receipt_lines, format_datetime, truncate
from backend.app.fiscal.seller_settings import snapshot_from_row

SELLER = snapshot_from_row(
    {
        "tax": {"steuernummer": "12/345/67890", "ust_id": "DE123456789"},
        "receipt_footer_lines": ["Vielen Dank fuer Ihren Einkauf."],
    }
)
ITEMS = [{"title_snapshot": "Print", "qty": 2, "unit_gross_cents": 1190, "vat_rate": 19}]
TOTALS = {"gross_cents": 2380, "net_cents": 2000, "vat_cents": 380}
WHEN = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)


def _receipt(**overrides):
    kwargs = dict(
        seller=SELLER,
        tx_id="tx-1",
        receipt_no="R-2025-000001",
        created_at=WHEN,
        items=ITEMS,
        totals=TOTALS,
        payment_method="card",
    )
    kwargs.update(overrides)
    return build_receipt_lines(**kwargs)


def test_receipt_lines_contain_document_sections():
    lines = _receipt(location_name="Gallery Mitte", terminal_label="T1")
    assert lines[:3] == ["==== RECEIPT ====", "ARTCLUB", "Receipt (Beleg)"]
    assert "Receipt number: R-2025-000001" in lines
    assert "Date/Time: 2025-03-14 12:00:00 UTC" in lines
    assert "Location: Gallery Mitte" in lines
    assert "Terminal: T1" in lines
    assert "2 x Print | unit EUR 11.90 | VAT 19% | total EUR 23.80" in lines
    assert "VAT 19%: net EUR 20.00 | VAT EUR 3.80 | gross EUR 23.80" in lines
    assert "Gross total: EUR 23.80" in lines
    assert "Payment method: card" in lines
    assert "Steuernummer: 12/345/67890" in lines
    assert "USt-IdNr.: DE123456789" in lines
    assert "TSE: not signed" in lines
    assert "Vielen Dank fuer Ihren Einkauf." in lines


def test_receipt_omits_buyer_section_for_anonymous_sale():
    assert "==== BUYER ====" not in _receipt()
    lines = _receipt(buyer={"type": "b2c", "name": "Jane Doe", "email": ""})
    assert "==== BUYER ====" in lines
    assert "Name: Jane Doe" in lines
    assert [line for line in lines if line.startswith("Email:")] == ["Email: support@artclub.wtf"]


def test_receipt_lines_are_deterministic():
    assert _receipt() == _receipt()


def test_tse_block_truncates_long_signature():
    tse = {
        "provider": "fiskaly",
        "tx_id": "tse-42",
        "serial": "SER-1",
        "signature": "A" * 500,
        "signature_counter": 0,
        "log_time": "2025-03-14T12:00:01Z",
    }
    lines = _receipt(tse=tse)
    assert "Signature: " + "A" * 180 + "..." in lines
    assert "Signature counter: 0" in lines
    assert "Log time: 2025-03-14 12:00:01 UTC" in lines
    assert "TSE: not signed" not in lines


def test_invoice_lines_include_buyer_and_line_items():
    lines = build_invoice_lines(
        seller=SELLER,
        tx_id="tx-1",
        invoice_no="I-2025-000001",
        created_at=WHEN,
        items=ITEMS,
        totals=TOTALS,
        buyer={"type": "b2b", "name": "Jane Doe", "company": "Acme GmbH", "billing_address": "Street 1"},
    )
    assert lines[0] == "==== INVOICE ===="
    assert "Invoice number: I-2025-000001" in lines
    assert "Related transaction: tx-1" in lines
    assert "Company: Acme GmbH" in lines
    assert "Billing address: Street 1" in lines
    assert "Buyer type: b2b" in lines
    assert "==== LINE ITEMS ====" in lines


def test_format_datetime_and_truncate():
    assert format_datetime(None) == "-"
    assert format_datetime("not a date") == "not a date"
    assert format_datetime(datetime(2025, 1, 2, 3, 4, 5)) == "2025-01-02 03:04:05 UTC"
    assert truncate("abc", 5) == "abc"
    assert truncate("abcdef", 3) == "abc..."
