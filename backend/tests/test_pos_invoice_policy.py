import pytest

from backend.app.config import settings
from backend.app.fiscal.policy import (
    InvoicePolicy,
    has_required_invoice_buyer_data,
    invoice_buyer_data,
    normalize_buyer_type,
    should_issue_invoice,
)


@pytest.mark.parametrize(
    "buyer_type,gross,expected",
    [
        ("b2b", 19_999, False),
        ("b2b", 20_000, True),
        ("b2c", 99_999, False),
        ("b2c", 100_000, True),
        ("B2B ", 25_000, True),
        (None, 5_000_000, False),
        ("anonymous", 5_000_000, False),
    ],
)
def test_should_issue_invoice_thresholds_are_inclusive(buyer_type, gross, expected):
    assert should_issue_invoice(buyer_type, gross, InvoicePolicy()) is expected


def test_custom_policy_overrides_thresholds():
    policy = InvoicePolicy(b2b_threshold_cents=0, b2c_threshold_cents=500)
    assert should_issue_invoice("b2b", 0, policy) is True
    assert should_issue_invoice("b2c", 499, policy) is False
    assert should_issue_invoice("b2c", 500, policy) is True


def test_policy_from_settings(monkeypatch):
    monkeypatch.setattr(settings, "invoice_b2b_threshold_cents", 5_000)
    monkeypatch.setattr(settings, "invoice_b2c_threshold_cents", 7_500)
    assert InvoicePolicy.from_settings() == InvoicePolicy(b2b_threshold_cents=5_000, b2c_threshold_cents=7_500)
    assert should_issue_invoice("b2b", 5_000) is True
    assert should_issue_invoice("b2c", 7_499) is False


def test_normalize_buyer_type():
    assert normalize_buyer_type(" B2C ") == "b2c"
    assert normalize_buyer_type("") is None
    assert normalize_buyer_type("wholesale") is None


def test_invoice_buyer_data_trims_and_falls_back_to_shipping():
    data = invoice_buyer_data(
        {"type": "B2C", "name": "  Jane Doe ", "email": "", "shipping_address": " Hauptstr. 1, 10115 Berlin "}
    )
    assert data["type"] == "b2c"
    assert data["name"] == "Jane Doe"
    assert data["email"] is None
    assert data["billing_address"] == "Hauptstr. 1, 10115 Berlin"
    assert data["shipping_address"] == "Hauptstr. 1, 10115 Berlin"


def test_invoice_buyer_data_prefers_billing_address():
    data = invoice_buyer_data({"billing_address": "A", "shipping_address": "B"})
    assert data["billing_address"] == "A"
    assert invoice_buyer_data(None)["type"] is None


def test_required_buyer_data_b2c_needs_name_and_address():
    assert has_required_invoice_buyer_data(buyer_type="b2c", name="Jane", billing_address="Street 1") is True
    assert has_required_invoice_buyer_data(buyer_type="b2c", name="   ", billing_address="Street 1") is False
    assert has_required_invoice_buyer_data(buyer_type="b2c", name="Jane", billing_address=None) is False


def test_required_buyer_data_b2b_also_needs_company():
    assert has_required_invoice_buyer_data(buyer_type="b2b", name="Jane", billing_address="Street 1") is False
    assert (
        has_required_invoice_buyer_data(buyer_type="b2b", name="Jane", billing_address="Street 1", company="Acme GmbH")
        is True
    )
