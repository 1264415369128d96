"""Price rule and catalog quotes."""
import pytest

from app.core.errors import ValidationFailure
from app.services.pricing.service import (
    calculate_discount_amount,
    calculate_final_amount,
    list_category_quotes,
    quote,
    quote_chat,
    quote_credit,
    quote_document,
    unit_minutes,
)


@pytest.mark.parametrize(
    "base, rate, expected",
    [
        (15000, 33, 10000),  # 10050 rounds down to the hundred
        (30000, 33, 20100),
        (5000, 50, 2500),
        (18000, 33, 12000),
        (8000, 38, 4900),
        (5000, 0, 5000),
        (5000, 100, 0),
    ],
)
def test_calculate_final_amount(base, rate, expected):
    assert calculate_final_amount(base, rate) == expected


def test_discount_amount_is_complement():
    assert calculate_discount_amount(15000, 33) == 5000


def test_invalid_discount_rate():
    with pytest.raises(ValidationFailure):
        calculate_final_amount(1000, 120)


def test_document_quote_for_saju():
    q = quote_document("saju")
    assert q.category == "SAJU"
    assert q.base_amount == 15000
    assert q.discount_rate == 33
    assert q.amount == 10000
    assert q.order_metadata()["product_type"] == "document"


def test_chat_quote_uses_unit_price_without_category_rate():
    q = quote_chat("LOVE", 10)
    assert q.amount == 1800
    assert q.order_metadata()["duration_minutes"] == 10


def test_chat_quote_uses_category_rate_and_discount():
    assert quote_chat("DREAM", 10).amount == 4900
    assert quote_chat("DREAM", 5).amount == 4000


def test_chat_duration_must_be_allowed():
    with pytest.raises(ValidationFailure) as exc:
        quote_chat("LOVE", 7)
    assert exc.value.code == "INVALID_DURATION"


def test_credit_units():
    assert unit_minutes("MINUTES_30") == 30
    assert quote_credit("MINUTES_5").amount == 1000
    with pytest.raises(ValidationFailure) as exc:
        unit_minutes("FREE")
    assert exc.value.code == "INVALID_UNIT"


def test_unknown_category_and_product():
    with pytest.raises(ValidationFailure):
        quote_document("ASTROLOGY")
    with pytest.raises(ValidationFailure):
        quote("subscription")


def test_category_listing_covers_every_duration():
    quotes = list_category_quotes("TAROT")
    assert [q.product_type for q in quotes] == ["document", "chat", "chat", "chat"]
    assert [q.duration_minutes for q in quotes[1:]] == [5, 10, 30]
