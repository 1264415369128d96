"""
Pricing: turns (product type, category, duration/unit) into a Quote.

Discounts round DOWN to a multiple of 100 KRW:
    final = floor(base * (100 - rate) / 10000) * 100
so 15000 at 33% is 10000, not 10050.
"""
from __future__ import annotations

from pydantic import BaseModel

from app.core.config import settings
from app.core.errors import ValidationFailure
from app.services.pricing.catalog import (
    CATEGORIES,
    CATEGORY_TITLES,
    CHAT_DISCOUNTS,
    CHAT_PRICE_PER_MINUTE,
    CREDIT_UNIT_PRICES,
    CREDIT_UNITS,
    DOCUMENT_DISCOUNTS,
    DOCUMENT_PRICES,
    PRODUCT_CHAT,
    PRODUCT_CREDIT,
    PRODUCT_DOCUMENT,
    UNIT_FREE,
)


class Quote(BaseModel):
    """Price for one purchasable product."""

    product_type: str
    category: str | None = None
    duration_minutes: int | None = None
    unit: str | None = None
    base_amount: int
    discount_rate: int = 0
    amount: int
    currency: str = "KRW"
    name: str

    model_config = {"frozen": True}

    def order_metadata(self) -> dict:
        """Product description stored on Order.metadata."""
        meta = {"product_type": self.product_type, "base_amount": self.base_amount, "discount_rate": self.discount_rate}
        if self.category:
            meta["category"] = self.category
        if self.duration_minutes:
            meta["duration_minutes"] = self.duration_minutes
        if self.unit:
            meta["unit"] = self.unit
        return meta


def calculate_final_amount(base_amount: int, discount_rate: int) -> int:
    if not 0 <= discount_rate <= 100:
        raise ValidationFailure("discount rate must be between 0 and 100", code="INVALID_DISCOUNT")
    return (base_amount * (100 - discount_rate)) // 10000 * 100


def calculate_discount_amount(base_amount: int, discount_rate: int) -> int:
    return base_amount - calculate_final_amount(base_amount, discount_rate)


def validate_category(category: str) -> str:
    normalized = (category or "").upper()
    if normalized not in CATEGORIES:
        raise ValidationFailure(f"unknown category: {category}", code="INVALID_CATEGORY")
    return normalized


def validate_duration(duration_minutes: int | None) -> int:
    if duration_minutes not in settings.chat_durations_set:
        allowed = sorted(settings.chat_durations_set)
        raise ValidationFailure(
            f"duration must be one of {allowed}",
            code="INVALID_DURATION",
            detail={"allowed": allowed},
        )
    return duration_minutes


def unit_minutes(unit: str) -> int:
    """Minutes bought by a time-credit unit. FREE and unknown units are rejected."""
    if unit == UNIT_FREE:
        raise ValidationFailure("the free allowance cannot be purchased", code="INVALID_UNIT")
    minutes = CREDIT_UNITS.get(unit)
    if minutes is None:
        raise ValidationFailure(f"unknown unit: {unit}", code="INVALID_UNIT")
    return minutes


def unit_for_minutes(minutes: int) -> str:
    for unit, value in CREDIT_UNITS.items():
        if value == minutes:
            return unit
    raise ValidationFailure(f"no credit unit for {minutes} minutes", code="INVALID_DURATION")


def quote_document(category: str) -> Quote:
    category = validate_category(category)
    base = DOCUMENT_PRICES[category]
    rate = DOCUMENT_DISCOUNTS.get(category, 0)
    return Quote(
        product_type=PRODUCT_DOCUMENT,
        category=category,
        base_amount=base,
        discount_rate=rate,
        amount=calculate_final_amount(base, rate),
        currency=settings.payment_currency,
        name=f"{CATEGORY_TITLES[category]} (document)",
    )


def quote_chat(category: str, duration_minutes: int) -> Quote:
    category = validate_category(category)
    duration_minutes = validate_duration(duration_minutes)
    per_minute = CHAT_PRICE_PER_MINUTE.get(category, 0)
    if per_minute > 0:
        base = per_minute * duration_minutes
        rate = CHAT_DISCOUNTS.get(category, {}).get(duration_minutes, 0)
    else:
        base = CREDIT_UNIT_PRICES[unit_for_minutes(duration_minutes)]
        rate = 0
    return Quote(
        product_type=PRODUCT_CHAT,
        category=category,
        duration_minutes=duration_minutes,
        base_amount=base,
        discount_rate=rate,
        amount=calculate_final_amount(base, rate),
        currency=settings.payment_currency,
        name=f"{CATEGORY_TITLES[category]} ({duration_minutes} min chat)",
    )


def quote_credit(unit: str) -> Quote:
    minutes = unit_minutes(unit)
    base = CREDIT_UNIT_PRICES[unit]
    return Quote(
        product_type=PRODUCT_CREDIT,
        duration_minutes=minutes,
        unit=unit,
        base_amount=base,
        amount=base,
        currency=settings.payment_currency,
        name=f"{minutes} minute time credit",
    )


def quote(
    product_type: str,
    category: str | None = None,
    duration_minutes: int | None = None,
    unit: str | None = None,
) -> Quote:
    if product_type == PRODUCT_DOCUMENT:
        return quote_document(category or "")
    if product_type == PRODUCT_CHAT:
        return quote_chat(category or "", duration_minutes)
    if product_type == PRODUCT_CREDIT:
        return quote_credit(unit or "")
    raise ValidationFailure(f"unknown product type: {product_type}", code="INVALID_PRODUCT")


def list_category_quotes(category: str) -> list[Quote]:
    """Every purchasable option for one category (document + each chat duration)."""
    quotes = [quote_document(category)]
    for minutes in sorted(settings.chat_durations_set):
        quotes.append(quote_chat(category, minutes))
    return quotes
