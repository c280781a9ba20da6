# commerce/money.py

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

TWOPLACES = Decimal("0.01")

CURRENCY_KES = "KES"
CURRENCY_USD = "USD"

CURRENCY_CHOICES = [
    (CURRENCY_KES, "Kenyan Shilling"),
    (CURRENCY_USD, "US Dollar"),
]

_CURRENCY_LABELS = {
    CURRENCY_KES: "KSh",
    CURRENCY_USD: "USD",
}


def money(v) -> Decimal:
    if v is None or v == "":
        return Decimal("0.00")
    try:
        return Decimal(str(v)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError(f"Invalid money value: {v!r}") from exc


def format_price(amount, currency: str = CURRENCY_KES) -> str:
    """
    Human price used in notification template data.

    Zero is rendered as FREE; otherwise whole units with thousands separators
    (e.g. "KSh 2,500").
    """
    value = money(amount)
    if value == Decimal("0.00"):
        return "FREE"
    label = _CURRENCY_LABELS.get(str(currency or "").upper(), str(currency or "").upper())
    whole = value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{label} {whole:,}"
