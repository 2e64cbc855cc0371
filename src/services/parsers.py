"""Parsing utilities for payment import rows.

Handles Russian-specific number formatting found in bank statements:
- Decimal separator: comma (,)
- Thousand separator: space or non-breaking space
- Currency symbol: р., руб, ₽

Dates may arrive as ISO (YYYY-MM-DD), Russian (DD.MM.YYYY) or slashed
(DD/MM/YYYY) strings, or as date/datetime objects.

Example:
    >>> parse_russian_decimal("1 000,25")
    Decimal('1000.25')

    >>> parse_amount("р.7 000,00")
    Decimal('7000.00')

    >>> parse_payment_date("23.06.2025")
    datetime.date(2025, 6, 23)
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d/%m/%Y")

CURRENCY_MARKERS = ("руб.", "руб", "р.", "р", "₽")

KOPECK = Decimal("0.01")

# Upper bound of the Numeric(10, 2) money columns
MAX_AMOUNT = Decimal("99999999.99")


def parse_russian_decimal(value: Optional[str]) -> Optional[Decimal]:
    """
    Parse a Russian-formatted decimal number to Python Decimal.

    Args:
        value: Russian-formatted number string (e.g., "1 000,25") or None/empty

    Returns:
        Decimal object or None if input is empty/None

    Raises:
        ValueError: If value cannot be parsed as a valid decimal
    """
    if not value or not isinstance(value, str):
        return None

    value = value.strip()
    if not value:
        return None

    try:
        normalized = value.replace(" ", "").replace("\xa0", "").replace(",", ".")
        return Decimal(normalized)
    except (ValueError, InvalidOperation) as e:
        raise ValueError(f"Cannot parse Russian decimal '{value}': {e}") from e


def parse_amount(value: Union[str, int, float, Decimal, None]) -> Optional[Decimal]:
    """Parse a payment amount, stripping currency markers.

    Args:
        value: Amount as string ("р.1 000,50"), number or Decimal

    Returns:
        Decimal quantized to kopecks, or None if input is empty

    Raises:
        ValueError: If value cannot be parsed
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse amount from boolean {value!r}")
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = Decimal(str(value))
    else:
        cleaned = value.strip().lower()
        for marker in CURRENCY_MARKERS:
            cleaned = cleaned.replace(marker, "")
        parsed = parse_russian_decimal(cleaned)
        if parsed is None:
            return None

    if not parsed.is_finite():
        raise ValueError(f"Amount is not a finite number: '{value}'")
    if abs(parsed) > MAX_AMOUNT:
        raise ValueError(f"Amount is out of range: '{value}'")
    try:
        return parsed.quantize(KOPECK)
    except InvalidOperation as e:
        raise ValueError(f"Cannot round amount '{value}' to kopecks: {e}") from e


def parse_payment_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """Parse a payment date in any supported format.

    Args:
        value: Date string, date or datetime

    Returns:
        datetime.date or None if input is empty

    Raises:
        ValueError: If the string matches none of the supported formats
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    raw = value.strip()
    if not raw:
        return None
    # ISO timestamps: keep the date part only
    if "T" in raw:
        raw = raw.split("T", 1)[0]

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Cannot parse date '{value}' (expected YYYY-MM-DD, DD.MM.YYYY or DD/MM/YYYY)")
