"""Display formatting for metric values."""

from decimal import ROUND_HALF_UP, Decimal

from .schemas import DisplayFormat


def _quantize(value, places: int) -> Decimal:
    return Decimal(str(value)).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def format_currency(value, decimals: int) -> str:
    amount = _quantize(value, decimals)
    formatted = f"{abs(amount):,.{decimals}f}"
    return f"-${formatted}" if amount < 0 else f"${formatted}"


def format_decimal(value, decimals: int) -> str:
    return f"{_quantize(value, decimals):,.{decimals}f}"


def format_numeric(value, display_format: DisplayFormat | str | None) -> str:
    """Render a number the way the dashboard shows it.

    >>> format_numeric(1234.5, "currency")
    '$1,234.50'
    >>> format_numeric(12.345, "percentage")
    '12.3%'
    """
    fmt = DisplayFormat(display_format) if display_format else None
    if fmt == DisplayFormat.CURRENCY:
        return format_currency(value, 2)
    if fmt == DisplayFormat.CURRENCY_ROUNDED:
        return format_currency(value, 0)
    if fmt == DisplayFormat.PERCENTAGE:
        return f"{format_decimal(value, 1)}%"
    if fmt == DisplayFormat.INTEGER:
        return f"{int(_quantize(value, 0)):,}"
    if fmt == DisplayFormat.DECIMAL:
        return format_decimal(value, 2)
    if fmt in (DisplayFormat.FTE, DisplayFormat.RATE):
        return format_decimal(value, 1)
    return str(value)
