from __future__ import annotations

from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Final


USD_QUANT: Final[Decimal] = Decimal("0.0000000001")

# Wide enough for 2**256 with 18 decimals on both sides of the point.
LEDGER_PRECISION: Final[int] = 120


def _as_decimal(amount: Decimal | int | str) -> Decimal:
    if isinstance(amount, float):
        raise TypeError("Pass amounts as Decimal, int or str, not float")
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if not value.is_finite():
        raise ValueError(f"Amount must be finite, got {amount!r}")
    return value


def _check_decimals(decimals: int) -> None:
    if decimals < 0 or decimals > 255:
        raise ValueError(f"decimals must be within [0, 255], got {decimals}")


def to_chain_units(amount: Decimal | int | str, decimals: int) -> str:
    """
    Convert a canonical decimal amount into the chain's integer units.

    Digits beyond the token's declared decimals are truncated, never rounded.
    Works on the decimal's integer coefficient, so it is exact at any magnitude.
    """
    _check_decimals(decimals)
    value = _as_decimal(amount)
    if value < 0:
        raise ValueError(f"Amount must be non-negative, got {amount!r}")

    _, digits, exponent = value.as_tuple()
    coefficient = int("".join(str(d) for d in digits) or "0")
    shift = int(exponent) + decimals

    if shift >= 0:
        units = coefficient * 10**shift
    else:
        units = coefficient // 10 ** (-shift)

    return str(units)


def parse_chain_units(raw: str | int) -> int:
    """Accept decimal strings, 0x-prefixed hex strings (felts) or ints."""
    if isinstance(raw, bool):
        raise TypeError("bool is not a chain amount")
    if isinstance(raw, int):
        units = raw
    else:
        text = raw.strip()
        if text.lower().startswith("0x"):
            units = int(text, 16)
        elif text.isdigit():
            units = int(text, 10)
        else:
            raise ValueError(f"Not an integer chain amount: {raw!r}")
    if units < 0:
        raise ValueError(f"Chain amount must be non-negative, got {raw!r}")
    return units


def from_chain_units(raw: str | int, decimals: int) -> Decimal:
    """Convert integer chain units back into a canonical decimal amount."""
    _check_decimals(decimals)
    units = parse_chain_units(raw)
    if decimals == 0:
        return Decimal(units)

    whole, frac = divmod(units, 10**decimals)
    # Built from a string so the context precision never rounds it.
    return Decimal(f"{whole}.{frac:0{decimals}d}")


def truncate(amount: Decimal, decimals: int) -> Decimal:
    """Drop digits beyond `decimals` (toward zero)."""
    with localcontext() as ctx:
        ctx.prec = LEDGER_PRECISION
        return amount.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)


def usd_value(amount: Decimal, price: Decimal | None) -> Decimal:
    if price is None:
        return Decimal(0)
    with localcontext() as ctx:
        ctx.prec = LEDGER_PRECISION
        return (amount * price).quantize(USD_QUANT, rounding=ROUND_DOWN)


def difference(left: Decimal, right: Decimal) -> Decimal:
    """left - right without rounding to the default 28-digit context."""
    with localcontext() as ctx:
        ctx.prec = LEDGER_PRECISION
        return left - right
