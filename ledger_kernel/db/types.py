"""
Module: ledger_kernel.db.types
Responsibility: Annotated type aliases and conversion helpers for balance
    columns.  Centralizes precision and rounding so that every model and
    service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the ledger kernel.  Amounts are Decimal with
      explicit precision; quantities are integers.
    - An amount entering the kernel is exact at its column scale.  Finer
      input is rejected, never rounded, so what is stored is what was asked.

Failure modes:
    - ValidationError from to_money() / to_quantity() on malformed input.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from sqlalchemy import String

from ledger_kernel.db.base import MONEY_DECIMAL_PLACES
from ledger_kernel.exceptions import ValidationError

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]

UNIT_COST_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to specified decimal places.

    Preconditions: value is a Decimal.
    Postconditions: Returns value quantized with the given rounding mode.
    """
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


def to_money(
    value: Any,
    field: str = "amount",
    *,
    positive: bool = True,
    places: int = MONEY_DECIMAL_PLACES,
) -> Decimal:
    """
    Convert user input to a Decimal amount at ``places`` decimal places.

    Floats are rejected outright; strings and ints are parsed exactly.
    ``"600"``, ``"600.0"`` and ``"600.00"`` all become ``Decimal("600.00")``.

    Raises:
        ValidationError: On non-numeric input, floats, non-finite values,
            amounts with more than ``places`` decimal places, or (when
            ``positive``) values that are not strictly greater than zero.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be a Decimal, int or str", field)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} is not a valid amount: {value!r}", field) from exc
    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite", field)
    try:
        scaled = round_money(amount, places)
    except InvalidOperation as exc:
        raise ValidationError(f"{field} is out of range: {value!r}", field) from exc
    if scaled != amount:
        raise ValidationError(
            f"{field} has more than {places} decimal places: {value!r}", field
        )
    if positive and scaled <= 0:
        raise ValidationError(f"{field} must be greater than zero", field)
    return scaled


def to_quantity(value: Any, field: str = "quantity", *, positive: bool = True) -> int:
    """
    Convert user input to an integer stock quantity.

    Raises:
        ValidationError: If the value is not an integer (or integral string),
            or (when ``positive``) is not strictly greater than zero.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field)
    if isinstance(value, int):
        qty = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        qty = int(value)
    else:
        raise ValidationError(f"{field} must be an integer", field)
    if positive and qty <= 0:
        raise ValidationError(f"{field} must be greater than zero", field)
    return qty


def format_money(value: Decimal | None, places: int = MONEY_DECIMAL_PLACES) -> str | None:
    """Render an amount for result payloads (plain notation, column scale)."""
    if value is None:
        return None
    return str(round_money(Decimal(value), places))
