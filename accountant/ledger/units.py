"""
Unit conversion between base units and display amounts.

The warehouse NUMERIC type keeps ``settings.numeric_scale`` decimal places,
so display amounts are rounded half-up at the first digit past that scale.
Rounding of a caller-supplied amount is an anomaly logged for investigation.
Rounding of the display projection of a ledger entry is logged at debug
level only: the entry also carries the exact ``amount_wei``.
"""

from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Optional, Union

import structlog

from accountant.core.config import settings


logger = structlog.get_logger(__name__)

BASE_UNIT_DECIMALS = 18


def to_decimal(base_units: Union[int, str], negate: bool = False) -> str:
    """
    Convert a non-negative base-unit magnitude to an exact decimal string.

    The sign is applied only through ``negate``; a negative magnitude is a
    caller error.
    """
    value = int(base_units)
    if value < 0:
        raise ValueError(f"Expected a magnitude, got {value}")

    whole, fraction = divmod(value, 10 ** BASE_UNIT_DECIMALS)
    digits = str(fraction).rjust(BASE_UNIT_DECIMALS, "0").rstrip("0")
    converted = f"{whole}.{digits}" if digits else str(whole)
    return maybe_negative(converted, negate)


def truncate_to_precision(
    amount: Union[int, str],
    decimal_places: Optional[int] = None,
    negate: bool = False,
    warn: bool = True,
) -> str:
    """
    Round a decimal string to ``decimal_places`` fractional digits, by
    default the warehouse scale.

    Amounts that already fit are returned unchanged. Otherwise the digit after
    the last kept place decides half-up rounding, with carries propagated into
    the whole part. When ``warn`` is set the rounding is logged for review,
    otherwise it is logged at debug level.
    """
    if decimal_places is None:
        decimal_places = settings.numeric_scale

    text = str(amount)
    if text.startswith("-"):
        raise ValueError(f"Expected a magnitude, got {text}")

    _, _, fraction = text.partition(".")
    if len(fraction) <= decimal_places:
        return maybe_negative(text, negate)

    quantum = Decimal(1).scaleb(-decimal_places)
    with localcontext() as ctx:
        ctx.prec = 100
        rounded = format(Decimal(text).quantize(quantum, rounding=ROUND_HALF_UP), "f")

    if warn:
        logger.warning(
            "Unexpected numeric rounding",
            amount=text,
            rounded=rounded,
            decimal_places=decimal_places,
            investigate=True,
        )
    else:
        logger.debug(
            "Display amount rounded",
            amount=text,
            rounded=rounded,
            decimal_places=decimal_places,
        )

    return maybe_negative(rounded, negate)


def display_amount(base_units: int, negate: bool = False) -> str:
    """Display projection stored next to ``amount_wei``."""
    return truncate_to_precision(to_decimal(base_units), negate=negate, warn=False)


def maybe_negative(value: str, negate: bool) -> str:
    if not negate or Decimal(value) == 0:
        return value
    return f"-{value}"
