"""
Odds format conversions.

Canonical representation everywhere in the pipeline is DECIMAL (European)
odds held as ``decimal.Decimal``. Binary floats never enter the money path:
provider numbers are converted through their shortest string form.

Formatting back to a provider format is exact for the values providers
actually publish: American prices are whole (or cent) numbers, fractional
prices are small-denominator fractions.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from fractions import Fraction
from typing import Union

from edgefinder.models.schemas import OddsFormat

ONE = Decimal("1")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")

# Fractional prices are quoted with small denominators (11/10, 100/30 at worst)
MAX_FRACTION_DENOMINATOR = 1000

Number = Union[str, int, float, Decimal]


def to_decimal(value: Number) -> Decimal:
    """Convert a number to Decimal without float drift."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, float):
        return Decimal(repr(value))
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"not a number: {value!r}") from e


def american_to_decimal(american: Number) -> Decimal:
    """Convert American odds (+150, -200) to decimal odds."""
    value = to_decimal(american)
    if value >= HUNDRED:
        return value / HUNDRED + ONE
    if value <= -HUNDRED:
        return HUNDRED / abs(value) + ONE
    raise ValueError(f"American odds must be <= -100 or >= +100, got {american}")


def fractional_to_decimal(fractional: Union[str, Fraction]) -> Decimal:
    """Convert fractional odds ("5/2", "evens") to decimal odds."""
    if isinstance(fractional, Fraction):
        frac = fractional
    else:
        text = str(fractional).strip().lower()
        if text in ("evens", "evs", "even"):
            return Decimal("2")
        if "/" not in text:
            raise ValueError(f"fractional odds need a '/': {fractional!r}")
        numerator, _, denominator = text.partition("/")
        try:
            frac = Fraction(int(numerator), int(denominator))
        except (ValueError, ZeroDivisionError) as e:
            raise ValueError(f"bad fractional odds: {fractional!r}") from e
    if frac <= 0:
        raise ValueError(f"fractional odds must be positive: {fractional!r}")
    return Decimal(frac.numerator) / Decimal(frac.denominator) + ONE


def to_decimal_odds(value: Number, fmt: OddsFormat) -> Decimal:
    """Convert a provider price in any supported format to canonical decimal odds."""
    if fmt == OddsFormat.DECIMAL:
        odds = to_decimal(value)
    elif fmt == OddsFormat.AMERICAN:
        odds = american_to_decimal(value)
    elif fmt == OddsFormat.FRACTIONAL:
        odds = fractional_to_decimal(str(value))
    else:
        raise ValueError(f"unsupported odds format: {fmt}")

    if odds <= ONE:
        raise ValueError(f"decimal odds must be greater than 1, got {odds}")
    return odds


def _plain(value: Decimal) -> str:
    """Render a Decimal without exponent or trailing zeros."""
    text = format(value.normalize(), "f")
    return text


def format_odds(odds: Decimal, fmt: OddsFormat) -> str:
    """
    Render canonical decimal odds in a provider format.

    Args:
        odds: Decimal odds (> 1)
        fmt: Target format

    Returns:
        "2.5", "+150" or "3/2" style strings
    """
    if fmt == OddsFormat.DECIMAL:
        return _plain(odds)

    if fmt == OddsFormat.AMERICAN:
        if odds >= 2:
            american = ((odds - ONE) * HUNDRED).quantize(CENT, rounding=ROUND_HALF_EVEN)
            return f"+{_plain(american)}"
        american = (HUNDRED / (odds - ONE)).quantize(CENT, rounding=ROUND_HALF_EVEN)
        return f"-{_plain(american)}"

    if fmt == OddsFormat.FRACTIONAL:
        frac = Fraction(odds - ONE).limit_denominator(MAX_FRACTION_DENOMINATOR)
        return f"{frac.numerator}/{frac.denominator}"

    raise ValueError(f"unsupported odds format: {fmt}")


def implied_probability(odds: Decimal) -> Decimal:
    """Market-implied probability (1 / decimal odds, vig included)."""
    return ONE / odds


def kelly_fraction(win_prob: Decimal, odds: Decimal) -> Decimal:
    """
    Full Kelly stake as a fraction of bankroll.

    f = (b*p - q) / b with b = odds - 1, q = 1 - p. Negative edges clamp to 0.
    """
    b = odds - ONE
    if b <= 0:
        return Decimal("0")
    kelly = (b * win_prob - (ONE - win_prob)) / b
    return max(Decimal("0"), kelly)
