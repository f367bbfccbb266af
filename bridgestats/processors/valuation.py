"""
Valuation Helper

Converts raw integer token amounts into USD/BTC figures using exact decimal
arithmetic. Prices are integers scaled by PRICE_PRECISION and stored
valuations are integers scaled by VALUE_SCALE; results are truncated toward
zero so repeated recomputation is deterministic.
"""

from decimal import Decimal, Context, ROUND_DOWN, localcontext

PRICE_PRECISION = 10 ** 8
VALUE_SCALE = 10 ** 4

# Wide enough for uint256 amounts multiplied by price and scale
_CONTEXT = Context(prec=120, rounding=ROUND_DOWN)


def _exact(value, name: str) -> Decimal:
    if isinstance(value, float):
        raise TypeError(f"{name} must be an int or Decimal, not float")
    return Decimal(value)


def _truncate(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def to_real_amount(amount, decimals: int) -> Decimal:
    """Raw on-chain amount expressed in whole tokens"""
    with localcontext(_CONTEXT):
        return _exact(amount, 'amount').scaleb(-decimals)


def usd_value(amount, decimals: int, price, price_precision: int = PRICE_PRECISION) -> Decimal:
    """
    Exact USD value of a raw amount.

    Args:
        amount: Raw integer amount
        decimals: Token decimal precision
        price: Price scaled by price_precision

    Returns:
        Unscaled, untruncated Decimal USD value
    """
    with localcontext(_CONTEXT):
        numerator = _exact(amount, 'amount') * _exact(price, 'price')
        return numerator / (Decimal(10) ** decimals * Decimal(price_precision))


def to_usd(amount, decimals: int, price, price_precision: int = PRICE_PRECISION,
           scale: int = VALUE_SCALE) -> int:
    """USD value of a raw amount scaled by `scale` for storage"""
    with localcontext(_CONTEXT):
        numerator = _exact(amount, 'amount') * _exact(price, 'price') * Decimal(scale)
        return _truncate(numerator / (Decimal(10) ** decimals * Decimal(price_precision)))


def to_btc(amount, decimals: int, price, btc_price, scale: int = VALUE_SCALE) -> int:
    """
    BTC value of a raw amount scaled by `scale` for storage.

    Both prices share the same precision, which cancels out.
    """
    btc = _exact(btc_price, 'btc_price')
    if btc <= 0:
        raise ValueError(f"BTC reference price must be positive, got {btc_price}")
    with localcontext(_CONTEXT):
        numerator = _exact(amount, 'amount') * _exact(price, 'price') * Decimal(scale)
        return _truncate(numerator / (Decimal(10) ** decimals * btc))


def from_usd(usd_scaled, decimals: int, price, price_precision: int = PRICE_PRECISION,
             scale: int = VALUE_SCALE) -> int:
    """Inverse of to_usd(): raw amount worth `usd_scaled` at `price`"""
    p = _exact(price, 'price')
    if p <= 0:
        raise ValueError(f"price must be positive, got {price}")
    with localcontext(_CONTEXT):
        numerator = _exact(usd_scaled, 'usd_scaled') * Decimal(10) ** decimals * Decimal(price_precision)
        return _truncate(numerator / (p * Decimal(scale)))


def normalize_amount(amount: int, from_decimals: int, to_decimals: int) -> int:
    """
    Re-express a raw amount in another decimal precision.

    Exact when to_decimals >= from_decimals, truncated toward zero otherwise.
    """
    if to_decimals >= from_decimals:
        return amount * 10 ** (to_decimals - from_decimals)
    divisor = 10 ** (from_decimals - to_decimals)
    if amount < 0:
        return -((-amount) // divisor)
    return amount // divisor
