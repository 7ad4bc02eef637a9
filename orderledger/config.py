"""Tunable financial parameters for the order engine.

Values are passed explicitly into every engine call; ``FinanceConfig.from_env``
reads OUR_DELIVERY_PRICE, SUPPLIER_DELIVERY_COMPENSATION and PROMO_FEE_PERCENT.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from orderledger.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_OUR_DELIVERY_PRICE = Decimal("60")
DEFAULT_SUPPLIER_DELIVERY_COMPENSATION = Decimal("0")
DEFAULT_PROMO_FEE_PERCENT = Decimal("0")


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default
    if not value.is_finite():
        logger.warning(f"Ignoring non-finite {name}={raw!r}, using {default}")
        return default
    return value


@dataclass(frozen=True)
class FinanceConfig:
    """Financial constants consumed by ``compute_financials``.

    Attributes:
        our_delivery_price (Decimal): Flat delivery fee paid when we ship the order.
        supplier_delivery_compensation (Decimal): Delivery cost paid back to a
            supplier that shipped the order itself.
        promo_fee_percent (Decimal): Marketplace fee, in percent of the sale,
            deducted from profit on promo-paid orders. 0 disables it.
    """

    our_delivery_price: Decimal = DEFAULT_OUR_DELIVERY_PRICE
    supplier_delivery_compensation: Decimal = DEFAULT_SUPPLIER_DELIVERY_COMPENSATION
    promo_fee_percent: Decimal = DEFAULT_PROMO_FEE_PERCENT

    @classmethod
    def from_env(cls) -> "FinanceConfig":
        return cls(
            our_delivery_price=_env_decimal("OUR_DELIVERY_PRICE", DEFAULT_OUR_DELIVERY_PRICE),
            supplier_delivery_compensation=_env_decimal(
                "SUPPLIER_DELIVERY_COMPENSATION", DEFAULT_SUPPLIER_DELIVERY_COMPENSATION
            ),
            promo_fee_percent=_env_decimal("PROMO_FEE_PERCENT", DEFAULT_PROMO_FEE_PERCENT),
        )
