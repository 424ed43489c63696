"""Per-request cost from token counts and the model price table"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from ....core.config import RouterConfig
from ....core.logger import CentralizedLogger
from ....models.ai_request import ModelDescriptor


logger = CentralizedLogger("CostCalculator")

_MILLION = Decimal(1_000_000)
_QUANTUM = Decimal("0.00000001")


def _cheapest(config: RouterConfig) -> Optional[ModelDescriptor]:
    if not config.catalog:
        return None
    return min(config.catalog, key=lambda d: (d.unit_cost, d.model_id))


def calculate_cost(
    config: RouterConfig,
    model_id: str,
    tokens_in: int,
    tokens_out: int
) -> Decimal:
    """Compute the USD cost of one request

    Unknown models are priced with the cheapest catalog entry and logged,
    so accounting never fails on a missing price. Negative token counts
    are treated as zero.

    Args:
        config: Routing configuration holding the price table
        model_id: Model that served the request
        tokens_in: Prompt tokens
        tokens_out: Completion tokens

    Returns:
        Non-negative cost rounded to 8 decimal places
    """
    tokens_in = max(int(tokens_in or 0), 0)
    tokens_out = max(int(tokens_out or 0), 0)

    descriptor = config.get_model(model_id)
    if descriptor is None:
        descriptor = _cheapest(config)
        logger.warning(
            f"No price for model '{model_id}', using "
            f"{descriptor.model_id if descriptor else 'zero'} pricing"
        )
        if descriptor is None:
            return Decimal("0")

    cost = (
        Decimal(tokens_in) / _MILLION * descriptor.input_price_per_million
        + Decimal(tokens_out) / _MILLION * descriptor.output_price_per_million
    )
    return max(cost, Decimal("0")).quantize(_QUANTUM, rounding=ROUND_HALF_UP)
