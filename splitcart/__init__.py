"""
splitcart — multi-seller marketplace checkout.

    from splitcart import checkout as C   # Buyer checkout saga + seller split
    from splitcart import webhooks as W   # Asynchronous payment reconciliation
    from splitcart import pricing as P    # Deterministic pricing
    from splitcart import saga as S       # Steps with compensation
"""

from splitcart import saga
from splitcart import lift
from splitcart import markers
from splitcart import pricing
from splitcart import payments
from splitcart import checkout
from splitcart import webhooks
from splitcart._types import Money
from splitcart.config import CheckoutConfig, Environment

__version__ = "0.1.0"

__all__ = (
    "saga",
    "lift",
    "markers",
    "pricing",
    "payments",
    "checkout",
    "webhooks",
    "Money",
    "CheckoutConfig",
    "Environment",
)
