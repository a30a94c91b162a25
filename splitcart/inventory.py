"""
Inventory reservation.

Both the pre-payment check and the post-payment commit lock every
product row involved, in ascending product id order, and re-read stock
under the lock. Concurrent checkouts touching overlapping products
therefore always queue on the same lock sequence.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from kungfu import Result, Ok, Error

from splitcart.domain import Product, StockMode
from splitcart.errors import Errors, InsufficientStock, InvalidLineItem, StorageError
from splitcart.ports import ProductCatalog

log = logging.getLogger(__name__)

type StockError = InsufficientStock | InvalidLineItem | StorageError


def demand(items: Iterable[tuple[int, int]]) -> dict[int, int]:
    """
    Sum quantities per product, ordered by ascending product id.

        demand([(7, 1), (3, 2), (7, 4)])   # {3: 2, 7: 5}
    """
    totals: dict[int, int] = {}
    for product_id, quantity in items:
        totals[product_id] = totals.get(product_id, 0) + quantity
    return {pid: totals[pid] for pid in sorted(totals)}


@dataclass(frozen=True, slots=True)
class Inventory:
    catalog: ProductCatalog

    async def reserve_and_validate(
        self, items: Iterable[tuple[int, int]]
    ) -> Result[dict[int, Product], StockError]:
        """Lock and check. Stock is left untouched."""
        wanted = demand(items)
        return await self._locked_check(wanted)

    async def commit_decrement(
        self, items: Iterable[tuple[int, int]]
    ) -> Result[dict[int, Product], StockError]:
        """Lock, re-validate, then decrement every product."""
        wanted = demand(items)
        match await self._locked_check(wanted):
            case Error(e):
                return Error(e)
            case Ok(_):
                pass

        updated: dict[int, Product] = {}
        try:
            for product_id, quantity in wanted.items():
                updated[product_id] = await self.catalog.update_stock(
                    product_id, quantity, StockMode.DECREASE
                )
        except Exception as e:
            return Error(Errors.storage(e))

        log.debug("stock committed: %s", wanted)
        return Ok(updated)

    async def _locked_check(
        self, wanted: dict[int, int]
    ) -> Result[dict[int, Product], StockError]:
        try:
            locked = await self.catalog.lock_for_update(list(wanted))
        except Exception as e:
            return Error(Errors.storage(e))

        for product_id, quantity in wanted.items():
            product = locked.get(product_id)
            if product is None:
                return Error(Errors.unknown_product(product_id))
            if product.stock < quantity:
                log.info(
                    "insufficient stock product=%s requested=%s available=%s",
                    product_id, quantity, product.stock,
                )
                return Error(Errors.insufficient_stock(product_id, quantity, product.stock))
        return Ok(locked)


__all__ = ("StockError", "demand", "Inventory")
