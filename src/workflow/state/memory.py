"""In-memory order repository.

Used when no database is configured and throughout the test suite. Orders
are stored as deep copies, so callers can only change stored state by
passing an order back to ``save``.
"""

from typing import Dict, List, Optional

from src.workflow.state.errors import DuplicateOrderError, NotFoundError, VersionConflictError
from src.workflow.state.models import Order


class InMemoryOrderRepository:
    """Dictionary-backed implementation of the OrderRepository protocol."""

    def __init__(self) -> None:
        self._orders: Dict[int, Order] = {}
        self._by_number: Dict[str, int] = {}
        self._next_id = 1
        self._next_stage_id = 1

    async def find_by_id(self, order_id: int) -> Optional[Order]:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order is not None else None

    async def find_by_order_number(self, order_number: str) -> Optional[Order]:
        order_id = self._by_number.get(order_number)
        if order_id is None:
            return None
        return await self.find_by_id(order_id)

    async def save(self, order: Order) -> Order:
        stored = order.model_copy(deep=True)

        if stored.id is None:
            if stored.order_number in self._by_number:
                raise DuplicateOrderError(stored.order_number)
            stored.id = self._next_id
            self._next_id += 1
            for status in stored.statuses:
                status.id = self._next_stage_id
                self._next_stage_id += 1
            self._orders[stored.id] = stored
            self._by_number[stored.order_number] = stored.id
            return stored.model_copy(deep=True)

        existing = self._orders.get(stored.id)
        if existing is None:
            raise NotFoundError("order", stored.id)
        if existing.version != stored.version - 1:
            raise VersionConflictError(stored.id, stored.version - 1, existing.version)

        self._orders[stored.id] = stored
        return stored.model_copy(deep=True)

    async def find_all(self) -> List[Order]:
        return [order.model_copy(deep=True) for order in self._orders.values()]

    def clear(self) -> None:
        self._orders.clear()
        self._by_number.clear()
