"""Order/subscription store interface.

The host donation platform owns persistence; the adapter only needs the
operations in ``OrderStore``. Record atomicity (single-row update semantics
when a browser return and an IPN race) is the host's responsibility.

``InMemoryOrderStore`` backs local runs and tests.
"""

import copy
import threading
from typing import Any, Protocol

from simplepay_gateway.models.order import Order, Subscription

# Metadata keys kept alongside records
META_PAYMENT_URL = "simplepay_payment_url"


class OrderStore(Protocol):
    """Persistence operations the gateway calls into."""

    def find_order(self, order_id: str) -> Order | None: ...

    def find_order_by_ref(self, order_ref: str) -> Order | None: ...

    def save_order(self, order: Order) -> None: ...

    def find_subscription(self, subscription_id: str) -> Subscription | None: ...

    def find_subscription_by_order(self, order_id: str) -> Subscription | None: ...

    def save_subscription(self, subscription: Subscription) -> None: ...

    def get_meta(self, entity_id: str, key: str) -> Any: ...

    def set_meta(self, entity_id: str, key: str, value: Any) -> None: ...


class InMemoryOrderStore:
    """Thread-safe dict-backed store. Returns copies so callers never share state."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._orders: dict[str, Order] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self._meta: dict[tuple[str, str], Any] = {}

    def find_order(self, order_id: str) -> Order | None:
        with self._lock:
            order = self._orders.get(str(order_id))
            return copy.deepcopy(order) if order else None

    def find_order_by_ref(self, order_ref: str) -> Order | None:
        if not order_ref:
            return None
        with self._lock:
            for order in self._orders.values():
                if order.order_ref == order_ref:
                    return copy.deepcopy(order)
        return None

    def save_order(self, order: Order) -> None:
        with self._lock:
            self._orders[str(order.id)] = copy.deepcopy(order)

    def find_subscription(self, subscription_id: str) -> Subscription | None:
        with self._lock:
            subscription = self._subscriptions.get(str(subscription_id))
            return copy.deepcopy(subscription) if subscription else None

    def find_subscription_by_order(self, order_id: str) -> Subscription | None:
        with self._lock:
            for subscription in self._subscriptions.values():
                if subscription.parent_order_id == str(order_id):
                    return copy.deepcopy(subscription)
        return None

    def save_subscription(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions[str(subscription.id)] = copy.deepcopy(subscription)

    def get_meta(self, entity_id: str, key: str) -> Any:
        with self._lock:
            return self._meta.get((str(entity_id), key))

    def set_meta(self, entity_id: str, key: str, value: Any) -> None:
        with self._lock:
            self._meta[(str(entity_id), key)] = value
