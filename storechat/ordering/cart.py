# storechat/ordering/cart.py
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Union

from ..config import DeliveryConfig, DiscountConfig
from .catalog import Product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    name: str
    display_name: str
    quantity: int
    unit_price: float
    in_stock: bool
    category: str
    subcategory: str

    @classmethod
    def from_product(cls, product: Product, quantity: int = 1) -> "CartLine":
        return cls(
            name=product.name,
            display_name=product.display_name,
            quantity=max(1, int(quantity)),
            unit_price=product.unit_price,
            in_stock=product.in_stock,
            category=product.category,
            subcategory=product.subcategory,
        )

    def with_quantity(self, quantity: int) -> "CartLine":
        return replace(self, quantity=max(1, int(quantity)))

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Discount:
    amount: int = 0
    percent: float = 0
    label: Optional[str] = None


NO_DISCOUNT = Discount()


# ----------------------------
# Pending slot (only one at a time)
# ----------------------------
@dataclass(frozen=True)
class Staging:
    lines: List[CartLine]


@dataclass(frozen=True)
class AwaitingSelection:
    candidates: List[CartLine]
    quantity: int


@dataclass(frozen=True)
class AwaitingDelivery:
    subtotal: float
    discount: Discount
    # one per checkout; the order sink records each token at most once
    checkout_token: str = ""

    @property
    def total_after_discount(self) -> float:
        return self.subtotal - self.discount.amount


Pending = Union[Staging, AwaitingSelection, AwaitingDelivery]


class CartPhase(str, Enum):
    EMPTY = "empty"
    STAGING = "staging"
    AWAITING_SELECTION = "awaiting_selection"
    CONFIRMED = "confirmed"
    AWAITING_DELIVERY = "awaiting_delivery"


@dataclass
class Cart:
    customer_id: str
    confirmed: List[CartLine] = field(default_factory=list)
    pending: Optional[Pending] = None
    expires_at: Optional[float] = None

    @property
    def phase(self) -> CartPhase:
        if isinstance(self.pending, Staging):
            return CartPhase.STAGING
        if isinstance(self.pending, AwaitingSelection):
            return CartPhase.AWAITING_SELECTION
        if isinstance(self.pending, AwaitingDelivery):
            return CartPhase.AWAITING_DELIVERY
        return CartPhase.CONFIRMED if self.confirmed else CartPhase.EMPTY

    @property
    def staged(self) -> List[CartLine]:
        return list(self.pending.lines) if isinstance(self.pending, Staging) else []

    @property
    def selection(self) -> Optional[AwaitingSelection]:
        return self.pending if isinstance(self.pending, AwaitingSelection) else None

    @property
    def awaiting_delivery(self) -> Optional[AwaitingDelivery]:
        return self.pending if isinstance(self.pending, AwaitingDelivery) else None

    @property
    def subtotal(self) -> float:
        return sum(line.line_total for line in self.confirmed)


class CartStore:
    """
    Carts live independently of sessions. Each cart carries its own expiry
    timestamp (armed on creation, restarted via restart_timer).
    """

    def __init__(
        self,
        expiry_seconds: Union[Callable[[], float], float] = 900.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._expiry = expiry_seconds
        self._clock = clock
        self._carts: Dict[str, Cart] = {}

    def expiry_seconds(self) -> float:
        return float(self._expiry() if callable(self._expiry) else self._expiry)

    def _expired(self, cart: Cart, now: float) -> bool:
        return cart.expires_at is not None and now >= cart.expires_at

    def get(self, customer_id: str) -> Optional[Cart]:
        cart = self._carts.get(customer_id)
        if cart is None:
            return None
        if self._expired(cart, self._clock()):
            self._carts.pop(customer_id, None)
            logger.info("Cart expired for %s", customer_id)
            return None
        return cart

    def get_or_create(self, customer_id: str) -> Cart:
        cart = self.get(customer_id)
        if cart is None:
            cart = Cart(customer_id=customer_id)
            self._carts[customer_id] = cart
            self.restart_timer(cart)
        return cart

    def restart_timer(self, cart: Cart) -> None:
        cart.expires_at = self._clock() + self.expiry_seconds()

    def delete(self, customer_id: str) -> None:
        self._carts.pop(customer_id, None)

    def clear_all(self) -> None:
        self._carts.clear()

    def sweep(self, skip: Iterable[str] = ()) -> List[str]:
        now = self._clock()
        skip = set(skip)
        dead = [cid for cid, c in self._carts.items() if cid not in skip and self._expired(c, now)]
        for cid in dead:
            del self._carts[cid]
        return dead

    def __len__(self) -> int:
        return len(self._carts)


# ----------------------------
# Pricing rules
# ----------------------------
def compute_discount(subtotal: float, cfg: DiscountConfig) -> Discount:
    """Largest absolute discount among qualifying tiers; first one wins a tie."""
    if not cfg.enabled:
        return NO_DISCOUNT

    best = NO_DISCOUNT
    for tier in cfg.tiers:
        if subtotal >= tier.minimum:
            amount = math.floor(subtotal * tier.percent / 100)
            if amount > best.amount:
                best = Discount(amount=amount, percent=tier.percent, label=tier.label)
    return best


def compute_delivery_fee(total_after_discount: float, cfg: DeliveryConfig) -> float:
    if not cfg.enabled:
        return 0
    if cfg.free_from is not None and total_after_discount >= cfg.free_from:
        return 0
    return cfg.fee or 0
