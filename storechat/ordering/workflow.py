# storechat/ordering/workflow.py
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence
from uuid import uuid4

from ..config import OrderingConfigStore
from . import replies
from .cart import (
    AwaitingDelivery,
    AwaitingSelection,
    Cart,
    CartLine,
    CartStore,
    Discount,
    Staging,
    compute_delivery_fee,
    compute_discount,
)
from .catalog import Product
from .nlp import SELECTION_CANCEL_RE, clean_text, first_int, parse_index, search_form
from .orders import DeliveryMode, OrderDraft, OrderLine, OrderSink, PlacedOrder
from .session import SessionState, SessionStore

logger = logging.getLogger(__name__)

PICKUP_CHOICES = {"1", "retiro"}
DELIVERY_CHOICES = {"2", "delivery"}


def _distinct_names(lines: Sequence[CartLine]) -> List[str]:
    out: List[str] = []
    for line in lines:
        if line.name not in out:
            out.append(line.name)
    return out


def _narrow(candidates: Sequence[CartLine], text: str) -> List[CartLine]:
    """
    Keeps the candidates sharing the most name tokens with `text`.
    Returns [] when nothing overlaps.
    """
    q = search_form(text)
    scored = []
    for line in candidates:
        tokens = [t for t in search_form(line.name).split(" ") if len(t) >= 3]
        scored.append((sum(1 for t in tokens if t in q), line))
    best = max((s for s, _ in scored), default=0)
    if best == 0:
        return []
    return [line for s, line in scored if s == best]


class CartWorkflow:
    """
    Staged -> confirmed -> checkout -> order.

    Every public method returns the reply text. User mistakes come back as
    corrective replies and leave the cart untouched.
    """

    def __init__(
        self,
        carts: CartStore,
        sessions: SessionStore,
        config_store: OrderingConfigStore,
        orders: OrderSink,
        persistence_timeout: float = 5.0,
        currency_symbol: str = "$",
    ) -> None:
        self.carts = carts
        self.sessions = sessions
        self.config_store = config_store
        self.orders = orders
        self.persistence_timeout = persistence_timeout
        self.symbol = currency_symbol

    # ----------------------------
    # Pricing
    # ----------------------------
    def compute_discount(self, subtotal: float) -> Discount:
        return compute_discount(subtotal, self.config_store.current().discounts)

    def compute_delivery_fee(self, total_after_discount: float) -> float:
        return compute_delivery_fee(total_after_discount, self.config_store.current().delivery)

    # ----------------------------
    # Staging / selection
    # ----------------------------
    def stage_detected_products(self, customer_id: str, products: Sequence[Product], quantity: int = 1) -> str:
        if not products:
            return replies.nothing_found()

        lines = [CartLine.from_product(p, quantity) for p in products]
        cart = self.carts.get_or_create(customer_id)

        if len(_distinct_names(lines)) > 1:
            cart.pending = AwaitingSelection(candidates=lines, quantity=max(1, int(quantity)))
            self.sessions.touch(customer_id, SessionState.CHOOSING_AMONG_CANDIDATES)
            logger.debug("Selection pending for %s: %d candidates", customer_id, len(lines))
            return replies.multiple_options(lines, self.symbol)

        # replaces whatever was pending, so repeating the same request is harmless
        cart.pending = Staging(lines=lines)
        self.sessions.touch(customer_id, SessionState.SELECTING_PRODUCTS)
        return replies.staged_summary(lines, self.symbol)

    def select_candidate(self, customer_id: str, text: str) -> Optional[str]:
        """None when there is no pending selection for this customer."""
        cart = self.carts.get(customer_id)
        selection = cart.selection if cart else None
        if selection is None:
            return None

        t = clean_text(text)
        idx = parse_index(t)
        if idx is not None:
            if 1 <= idx <= len(selection.candidates):
                return self._stage_choice(cart, [selection.candidates[idx - 1]], selection.quantity)
            return replies.invalid_option()

        if SELECTION_CANCEL_RE.search(t):
            cart.pending = None
            if not cart.confirmed:
                self.carts.delete(customer_id)
            self.sessions.clear(customer_id)
            return replies.search_cancelled()

        narrowed = _narrow(selection.candidates, t)
        if narrowed and len(_distinct_names(narrowed)) == 1:
            return self._stage_choice(cart, narrowed, selection.quantity)
        return replies.invalid_option()

    def _stage_choice(self, cart: Cart, chosen: Sequence[CartLine], quantity: int) -> str:
        lines = [line.with_quantity(quantity) for line in chosen]
        cart.pending = Staging(lines=lines)
        self.sessions.touch(cart.customer_id, SessionState.SELECTING_PRODUCTS)
        return replies.staged_summary(lines, self.symbol)

    def confirm_staged(self, customer_id: str) -> str:
        cart = self.carts.get(customer_id)
        staged = cart.staged if cart else []
        if not staged:
            return replies.nothing_staged()

        missing = [line for line in staged if not line.in_stock]
        if missing:
            return replies.out_of_stock(missing)

        cart.confirmed.extend(staged)
        cart.pending = None
        self.carts.restart_timer(cart)
        self.sessions.touch(customer_id, SessionState.BROWSING)
        logger.info("Products added to cart of %s: %d line(s)", customer_id, len(staged))
        return replies.added_to_cart(self._cart_text(cart, with_options=False))

    def discard_staged(self, customer_id: str) -> str:
        cart = self.carts.get(customer_id)
        if cart is not None and cart.staged:
            cart.pending = None
            if not cart.confirmed:
                self.carts.delete(customer_id)
        self.sessions.touch(customer_id, SessionState.BROWSING)
        return replies.staged_discarded()

    # ----------------------------
    # Cart inspection / edits
    # ----------------------------
    def _cart_text(self, cart: Cart, with_options: bool = True) -> str:
        subtotal = cart.subtotal
        return replies.cart_summary(
            cart.confirmed, subtotal, self.compute_discount(subtotal), self.symbol, with_options=with_options
        )

    def show_cart(self, customer_id: str) -> str:
        cart = self.carts.get(customer_id)
        if cart is None or not cart.confirmed:
            return replies.empty_cart()
        return self._cart_text(cart)

    def cancel_cart(self, customer_id: str) -> str:
        cart = self.carts.get(customer_id)
        if cart is None or (not cart.confirmed and cart.pending is None):
            return replies.cart_already_empty()
        self.carts.delete(customer_id)
        self.sessions.clear(customer_id)
        logger.info("Cart cancelled for %s", customer_id)
        return replies.cart_cancelled()

    def remove_line(self, customer_id: str, text: str) -> str:
        cart = self.carts.get(customer_id)
        if cart is None or not cart.confirmed:
            return replies.empty_cart()

        idx = first_int(text)
        if idx is None or not 1 <= idx <= len(cart.confirmed):
            return replies.invalid_line_number(self._cart_text(cart))

        removed = cart.confirmed.pop(idx - 1)
        # a locked checkout no longer matches the cart
        if cart.awaiting_delivery is not None:
            cart.pending = None
        if not cart.confirmed:
            self.carts.delete(customer_id)
            return replies.line_removed(removed, None)
        return replies.line_removed(removed, self._cart_text(cart))

    # ----------------------------
    # Checkout
    # ----------------------------
    async def begin_checkout(self, customer_id: str, customer_name: str) -> str:
        cart = self.carts.get(customer_id)
        if cart is None or not cart.confirmed:
            return replies.nothing_to_checkout()

        config = self.config_store.current()
        subtotal = cart.subtotal
        discount = compute_discount(subtotal, config.discounts)
        # a repeated "confirmar" keeps the checkout it already started
        previous = cart.awaiting_delivery
        token = previous.checkout_token if previous else uuid4().hex
        locked = AwaitingDelivery(subtotal=subtotal, discount=discount, checkout_token=token)
        cart.pending = locked

        if not config.delivery.enabled:
            return await self._place(cart, locked, customer_name, DeliveryMode.PICKUP, 0)

        self.sessions.touch(customer_id, SessionState.CONFIRMING_CHECKOUT)
        return replies.checkout_summary(
            cart.confirmed, subtotal, discount, config.business, config.delivery, self.symbol
        )

    async def resolve_delivery_choice(self, customer_id: str, customer_name: str, choice: str) -> str:
        cart = self.carts.get(customer_id)
        locked = cart.awaiting_delivery if cart else None
        if locked is None:
            return replies.no_checkout_in_progress()

        c = clean_text(choice)
        if c in PICKUP_CHOICES:
            return await self._place(cart, locked, customer_name, DeliveryMode.PICKUP, 0)
        if c in DELIVERY_CHOICES:
            fee = self.compute_delivery_fee(locked.total_after_discount)
            return await self._place(cart, locked, customer_name, DeliveryMode.DELIVERY, fee)
        return replies.invalid_delivery_choice()

    async def _place(
        self,
        cart: Cart,
        locked: AwaitingDelivery,
        customer_name: str,
        mode: DeliveryMode,
        fee: float,
    ) -> str:
        draft = OrderDraft(
            customer_id=cart.customer_id,
            customer_name=customer_name,
            lines=tuple(OrderLine.from_cart_line(line) for line in cart.confirmed),
            subtotal=locked.subtotal,
            discount=locked.discount,
            delivery_fee=fee,
            delivery_mode=mode,
            checkout_token=locked.checkout_token,
        )
        order = await self.create_order(draft)
        if order is None:
            return replies.order_failed()

        self.carts.delete(cart.customer_id)
        return replies.order_confirmed(order, self.config_store.current().business, self.symbol)

    async def create_order(self, draft: OrderDraft) -> Optional[PlacedOrder]:
        """
        Persists through the order sink. None means the order was not confirmed
        in time; a timed-out write may still commit, and retrying the same
        checkout then returns that order instead of a second one.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.orders.record, draft),
                timeout=self.persistence_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Order persistence timed out after %.1fs for %s",
                self.persistence_timeout,
                draft.customer_id,
            )
        except Exception:
            logger.exception("Order persistence failed for %s", draft.customer_id)
        return None
