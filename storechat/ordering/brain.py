# storechat/ordering/brain.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..config import OrderingConfigStore
from ..fallback import Fallback, NullFallback
from ..ratelimit import RateLimiter
from . import replies
from .cart import Cart, CartStore
from .catalog import Product
from .index import CatalogIndex
from .nlp import (
    CANCEL_CART_RE,
    CATALOG_RE,
    CHECKOUT_RE,
    CONTACT_RE,
    DELIVERY_CHOICE_RE,
    GREETING_RE,
    HISTORY_RE,
    HOURS_RE,
    LOCATION_RE,
    NO_RE,
    PAYMENT_RE,
    REMOVE_LINE_RE,
    SHOW_CART_RE,
    STOCK_RE,
    YES_RE,
    clean_text,
    extract_quantity,
    first_int,
    is_commercial_message,
)
from .orders import CustomerStats, OrderSink
from .session import CustomerLocks, SessionStore
from .workflow import CartWorkflow

logger = logging.getLogger(__name__)


class InboundMessage(BaseModel):
    customer_id: str
    display_name: str = ""
    text: str = ""
    timestamp: float = Field(default_factory=time.time)


@dataclass
class Turn:
    customer_id: str
    customer_name: str
    raw: str
    text: str
    cart: Optional[Cart]
    _hits: Optional[List[Product]] = None

    def hits(self, index: CatalogIndex) -> List[Product]:
        if self._hits is None:
            self._hits = index.current.search(self.text)
        return self._hits


Predicate = Callable[[Turn], bool]
Handler = Callable[[Turn], Awaitable[Optional[str]]]


class ConversationEngine:
    """
    Routes one inbound message to a reply.

    Guards (stale, empty, paused replies, ignored contacts, rate limit,
    commercial filter) run first; then the intent table is walked top to
    bottom and the first handler that returns text wins. All work for one customer happens under that customer's lock.
    """

    def __init__(
        self,
        index: CatalogIndex,
        workflow: CartWorkflow,
        config_store: OrderingConfigStore,
        orders: OrderSink,
        fallback: Optional[Fallback] = None,
        rate_limiter: Optional[RateLimiter] = None,
        commercial_filter: bool = True,
        fallback_timeout: float = 8.0,
        lookup_timeout: float = 5.0,
        started_at: Optional[float] = None,
    ) -> None:
        self.index = index
        self.workflow = workflow
        self.sessions: SessionStore = workflow.sessions
        self.carts: CartStore = workflow.carts
        self.config_store = config_store
        self.orders = orders
        self.fallback: Fallback = fallback or NullFallback()
        self.rate_limiter = rate_limiter
        self.commercial_filter = commercial_filter
        self.fallback_timeout = fallback_timeout
        self.lookup_timeout = lookup_timeout
        self.started_at = time.time() if started_at is None else started_at
        self.locks = CustomerLocks()
        self.intents: List[Tuple[str, Predicate, Handler]] = self._build_intents()

    # ----------------------------
    # Intent table (evaluated in order)
    # ----------------------------
    def _build_intents(self) -> List[Tuple[str, Predicate, Handler]]:
        return [
            ("select_candidate", lambda t: bool(t.cart and t.cart.selection), self._select_candidate),
            ("confirm_staged", lambda t: bool(t.cart and t.cart.staged) and bool(YES_RE.match(t.text)), self._confirm_staged),
            ("discard_staged", lambda t: bool(t.cart and t.cart.staged) and bool(NO_RE.match(t.text)), self._discard_staged),
            ("show_cart", self._is_show_cart, self._show_cart),
            ("checkout", lambda t: bool(CHECKOUT_RE.match(t.text)), self._checkout),
            ("cancel_cart", lambda t: bool(CANCEL_CART_RE.search(t.text)), self._cancel_cart),
            ("remove_line", lambda t: bool(REMOVE_LINE_RE.search(t.text)) and first_int(t.text) is not None, self._remove_line),
            ("delivery_choice", lambda t: bool(t.cart and t.cart.awaiting_delivery) and bool(DELIVERY_CHOICE_RE.match(t.text)), self._delivery_choice),
            ("catalog", lambda t: bool(CATALOG_RE.search(t.text)), self._catalog),
            ("greeting", lambda t: bool(GREETING_RE.match(t.text)), self._greeting),
            ("order_history", lambda t: bool(HISTORY_RE.search(t.text)), self._order_history),
            ("hours", lambda t: bool(HOURS_RE.search(t.text)), self._info(replies.hours)),
            ("location", lambda t: bool(LOCATION_RE.search(t.text)), self._info(replies.location)),
            ("payment", lambda t: bool(PAYMENT_RE.search(t.text)), self._info(replies.payment)),
            ("contact", lambda t: bool(CONTACT_RE.search(t.text)), self._info(replies.contact)),
            ("detect_products", lambda t: bool(t.hits(self.index)), self._detect_products),
            ("stock_inquiry", lambda t: bool(STOCK_RE.search(t.text)), self._stock_inquiry),
            ("fallback", lambda t: True, self._fallback),
            ("not_understood", lambda t: True, self._not_understood),
        ]

    @staticmethod
    def _is_show_cart(t: Turn) -> bool:
        # "vaciar carrito" / "quitar 1 del carrito" belong to the cart edits
        if CANCEL_CART_RE.search(t.text) or REMOVE_LINE_RE.search(t.text):
            return False
        return bool(SHOW_CART_RE.search(t.text))

    def classify(self, turn: Turn) -> List[str]:
        """Names of every intent whose predicate holds, in priority order."""
        return [name for name, pred, _ in self.intents if pred(turn)]

    # ----------------------------
    # Entry point
    # ----------------------------
    async def handle(self, msg: InboundMessage) -> Optional[str]:
        """Reply text, or None when the message is ignored."""
        cid = msg.customer_id
        if msg.timestamp < self.started_at:
            logger.debug("Ignoring stale message from %s", cid)
            self.sessions.clear(cid)
            return None

        raw = (msg.text or "").strip()
        if not raw:
            return None

        async with self.locks.hold(cid):
            try:
                return await self._handle_locked(msg, raw)
            except Exception:
                logger.exception("Error processing message from %s", cid)
                return replies.generic_error()

    async def _handle_locked(self, msg: InboundMessage, raw: str) -> Optional[str]:
        cid = msg.customer_id

        config = self.config_store.current()
        if not config.auto_replies_enabled:
            logger.debug("Auto replies paused, ignoring message from %s", cid)
            return None
        if cid in config.ignored_contacts:
            logger.debug("Ignoring message from ignored contact %s", cid)
            return None

        if self.rate_limiter is not None:
            decision = self.rate_limiter.check(cid)
            if not decision.allowed:
                return replies.rate_limited(decision.minutes_left, decision.just_blocked)

        turn = Turn(
            customer_id=cid,
            customer_name=msg.display_name or "",
            raw=raw,
            text=clean_text(raw),
            cart=self.carts.get(cid),
        )

        if self.commercial_filter and turn.cart is None and not self.sessions.is_active(cid):
            if not is_commercial_message(turn.text, product_hit=bool(turn.hits(self.index))):
                logger.debug("Ignoring non-commercial message from %s", cid)
                return None

        self.sessions.touch(cid)

        for name, predicate, handler in self.intents:
            if not predicate(turn):
                continue
            reply = await handler(turn)
            if reply is not None:
                logger.debug("Intent %s resolved for %s", name, cid)
                return reply
        return None

    # ----------------------------
    # Handlers
    # ----------------------------
    async def _select_candidate(self, t: Turn) -> Optional[str]:
        return self.workflow.select_candidate(t.customer_id, t.text)

    async def _confirm_staged(self, t: Turn) -> Optional[str]:
        return self.workflow.confirm_staged(t.customer_id)

    async def _discard_staged(self, t: Turn) -> Optional[str]:
        return self.workflow.discard_staged(t.customer_id)

    async def _show_cart(self, t: Turn) -> Optional[str]:
        return self.workflow.show_cart(t.customer_id)

    async def _checkout(self, t: Turn) -> Optional[str]:
        reply = await self.workflow.begin_checkout(t.customer_id, t.customer_name)
        self._clear_if_ordered(t)
        return reply

    async def _cancel_cart(self, t: Turn) -> Optional[str]:
        return self.workflow.cancel_cart(t.customer_id)

    async def _remove_line(self, t: Turn) -> Optional[str]:
        return self.workflow.remove_line(t.customer_id, t.text)

    async def _delivery_choice(self, t: Turn) -> Optional[str]:
        reply = await self.workflow.resolve_delivery_choice(t.customer_id, t.customer_name, t.text)
        self._clear_if_ordered(t)
        return reply

    def _clear_if_ordered(self, t: Turn) -> None:
        # the cart only disappears during checkout when the order was recorded
        if t.cart is not None and self.carts.get(t.customer_id) is None:
            self.sessions.clear(t.customer_id)

    async def _catalog(self, t: Turn) -> Optional[str]:
        return replies.catalog_overview(self.index.current.categories())

    async def _greeting(self, t: Turn) -> Optional[str]:
        stats = await self._customer_stats(t.customer_id)
        return replies.greeting(self.config_store.current().business, stats)

    async def _order_history(self, t: Turn) -> Optional[str]:
        try:
            stats = await asyncio.wait_for(
                asyncio.to_thread(self.orders.customer_stats, t.customer_id),
                timeout=self.lookup_timeout,
            )
        except Exception:
            logger.exception("Order history lookup failed for %s", t.customer_id)
            return replies.generic_error()
        return replies.order_history(stats, self.workflow.symbol)

    async def _customer_stats(self, customer_id: str) -> Optional[CustomerStats]:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.orders.customer_stats, customer_id, 0),
                timeout=self.lookup_timeout,
            )
        except Exception:
            logger.exception("Customer lookup failed for %s", customer_id)
            return None

    def _info(self, render: Callable[..., str]) -> Handler:
        async def handler(t: Turn) -> Optional[str]:
            return render(self.config_store.current().business)

        return handler

    async def _detect_products(self, t: Turn) -> Optional[str]:
        return self.workflow.stage_detected_products(t.customer_id, t.hits(self.index), extract_quantity(t.text))

    async def _stock_inquiry(self, t: Turn) -> Optional[str]:
        return replies.stock_info()

    async def _fallback(self, t: Turn) -> Optional[str]:
        context = {
            "business": self.config_store.current().business,
            "products": self.index.current.products(),
            "customer_name": t.customer_name,
        }
        try:
            answer = await asyncio.wait_for(self.fallback.ask(t.raw, context), timeout=self.fallback_timeout)
        except asyncio.TimeoutError:
            logger.warning("Fallback timed out after %.1fs", self.fallback_timeout)
            return None
        except Exception:
            logger.exception("Fallback failed")
            return None
        return answer or None

    async def _not_understood(self, t: Turn) -> Optional[str]:
        return replies.not_understood()

    # ----------------------------
    # Housekeeping
    # ----------------------------
    def sweep(self) -> None:
        busy = self.locks.busy()
        sessions = self.sessions.sweep(skip=busy)
        carts = self.carts.sweep(skip=busy)
        if self.rate_limiter is not None:
            self.rate_limiter.sweep()
        self.locks.prune()
        if sessions or carts:
            logger.info("Sweep removed %d session(s), %d cart(s)", len(sessions), len(carts))
