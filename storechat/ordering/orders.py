# storechat/ordering/orders.py
from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ..models import Customer, Order, OrderCounter
from .cart import CartLine, Discount

logger = logging.getLogger(__name__)


class DeliveryMode(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


@dataclass(frozen=True)
class OrderLine:
    name: str
    quantity: int
    unit_price: float
    subtotal: float

    @classmethod
    def from_cart_line(cls, line: CartLine) -> "OrderLine":
        return cls(
            name=line.display_name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            subtotal=line.line_total,
        )


@dataclass(frozen=True)
class OrderDraft:
    customer_id: str
    customer_name: str
    lines: Tuple[OrderLine, ...]
    subtotal: float
    discount: Discount
    delivery_fee: float
    delivery_mode: DeliveryMode
    checkout_token: Optional[str] = None

    @property
    def total(self) -> float:
        return self.subtotal - self.discount.amount + self.delivery_fee


@dataclass(frozen=True)
class PlacedOrder:
    id: str
    customer_id: str
    customer_name: str
    created_at: datetime
    lines: Tuple[OrderLine, ...]
    subtotal: float
    discount_amount: float
    discount_percent: float
    discount_label: Optional[str]
    delivery_fee: float
    total: float
    delivery_mode: DeliveryMode
    fulfillment_status: str = "confirmed"
    payment_status: str = "pending"


@dataclass(frozen=True)
class CustomerStats:
    customer_id: str
    name: str
    order_count: int
    total_spent: float
    created_at: Optional[datetime] = None
    recent: List[PlacedOrder] = field(default_factory=list)


def format_order_id(prefix: str, number: int) -> str:
    return f"{prefix}-{number:03d}"


def _row_to_order(row: Order) -> PlacedOrder:
    lines = tuple(OrderLine(**x) for x in json.loads(row.lines_json or "[]"))
    return PlacedOrder(
        id=row.id,
        customer_id=row.customer_id,
        customer_name=row.customer_name or "",
        created_at=row.created_at,
        lines=lines,
        subtotal=row.subtotal,
        discount_amount=row.discount_amount or 0,
        discount_percent=row.discount_percent or 0,
        discount_label=row.discount_label,
        delivery_fee=row.delivery_fee or 0,
        total=row.total,
        delivery_mode=DeliveryMode(row.delivery_mode),
        fulfillment_status=row.fulfillment_status or "confirmed",
        payment_status=row.payment_status or "pending",
    )


class OrderSink:
    """
    Order numbering + persistence.

    record() is the only writer: counter bump, order insert and customer
    aggregates commit together, serialized by a process-wide lock. Blocking;
    call it from a worker thread.
    """

    def __init__(self, session_factory: sessionmaker, prefix: str = "PED") -> None:
        self._session_factory = session_factory
        self._prefix = prefix
        self._lock = threading.Lock()

    # --- the three sink operations, sharing the caller's transaction ---
    def next_order_id(self, db: Session) -> Tuple[str, int]:
        counter = db.get(OrderCounter, 1)
        if counter is None:
            counter = OrderCounter(id=1, last_number=0)
            db.add(counter)
        counter.last_number = (counter.last_number or 0) + 1
        db.flush()
        return format_order_id(self._prefix, counter.last_number), counter.last_number

    def persist(self, db: Session, order: PlacedOrder, number: int, checkout_token: Optional[str] = None) -> None:
        db.add(
            Order(
                id=order.id,
                number=number,
                customer_id=order.customer_id,
                customer_name=order.customer_name,
                created_at=order.created_at,
                lines_json=json.dumps([asdict(x) for x in order.lines], ensure_ascii=False),
                subtotal=order.subtotal,
                discount_amount=order.discount_amount,
                discount_percent=order.discount_percent,
                discount_label=order.discount_label,
                delivery_fee=order.delivery_fee,
                total=order.total,
                delivery_mode=order.delivery_mode.value,
                fulfillment_status=order.fulfillment_status,
                payment_status=order.payment_status,
                checkout_token=checkout_token or None,
            )
        )

    def update_customer_aggregates(self, db: Session, customer_id: str, name: str, order_total: float) -> None:
        customer = db.get(Customer, customer_id)
        if customer is None:
            customer = Customer(id=customer_id, name=name or "", order_count=0, total_spent=0.0)
            db.add(customer)
            logger.info("New customer registered: %s (%s)", name, customer_id)
        elif name and customer.name != name:
            customer.name = name
        customer.order_count = (customer.order_count or 0) + 1
        customer.total_spent = (customer.total_spent or 0.0) + order_total
        customer.last_order_at = datetime.now(timezone.utc)

    # --- atomic unit ---
    def record(self, draft: OrderDraft) -> PlacedOrder:
        """
        Returns the already stored order when the draft's checkout token was
        recorded before (a retry after a timed-out attempt that still committed).
        """
        with self._lock:
            db = self._session_factory()
            try:
                existing = self._by_checkout_token(db, draft.checkout_token)
                if existing is not None:
                    logger.info("Order %s already recorded for this checkout", existing.id)
                    return _row_to_order(existing)

                order_id, number = self.next_order_id(db)
                order = PlacedOrder(
                    id=order_id,
                    customer_id=draft.customer_id,
                    customer_name=draft.customer_name,
                    created_at=datetime.now(timezone.utc),
                    lines=draft.lines,
                    subtotal=draft.subtotal,
                    discount_amount=draft.discount.amount,
                    discount_percent=draft.discount.percent,
                    discount_label=draft.discount.label,
                    delivery_fee=draft.delivery_fee,
                    total=draft.total,
                    delivery_mode=draft.delivery_mode,
                )
                self.update_customer_aggregates(db, draft.customer_id, draft.customer_name, order.total)
                db.flush()
                self.persist(db, order, number, checkout_token=draft.checkout_token)
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

        logger.info("Order created: %s - %s - %s", order.id, order.total, order.customer_name)
        return order

    @staticmethod
    def _by_checkout_token(db: Session, token: Optional[str]) -> Optional[Order]:
        if not token:
            return None
        return db.scalars(select(Order).where(Order.checkout_token == token)).first()

    # --- reads ---
    def get(self, order_id: str) -> Optional[PlacedOrder]:
        with self._session_factory() as db:
            row = db.get(Order, order_id)
            return _row_to_order(row) if row else None

    def recent_orders(self, customer_id: str, limit: int = 5) -> List[PlacedOrder]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(Order)
                .where(Order.customer_id == customer_id)
                .order_by(Order.number.desc())
                .limit(limit)
            ).all()
            return [_row_to_order(r) for r in rows]

    def customer_stats(self, customer_id: str, recent: int = 5) -> Optional[CustomerStats]:
        with self._session_factory() as db:
            customer = db.get(Customer, customer_id)
            if customer is None:
                return None
            stats = CustomerStats(
                customer_id=customer.id,
                name=customer.name or "",
                order_count=customer.order_count or 0,
                total_spent=customer.total_spent or 0.0,
                created_at=customer.created_at,
            )
        if recent:
            stats = CustomerStats(**{**stats.__dict__, "recent": self.recent_orders(customer_id, recent)})
        return stats
