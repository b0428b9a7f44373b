# storechat/models.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text

from .db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Customer(Base):
    __tablename__ = "customers"
    id = Column(String, primary_key=True)  # transport contact id
    name = Column(String, nullable=False, default="")
    created_at = Column(DateTime, default=_utcnow)
    last_order_at = Column(DateTime, nullable=True)
    order_count = Column(Integer, nullable=False, default=0)
    total_spent = Column(Float, nullable=False, default=0.0)


class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True)  # PED-001
    number = Column(Integer, unique=True, index=True, nullable=False)
    customer_id = Column(String, ForeignKey("customers.id"), index=True, nullable=False)
    customer_name = Column(String, default="")
    created_at = Column(DateTime, default=_utcnow)
    lines_json = Column(Text, default="[]")
    subtotal = Column(Float, nullable=False)
    discount_amount = Column(Float, default=0.0)
    discount_percent = Column(Float, default=0.0)
    discount_label = Column(String, nullable=True)
    delivery_fee = Column(Float, default=0.0)
    total = Column(Float, nullable=False)
    delivery_mode = Column(String, nullable=False)  # pickup | delivery
    checkout_token = Column(String, unique=True, index=True, nullable=True)
    fulfillment_status = Column(String, default="confirmed")
    payment_status = Column(String, default="pending")


class OrderCounter(Base):
    __tablename__ = "order_counter"
    id = Column(Integer, primary_key=True)
    last_number = Column(Integer, nullable=False, default=0)
