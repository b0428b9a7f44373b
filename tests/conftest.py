# tests/conftest.py
from __future__ import annotations

import copy

import pytest

from storechat.config import (
    BusinessInfo,
    DeliveryConfig,
    DiscountConfig,
    DiscountTier,
    OrderingConfig,
    OrderingConfigStore,
)
from storechat.db import init_db, make_engine, make_session_factory
from storechat.ordering.brain import ConversationEngine, InboundMessage
from storechat.ordering.cart import CartStore
from storechat.ordering.catalog import CatalogStore
from storechat.ordering.index import CatalogIndex
from storechat.ordering.orders import OrderSink
from storechat.ordering.session import SessionStore
from storechat.ordering.workflow import CartWorkflow

CATALOG = {
    "libreria": {
        "cuadernos": {
            "cuaderno_a4": {"price": 1500, "unit": "unidad"},
        },
        "escritura": {
            "lapicera_azul": {"price": 350},
            "lapicera_roja": {"price": 400},
        },
    },
    "deportes": {
        "pelotas": {
            "pelota": {"price": 2000, "in_stock": True},
        },
    },
    "jugueteria": {
        "pelotas": {
            "pelota": {"price": 1800, "in_stock": False},
        },
    },
    "regaleria": {
        "peluches": {
            "oso_de_peluche": {"price": 5200, "barcode": "7791234"},
        },
    },
}


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(
    discounts: bool = True,
    delivery: bool = True,
    fee: float = 800,
    free_from: float = 5000,
) -> OrderingConfig:
    return OrderingConfig(
        business=BusinessInfo(
            name="Librería El Sol",
            address="Av. San Martín 1234",
            hours="Lunes a Viernes 9 a 19",
            payment_methods="Efectivo y transferencia",
            whatsapp="+54 9 11 5555-0000",
            phone="011 4555-0000",
        ),
        discounts=DiscountConfig(
            enabled=discounts,
            tiers=[DiscountTier(minimum=5000, percent=10, label="10% OFF desde $5000")],
        ),
        delivery=DeliveryConfig(enabled=delivery, fee=fee, free_from=free_from),
    )


def msg(text: str, customer_id: str = "5491100000001", name: str = "Ana", timestamp: float = 10.0) -> InboundMessage:
    return InboundMessage(customer_id=customer_id, display_name=name, text=text, timestamp=timestamp)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog_store(clock):
    return CatalogStore(initial=copy.deepcopy(CATALOG), clock=clock)


@pytest.fixture
def index(catalog_store):
    return CatalogIndex(catalog_store)


@pytest.fixture
def config_store(clock):
    return OrderingConfigStore(initial=make_config(), clock=clock)


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def orders(session_factory):
    return OrderSink(session_factory)


@pytest.fixture
def sessions(clock):
    return SessionStore(expiry_seconds=600, clock=clock)


@pytest.fixture
def carts(clock):
    return CartStore(expiry_seconds=900, clock=clock)


@pytest.fixture
def workflow(carts, sessions, config_store, orders):
    return CartWorkflow(carts, sessions, config_store, orders, persistence_timeout=2.0)


@pytest.fixture
def engine(index, workflow, config_store, orders):
    return ConversationEngine(
        index=index,
        workflow=workflow,
        config_store=config_store,
        orders=orders,
        commercial_filter=False,
        started_at=0.0,
    )
