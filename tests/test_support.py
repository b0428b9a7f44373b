# tests/test_support.py
import json
from types import SimpleNamespace

import pytest

from conftest import make_config
from storechat.config import OrderingConfigStore, Settings
from storechat.fallback import LLMFallback, NullFallback, build_system_prompt
from storechat.ordering.cart import CartLine, Discount
from storechat.ordering.catalog import product_from_entry
from storechat.ordering.replies import cart_summary, money, multiple_options
from storechat.ratelimit import RateLimiter


# ----------------------------
# Config
# ----------------------------
def test_settings_paths(tmp_path):
    cfg = Settings(data_dir=tmp_path, catalog_file="c.json", ordering_file="o.json")
    assert cfg.catalog_path == tmp_path / "c.json"
    assert cfg.ordering_path == tmp_path / "o.json"


def test_ordering_config_reload_after_ttl(tmp_path, clock):
    path = tmp_path / "ordering.json"
    path.write_text(json.dumps({"cart": {"expiry_minutes": 20}}), encoding="utf-8")
    store = OrderingConfigStore(path, ttl_seconds=60, clock=clock)
    assert store.current().cart.expiry_minutes == 20
    assert store.current().session.expiry_minutes == 10

    path.write_text(json.dumps({"cart": {"expiry_minutes": 5}}), encoding="utf-8")
    assert store.current().cart.expiry_minutes == 20
    clock.advance(60)
    assert store.current().cart.expiry_minutes == 5


def test_ordering_config_bad_file_keeps_defaults(tmp_path, clock):
    path = tmp_path / "ordering.json"
    path.write_text(json.dumps({"discounts": {"tiers": [{"percent": "lots"}]}}), encoding="utf-8")
    store = OrderingConfigStore(path, clock=clock)
    assert store.current().discounts.enabled is False
    assert store.current().delivery.enabled is False


# ----------------------------
# Rate limiting
# ----------------------------
def test_rate_limiter_window(clock):
    limiter = RateLimiter(max_messages=2, window_seconds=60, block_seconds=300, clock=clock)
    assert limiter.check("a").allowed
    clock.advance(59)
    assert limiter.check("a").allowed
    clock.advance(1)
    # the first hit left the window
    assert limiter.check("a").allowed
    assert limiter.check("b").allowed


def test_rate_limiter_blocks(clock):
    limiter = RateLimiter(max_messages=2, window_seconds=60, block_seconds=300, clock=clock)
    limiter.check("a")
    limiter.check("a")

    decision = limiter.check("a")
    assert (decision.allowed, decision.just_blocked, decision.minutes_left) == (False, True, 5)
    assert limiter.is_blocked("a")

    clock.advance(299)
    assert limiter.check("a").minutes_left == 1
    clock.advance(1)
    assert limiter.check("a").allowed
    limiter.sweep()


# ----------------------------
# Fallback
# ----------------------------
class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def fake_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


PRODUCTS = [
    product_from_entry("libreria", "cuadernos", "cuaderno_a4", {"price": 1500, "unit": "unidad"}),
    product_from_entry("cotillon", "globos", "globo_metalizado", {"price_from": 900, "in_stock": False}),
]


def test_system_prompt_lists_products_and_business():
    prompt = build_system_prompt(make_config().business, PRODUCTS)
    assert 'asistente virtual para "Librería El Sol"' in prompt
    assert "✅ Cuaderno A4: $1500 (unidad)" in prompt
    assert "❌ Globo Metalizado: desde $900" in prompt
    assert "📍 Dirección: Av. San Martín 1234" in prompt


def test_system_prompt_without_products():
    assert "No hay productos disponibles" in build_system_prompt(make_config().business, [])


@pytest.mark.asyncio
async def test_llm_fallback_returns_model_text():
    completions = FakeCompletions(content="  Tenemos cuadernos A4 a $1500 📚  ")
    fallback = LLMFallback(api_key="sk-test", model="gpt-4o-mini", client=fake_client(completions))

    answer = await fallback.ask("que me recomendas?", {"business": make_config().business, "products": PRODUCTS, "customer_name": "Ana"})
    assert answer == "Tenemos cuadernos A4 a $1500 📚"
    assert completions.kwargs["model"] == "gpt-4o-mini"
    system, user = completions.kwargs["messages"]
    assert system["role"] == "system"
    assert user["content"] == "Cliente: Ana\nMensaje: que me recomendas?"


@pytest.mark.asyncio
@pytest.mark.parametrize("completions", [FakeCompletions(content=""), FakeCompletions(error=RuntimeError("503"))])
async def test_llm_fallback_without_answer(completions):
    fallback = LLMFallback(api_key="sk-test", client=fake_client(completions))
    assert await fallback.ask("hola?", {}) is None


@pytest.mark.asyncio
async def test_null_fallback():
    assert await NullFallback().ask("hola", {}) is None


# ----------------------------
# Replies
# ----------------------------
def test_money():
    assert money(1500.0) == "$1500"
    assert money(12.5) == "$12.5"
    assert money(3, symbol="€") == "€3"


def test_cart_summary_shows_discount_and_total():
    line = CartLine(
        name="cuaderno_a4",
        display_name="Cuaderno A4",
        quantity=4,
        unit_price=1500,
        in_stock=True,
        category="libreria",
        subcategory="cuadernos",
    )
    text = cart_summary([line], 6000, Discount(amount=600, percent=10, label="10% OFF"))
    assert "💰 Subtotal: $6000" in text
    assert "🎉 10% OFF" in text
    assert "🎁 Descuento: -$600" in text
    assert "*TOTAL: $5400*" in text
    assert '"quitar [número]"' in text


def test_multiple_options_marks_out_of_stock():
    lines = [
        CartLine("pelota", "Pelota", 1, 2000, True, "deportes", "pelotas"),
        CartLine("pelota_chica", "Pelota Chica", 1, 1800, False, "jugueteria", "pelotas"),
    ]
    text = multiple_options(lines)
    assert "1. ✅ Pelota" in text
    assert "2. ❌ Pelota Chica" in text
    assert "$1800 (SIN STOCK)" in text
    assert "... y" not in text
