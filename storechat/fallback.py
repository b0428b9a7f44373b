# storechat/fallback.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional, Protocol

from openai import AsyncOpenAI

from .config import BusinessInfo
from .ordering.catalog import Product
from .ordering.nlp import display_name

logger = logging.getLogger(__name__)

MAX_PRODUCTS_IN_PROMPT = 50

SYSTEM = """Eres un asistente virtual para "{name}".

PRODUCTOS DISPONIBLES:
{products}

INFORMACIÓN DEL NEGOCIO:
📍 Dirección: {address}
🕐 Horarios: {hours}
💳 Medios de pago: {payment_methods}
📞 WhatsApp: {whatsapp}
☎️ Teléfono: {phone}

INSTRUCCIONES IMPORTANTES:
- Sé amable, profesional y conciso
- Responde en máximo 3-4 líneas
- Si preguntan por productos, menciona 5-6 opciones relevantes con sus precios exactos
- Si quieren hacer un pedido, explícales: "Para hacer un pedido, escribe por ejemplo: Quiero 2 cuadernos"
- NO inventes productos que no están en la lista
- Usa emojis moderadamente (1-2 por mensaje)
- Nunca menciones que eres una IA o un bot
"""


def _product_hints(products: Iterable[Product], symbol: str = "$") -> str:
    # Keep hints small to control cost + latency.
    lines = []
    current_category = None
    for p in products:
        if len(lines) >= MAX_PRODUCTS_IN_PROMPT:
            break
        if p.category != current_category:
            current_category = p.category
            lines.append(f"\n📂 {display_name(p.category).upper()}:")
        stock = "✅" if p.in_stock else "❌"
        unit = f" ({p.unit})" if p.unit else ""
        price = f"desde {symbol}{p.unit_price:g}" if p.price_from is not None else f"{symbol}{p.unit_price:g}"
        lines.append(f"  {stock} {p.display_name}: {price}{unit}")
    return "\n".join(lines).strip() or "No hay productos disponibles en este momento."


def build_system_prompt(business: BusinessInfo, products: Iterable[Product], symbol: str = "$") -> str:
    return SYSTEM.format(
        name=business.name,
        products=_product_hints(products, symbol),
        address=business.address,
        hours=business.hours,
        payment_methods=business.payment_methods,
        whatsapp=business.whatsapp,
        phone=business.phone,
    )


class Fallback(Protocol):
    """Answers free text the intent table could not place, or returns None."""

    async def ask(self, text: str, context: Dict[str, Any]) -> Optional[str]:
        ...


class NullFallback:
    """Used when the language model is disabled: never has an answer."""

    async def ask(self, text: str, context: Dict[str, Any]) -> Optional[str]:
        return None


class LLMFallback:
    """
    Free-text answers from an OpenAI chat model, used only after every
    structured intent failed. Any error is "no answer"; the engine also
    bounds the whole call with its own timeout.

    context keys: business (BusinessInfo), products (iterable of Product),
    customer_name (str).
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        timeout_seconds: float = 8.0,
        currency_symbol: str = "$",
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.symbol = currency_symbol
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)

    async def ask(self, text: str, context: Dict[str, Any]) -> Optional[str]:
        system = build_system_prompt(
            context.get("business") or BusinessInfo(),
            context.get("products") or [],
            self.symbol,
        )
        user = text
        if context.get("customer_name"):
            user = f"Cliente: {context['customer_name']}\nMensaje: {text}"

        try:
            resp = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                max_tokens=300,
                temperature=0.7,
            )
        except Exception:
            logger.exception("LLM fallback failed")
            return None

        if not resp.choices:
            return None
        answer = (resp.choices[0].message.content or "").strip()
        return answer or None
