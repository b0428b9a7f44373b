# storechat/ordering/replies.py
from __future__ import annotations

from typing import Optional, Sequence

from ..config import BusinessInfo, DeliveryConfig
from .cart import CartLine, Discount
from .index import CategoryInfo
from .nlp import display_name
from .orders import CustomerStats, DeliveryMode, PlacedOrder

RULE = "━━━━━━━━━━━━━━━━━━━━━"
MAX_LISTED = 10

CATEGORY_EMOJIS = {
    "libreria": "📚",
    "papeleria": "📝",
    "cotillon": "🎉",
    "jugueteria": "🧸",
    "regaleria": "🎁",
    "bazar": "🏠",
    "golosinas": "🍬",
    "bebidas": "🥤",
}

ORDER_EXAMPLE = '"Quiero 2 cuadernos"'


def money(amount: float, symbol: str = "$") -> str:
    """1500.0 -> '$1500', 12.5 -> '$12.5'"""
    if float(amount).is_integer():
        return f"{symbol}{int(amount)}"
    return f"{symbol}{round(float(amount), 2)}"


def _stock_emoji(in_stock: bool) -> str:
    return "✅" if in_stock else "❌"


def _more(total: int, shown: int = MAX_LISTED) -> str:
    return f"... y {total - shown} más\n\n" if total > shown else ""


# ----------------------------
# Product detection
# ----------------------------
def nothing_found() -> str:
    return (
        "🤔 No encontré productos específicos en tu mensaje.\n\n"
        "Intenta escribir algo como:\n"
        '"Quiero 2 cuadernos A4"\n'
        '"Dame 5 lapiceras"\n'
        '"Necesito 3 globos"'
    )


def multiple_options(candidates: Sequence[CartLine], symbol: str = "$") -> str:
    out = f"🔍 *Encontré {len(candidates)} productos que coinciden:*\n\n"
    for i, line in enumerate(candidates[:MAX_LISTED], start=1):
        out += f"{i}. {_stock_emoji(line.in_stock)} {line.display_name}\n"
        out += f"   💰 {money(line.unit_price, symbol)}{'' if line.in_stock else ' (SIN STOCK)'}\n"
        out += f"   📂 {display_name(line.category)}\n\n"
    out += _more(len(candidates))
    out += f"{RULE}\n\n"
    out += "Por favor, especifica cuál quieres:\n"
    out += '• Escribe el *número* (ej: "1")\n'
    out += '• O escribe más detalles (ej: "lapicera azul")\n'
    out += '• O escribe *"cancelar"* para buscar otra cosa'
    return out


def staged_summary(lines: Sequence[CartLine], symbol: str = "$") -> str:
    out = "🔍 *Encontré estos productos:*\n\n"
    for i, line in enumerate(lines, start=1):
        out += f"{i}. {_stock_emoji(line.in_stock)} {line.display_name}\n"
        out += f"   Cantidad: {line.quantity}\n"
        out += f"   Precio unitario: {money(line.unit_price, symbol)}\n"
        out += f"   Subtotal: {money(line.line_total, symbol)}\n\n"
    if any(not line.in_stock for line in lines):
        out += "⚠️ ATENCIÓN: Algunos productos están SIN STOCK\n\n"
    out += "¿Es correcto este pedido?\n\n"
    out += '• Escribe *"si"* para agregarlo al carrito\n'
    out += '• Escribe *"no"* para cancelar'
    return out


def invalid_option() -> str:
    return "❌ Opción no válida. Escribe el número del producto que deseas."


def search_cancelled() -> str:
    return "❌ Búsqueda cancelada.\n\nPuedes hacer otra búsqueda cuando quieras."


# ----------------------------
# Cart
# ----------------------------
def nothing_staged() -> str:
    return f"❌ No hay productos pendientes para agregar.\n\nEscribe tu pedido, ejemplo: {ORDER_EXAMPLE}"


def out_of_stock(lines: Sequence[CartLine]) -> str:
    out = "❌ No puedo agregar estos productos porque están SIN STOCK:\n\n"
    for line in lines:
        out += f"• {line.display_name}\n"
    out += "\n¿Deseas continuar solo con los productos disponibles? (si/no)"
    return out


def added_to_cart(cart_text: str) -> str:
    return (
        "✅ *Productos agregados al carrito*\n\n"
        f"{cart_text}"
        "\n\n💡 ¿Deseas agregar más productos?\n"
        '• Escribe otro pedido (ej: "3 lapiceras")\n'
        '• O escribe *"confirmar"* para finalizar'
    )


def staged_discarded() -> str:
    return "👌 Listo, no agregué esos productos.\n\n¿Buscas algo más?"


def empty_cart() -> str:
    return (
        "🛒 Tu carrito está vacío\n\n"
        "Para hacer un pedido, escribe por ejemplo:\n"
        f'{ORDER_EXAMPLE} o "Dame 5 lapiceras"'
    )


def cart_summary(
    lines: Sequence[CartLine],
    subtotal: float,
    discount: Discount,
    symbol: str = "$",
    with_options: bool = True,
) -> str:
    if not lines:
        return empty_cart()

    out = f"🛒 *TU CARRITO*\n{RULE}\n\n"
    for i, line in enumerate(lines, start=1):
        out += f"{i}. {line.display_name}\n"
        out += f"   {line.quantity} x {money(line.unit_price, symbol)} = {money(line.line_total, symbol)}\n\n"
    out += f"{RULE}\n"
    out += f"💰 Subtotal: {money(subtotal, symbol)}\n"
    if discount.amount > 0:
        if discount.label:
            out += f"🎉 {discount.label}\n"
        out += f"🎁 Descuento: -{money(discount.amount, symbol)}\n"
    out += f"{RULE}\n"
    out += f"💰 *TOTAL: {money(subtotal - discount.amount, symbol)}*"
    if with_options:
        out += "\n\n📝 Opciones:\n"
        out += '• *"confirmar"* - Finalizar pedido\n'
        out += '• *"quitar [número]"* - Eliminar producto\n'
        out += '• *"cancelar"* - Vaciar carrito'
    return out


def cart_already_empty() -> str:
    return "🛒 Tu carrito ya está vacío"


def cart_cancelled() -> str:
    return f"✅ Carrito vaciado correctamente\n\nPara hacer un nuevo pedido, escribe por ejemplo:\n{ORDER_EXAMPLE}"


def invalid_line_number(cart_text: str) -> str:
    return f"❌ Número de producto inválido\n\n{cart_text}"


def line_removed(line: CartLine, cart_text: Optional[str]) -> str:
    out = f"✅ Eliminado: {line.display_name} x{line.quantity}\n\n"
    return out + (cart_text if cart_text else "🛒 Tu carrito está vacío")


# ----------------------------
# Checkout
# ----------------------------
def nothing_to_checkout() -> str:
    return f"❌ No tienes productos en el carrito.\n\nPara hacer un pedido, escribe por ejemplo:\n{ORDER_EXAMPLE}"


def checkout_summary(
    lines: Sequence[CartLine],
    subtotal: float,
    discount: Discount,
    business: BusinessInfo,
    delivery: DeliveryConfig,
    symbol: str = "$",
) -> str:
    out = f"📋 *RESUMEN DE TU PEDIDO*\n{RULE}\n\n"
    for i, line in enumerate(lines, start=1):
        out += f"{i}. {line.display_name} x{line.quantity}\n"
        out += f"   {money(line.line_total, symbol)}\n\n"
    out += f"{RULE}\n"
    out += f"💰 Subtotal: {money(subtotal, symbol)}\n"
    if discount.amount > 0:
        out += f"🎁 Descuento ({discount.percent:g}%): -{money(discount.amount, symbol)}\n"
    total = subtotal - discount.amount
    out += f"{RULE}\n"
    out += f"💰 *TOTAL: {money(total, symbol)}*\n\n"

    out += "🚚 *¿Cómo lo querés recibir?*\n\n"
    out += "1️⃣ *Retiro en local* (Gratis)\n"
    if business.address:
        out += f"   📍 {business.address}\n"
    if business.hours:
        out += f"   🕐 {business.hours}\n"
    out += "\n"
    if delivery.free_from is not None and total >= delivery.free_from:
        out += "2️⃣ *Delivery* (GRATIS por tu compra)\n\n"
    else:
        out += f"2️⃣ *Delivery* (+{money(delivery.fee, symbol)})\n\n"
    out += 'Responde *"1"* o *"2"* para continuar'
    return out


def invalid_delivery_choice() -> str:
    return '❌ Opción no válida.\n\nResponde *"1"* para retiro o *"2"* para delivery'


def no_checkout_in_progress() -> str:
    return '❌ No hay un pedido esperando forma de entrega.\n\nEscribe *"confirmar"* para finalizar tu carrito.'


def order_confirmed(order: PlacedOrder, business: BusinessInfo, symbol: str = "$") -> str:
    out = f"✅ *PEDIDO CONFIRMADO*\n{RULE}\n\n"
    if order.delivery_mode == DeliveryMode.PICKUP:
        out += "🏪 *Retiro en local*\n"
        if business.address:
            out += f"📍 {business.address}\n"
        if business.hours:
            out += f"🕐 {business.hours}\n"
    else:
        out += "🚚 *Delivery*\n"
        if order.delivery_fee > 0:
            out += f"Costo de envío: {money(order.delivery_fee, symbol)}\n"
        else:
            out += "🎉 Envío GRATIS por tu compra\n"
    out += "\n"

    for i, line in enumerate(order.lines, start=1):
        out += f"{i}. {line.name} x{line.quantity} - {money(line.subtotal, symbol)}\n"
    out += f"\n{RULE}\n"
    out += f"💰 Subtotal: {money(order.subtotal, symbol)}\n"
    if order.discount_amount > 0:
        out += f"🎁 Descuento: -{money(order.discount_amount, symbol)}\n"
    if order.delivery_fee > 0:
        out += f"🚚 Delivery: +{money(order.delivery_fee, symbol)}\n"
    out += f"{RULE}\n"
    out += f"💰 *TOTAL: {money(order.total, symbol)}*\n\n"

    if business.payment_methods:
        out += f"💳 *Medios de pago:*\n{business.payment_methods}\n\n"
    out += f"📄 Número de pedido: *#{order.id}*\n\n"
    out += "🙏 ¡Gracias por tu compra!\n"
    out += "Te contactaremos pronto para coordinar."
    return out


def order_failed() -> str:
    return "❌ No pudimos procesar tu pedido en este momento.\n\nTu carrito sigue guardado, intenta nuevamente en unos minutos."


# ----------------------------
# Informational
# ----------------------------
def catalog_overview(categories: Sequence[CategoryInfo]) -> str:
    if not categories:
        return "📋 Por el momento no tenemos productos cargados."
    out = f"📋 *NUESTROS PRODUCTOS*\n{RULE}\n\n"
    for cat in categories:
        emoji = CATEGORY_EMOJIS.get(cat.name, "📦")
        out += f"{emoji} *{display_name(cat.name).upper()}* ({cat.product_count})\n"
        subs = [display_name(s) for s in cat.subcategories]
        if subs:
            out += f"   {', '.join(subs)}\n"
        out += "\n"
    out += f"{RULE}\n"
    out += "Escribe el producto que buscas para ver precios y stock.\n"
    out += f"Ejemplo: {ORDER_EXAMPLE}"
    return out


def greeting(business: BusinessInfo, stats: Optional[CustomerStats] = None) -> str:
    returning = stats is not None and stats.order_count > 0
    out = "¡Hola"
    if returning:
        out += " de nuevo"
    out += f"! 👋 Bienvenido a *{business.name}*\n\n"
    if returning:
        out += f"📊 Has realizado {stats.order_count} pedido(s) con nosotros 🎉\n\n"
    out += (
        "Te puedo ayudar con:\n"
        "📋 Lista de precios\n"
        "🕐 Horarios\n"
        "📍 Ubicación\n"
        "📦 Stock de productos\n"
        "🛒 Hacer un pedido\n"
        "💳 Medios de pago\n"
    )
    if returning:
        out += "📜 Ver mis pedidos anteriores\n"
    out += "\n¿Qué necesitas?"
    return out


def order_history(stats: Optional[CustomerStats], symbol: str = "$") -> str:
    if stats is None or stats.order_count == 0:
        return (
            "📜 *Tu Historial*\n\n"
            "Aún no has realizado pedidos con nosotros.\n\n"
            "¿Te gustaría hacer tu primer pedido? 🛒\n"
            f"Escribe por ejemplo: {ORDER_EXAMPLE}"
        )

    out = f"📜 *TU HISTORIAL DE PEDIDOS*\n{RULE}\n\n"
    out += f"👤 Cliente: {stats.name}\n"
    if stats.created_at is not None:
        out += f"📅 Cliente desde: {stats.created_at:%d/%m/%Y}\n"
    out += f"📦 Total de pedidos: {stats.order_count}\n"
    out += f"💰 Total gastado: {money(stats.total_spent, symbol)}\n\n"
    out += f"{RULE}\n\n"

    if stats.recent:
        out += "📋 *ÚLTIMOS PEDIDOS:*\n\n"
        for i, order in enumerate(stats.recent, start=1):
            out += f"{i}. *{order.id}* - {order.created_at:%d/%m/%Y}\n"
            out += f"   💰 Total: {money(order.total, symbol)}\n"
            out += "   📦 Productos:\n"
            for line in order.lines[:3]:
                out += f"      • {line.name} x{line.quantity}\n"
            if len(order.lines) > 3:
                out += f"      • ... y {len(order.lines) - 3} más\n"
            mode = "Delivery" if order.delivery_mode == DeliveryMode.DELIVERY else "Retiro"
            out += f"   🚚 Entrega: {mode}\n"
            out += f"   ✅ Estado: {order.fulfillment_status}\n\n"
        if stats.order_count > len(stats.recent):
            out += f"... y {stats.order_count - len(stats.recent)} pedidos más\n\n"

    out += f"{RULE}\n"
    out += "🙏 ¡Gracias por tu preferencia!\n\n"
    out += "¿Deseas hacer un nuevo pedido? 🛒"
    return out


def hours(business: BusinessInfo) -> str:
    return f"🕐 *Horarios de Atención*\n\n{business.hours or 'Consultanos por este medio.'}"


def location(business: BusinessInfo) -> str:
    return f"📍 *Nuestra Ubicación*\n\n{business.address or 'Consultanos por este medio.'}\n\nTe esperamos! 😊"


def payment(business: BusinessInfo) -> str:
    return f"💳 *Medios de Pago:*\n\n{business.payment_methods or 'Consultanos por este medio.'}"


def contact(business: BusinessInfo) -> str:
    return (
        "📞 *Contacto*\n\n"
        f"WhatsApp: {business.whatsapp}\n"
        f"Teléfono: {business.phone}\n\n"
        "¡Estamos para ayudarte! 😊"
    )


def stock_info() -> str:
    return '📦 Para consultar stock específico, escribe el nombre del producto.\n\nEjemplo: "Hay cuadernos A4?"'


def not_understood() -> str:
    return (
        "🤔 No entendí tu mensaje.\n\n"
        "Puedes escribir:\n"
        '• *"lista"* para ver nuestros productos\n'
        f"• Tu pedido, por ejemplo {ORDER_EXAMPLE}\n"
        '• *"carrito"* para ver tu carrito'
    )


def rate_limited(minutes_left: int, just_blocked: bool = False) -> str:
    if just_blocked:
        return (
            "⚠️ *Has excedido el límite de mensajes*\n\n"
            f"Has sido bloqueado temporalmente por {minutes_left} minutos.\n\n"
            "Por favor, espera antes de continuar enviando mensajes. 🙏"
        )
    return (
        "⚠️ Has enviado demasiados mensajes.\n\n"
        f"Por favor, espera {minutes_left} minuto(s) antes de continuar."
    )


def generic_error() -> str:
    return "❌ Ocurrió un error. Por favor intenta nuevamente en unos momentos."
