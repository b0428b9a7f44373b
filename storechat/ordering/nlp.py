# storechat/ordering/nlp.py
from __future__ import annotations

import re
import unicodedata
from typing import Iterable, List, Optional

# ----------------------------
# Numerals
# ----------------------------
NUMBER_WORDS = {
    "un": 1, "una": 1, "uno": 1,
    "dos": 2, "tres": 3, "cuatro": 4, "cinco": 5,
    "seis": 6, "siete": 7, "ocho": 8, "nueve": 9, "diez": 10,
}

_NUMERAL_RE = re.compile(
    r"\b(\d+|" + "|".join(sorted(NUMBER_WORDS, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)

_FIRST_INT_RE = re.compile(r"\d+")
_WS_RE = re.compile(r"\s+")

# ----------------------------
# Intent patterns (matched on lowered, accent-stripped text)
# ----------------------------
YES_RE = re.compile(r"^(si|ok|dale|confirmo si)$")
NO_RE = re.compile(r"^(no|nope|cancel|cancelar)$")
SELECTION_CANCEL_RE = re.compile(r"cancelar|\bno\b|salir")

SHOW_CART_RE = re.compile(r"ver carrito|mi carrito|carrito|mi pedido")
CHECKOUT_RE = re.compile(r"^(confirmar|confirmo|si confirmo|ok confirmo)$")
CANCEL_CART_RE = re.compile(r"cancelar|vaciar|borrar carrito|limpiar carrito")
REMOVE_LINE_RE = re.compile(r"quitar|eliminar|sacar")

DELIVERY_CHOICE_RE = re.compile(r"^(\d+|retiro|delivery)$")

CATALOG_RE = re.compile(r"lista|precio|catalogo|que tienen|que venden|productos|menu")
GREETING_RE = re.compile(r"^(hola|buenas|buenos dias|buenas tardes|buenas noches|hey|hi)$")

HISTORY_RE = re.compile(r"mis pedidos|mi historial|historial|pedidos anteriores|ultimos pedidos")
HOURS_RE = re.compile(r"horario|hora|atencion|abren|cierran|abierto")
LOCATION_RE = re.compile(r"ubicacion|direccion|donde|local|negocio|como llego")
PAYMENT_RE = re.compile(r"pago|efectivo|tarjeta|transfer|mercadopago|debito|credito")
CONTACT_RE = re.compile(r"contacto|telefono|whatsapp|llamar")

STOCK_RE = re.compile(r"stock|hay|tienen|disponible|queda|quedan")

# ----------------------------
# Commercial filter vocabulary
# ----------------------------
PERSONAL_MESSAGES = [
    "amor", "mi amor", "bb", "bebe", "corazon", "cielo", "vida",
    "te amo", "te quiero", "te extraño", "extraño",
    "jaja", "jeje", "jiji", "lol", "xd",
    "como estas", "como andas", "que haces", "que tal",
    "bueno", "dale", "sisi", "oki", "okay",
    "gracias", "grax", "muchas gracias",
    "perdon", "disculpa", "sorry",
    "chau", "adios", "nos vemos", "hasta luego",
]

INTENT_WORDS = [
    "precio", "cuanto", "cuesta", "valor", "sale",
    "venden", "vende", "tienen", "tiene", "hay", "tenes",
    "stock", "disponible", "disponibilidad",
    "comprar", "quiero", "necesito", "busco", "me interesa",
    "pedido", "pedir", "encargar", "reservar",
    "catalogo", "lista", "menu",
    "horario", "ubicacion", "direccion",
    "entrega", "delivery", "envio",
    "pago", "efectivo", "tarjeta", "transferencia",
    "regalo", "cumpleaños", "fiesta",
    "recomienda", "recomendas", "opciones", "ideas",
]

COMMERCIAL_GREETINGS = [
    "hola quiero", "hola necesito", "hola busco",
    "buenos dias quiero", "buenas tardes quiero", "buenas noches quiero",
    "hola, quiero", "hola consulta", "consulta por",
    "hola precio", "hola cuanto",
]


def strip_accents(s: str) -> str:
    decomposed = unicodedata.normalize("NFD", s or "")
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def clean_text(s: str) -> str:
    """Lowercase, strip accents, collapse whitespace. Used for intent matching."""
    return _WS_RE.sub(" ", strip_accents((s or "").lower())).strip()


def normalize_key(s: str) -> str:
    """
    Catalog identity form:
      "Cuaderno  A4" -> "cuaderno_a4"
      "Librería" -> "libreria"
    """
    s = clean_text(s).replace(" ", "_")
    s = re.sub(r"_{2,}", "_", s)
    return s.strip("_")


def search_form(s: str) -> str:
    """Form used by the matching index: accent-free, underscores as spaces."""
    return clean_text((s or "").replace("_", " "))


def display_name(key: str) -> str:
    """'lapicera_azul' -> 'Lapicera Azul'"""
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), (key or "").replace("_", " "))


# ----------------------------
# Quantity
# ----------------------------
def find_numerals(text: str) -> List[int]:
    out: List[int] = []
    for m in _NUMERAL_RE.finditer(clean_text(text)):
        tok = m.group(1).lower()
        out.append(NUMBER_WORDS[tok] if tok in NUMBER_WORDS else int(tok))
    return out


def extract_quantity(text: str) -> int:
    """Last numeral in the message wins; no numeral means 1."""
    nums = find_numerals(text)
    if not nums:
        return 1
    return max(1, nums[-1])


def first_int(text: str) -> Optional[int]:
    m = _FIRST_INT_RE.search(text or "")
    return int(m.group(0)) if m else None


def parse_index(text: str) -> Optional[int]:
    """Bare positive integer replies like '2' -> 2."""
    t = (text or "").strip()
    if not t.isdigit():
        return None
    return int(t)


# ----------------------------
# Commercial filter
# ----------------------------
def is_personal_message(text: str) -> bool:
    t = clean_text(text)
    if len([w for w in t.split(" ") if w]) > 3:
        return False
    for personal in PERSONAL_MESSAGES:
        p = clean_text(personal)
        if t == p or t == p.replace(" ", ""):
            return True
    return False


def is_commercial_message(text: str, product_hit: bool = False) -> bool:
    if is_personal_message(text):
        return False
    t = clean_text(text)
    if product_hit:
        return True
    return _contains_any(t, INTENT_WORDS) or _contains_any(t, COMMERCIAL_GREETINGS)


def _contains_any(text: str, words: Iterable[str]) -> bool:
    return any(clean_text(w) in text for w in words)
