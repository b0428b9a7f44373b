# storechat/ordering/catalog.py
from __future__ import annotations

import copy
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .nlp import display_name, normalize_key

logger = logging.getLogger(__name__)

# category -> subcategory -> product name -> attributes
Snapshot = Dict[str, Dict[str, Dict[str, Dict[str, Any]]]]


@dataclass(frozen=True)
class Product:
    category: str
    subcategory: str
    name: str
    price: Optional[float] = None
    price_from: Optional[float] = None
    unit: Optional[str] = None
    in_stock: bool = True
    barcode: Optional[str] = None
    images: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.category, self.subcategory, self.name)

    @property
    def display_name(self) -> str:
        return display_name(self.name)

    @property
    def unit_price(self) -> float:
        return self.price if self.price is not None else float(self.price_from or 0)


def _as_price(raw: Any) -> Optional[float]:
    if raw is None or raw == "":
        return None
    return float(raw)


def product_from_entry(category: str, subcategory: str, name: str, info: Dict[str, Any]) -> Product:
    """Raises ValueError when the entry breaks the price XOR price_from rule."""
    price = _as_price(info.get("price"))
    price_from = _as_price(info.get("price_from"))
    if (price is None) == (price_from is None):
        raise ValueError(f"{category}/{subcategory}/{name}: exactly one of price/price_from must be set")

    barcode = info.get("barcode")
    return Product(
        category=normalize_key(category),
        subcategory=normalize_key(subcategory),
        name=normalize_key(name),
        price=price,
        price_from=price_from,
        unit=(str(info.get("unit")).strip() or None) if info.get("unit") else None,
        in_stock=info.get("in_stock") is not False,
        barcode=str(barcode).strip() if barcode else None,
        images=tuple(str(x) for x in (info.get("images") or [])),
    )


def iter_products(snapshot: Snapshot) -> Iterator[Product]:
    """Catalog iteration order: category, subcategory, name (insertion order). Bad entries are skipped."""
    for category, subcats in (snapshot or {}).items():
        if not isinstance(subcats, dict):
            continue
        for subcategory, products in subcats.items():
            if not isinstance(products, dict):
                continue
            for name, info in products.items():
                if not isinstance(info, dict):
                    continue
                try:
                    yield product_from_entry(category, subcategory, name, info)
                except (TypeError, ValueError) as exc:
                    logger.warning("Skipping catalog entry: %s", exc)


class CatalogStore:
    """
    Key-addressed product store backed by a JSON file.

    The file is re-read once the TTL window has passed. When the content changes
    (or someone calls invalidate()/replace()), subscribers are notified so the
    matching index can rebuild.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        ttl_seconds: float = 60.0,
        initial: Optional[Snapshot] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = path
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._listeners: List[Callable[[], None]] = []
        self._snapshot: Snapshot = copy.deepcopy(initial) if initial is not None else {}
        self._loaded_at: Optional[float] = self._clock() if initial is not None else None

    def subscribe(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def get_snapshot(self) -> Snapshot:
        changed = False
        with self._lock:
            if self._is_stale():
                fresh = self._read_file()
                self._loaded_at = self._clock()
                if fresh is not None and fresh != self._snapshot:
                    self._snapshot = fresh
                    changed = True
            snap = self._snapshot
        if changed:
            self._notify()
        return snap

    def replace(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshot = copy.deepcopy(snapshot)
            self._loaded_at = self._clock()
        self._notify()

    def invalidate(self) -> None:
        with self._lock:
            if self._path is not None:
                fresh = self._read_file()
                if fresh is not None:
                    self._snapshot = fresh
                self._loaded_at = self._clock()
        logger.info("Catalog invalidated")
        self._notify()

    def _is_stale(self) -> bool:
        if self._path is None:
            return False
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self._ttl

    def _read_file(self) -> Optional[Snapshot]:
        if self._path is None:
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Catalog read failed (%s): %s", self._path, exc)
            return None
        if not isinstance(data, dict):
            logger.error("Catalog file %s is not an object", self._path)
            return None
        return data

    def _notify(self) -> None:
        for cb in list(self._listeners):
            try:
                cb()
            except Exception:
                logger.exception("Catalog listener failed")
