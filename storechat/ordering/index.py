# storechat/ordering/index.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .catalog import CatalogStore, Product, Snapshot, iter_products
from .nlp import search_form

logger = logging.getLogger(__name__)

MIN_TOKEN_LEN = 3


@dataclass(frozen=True)
class IndexEntry:
    display_name: str
    keys: Tuple[str, ...]
    product: Product


@dataclass(frozen=True)
class CategoryInfo:
    name: str
    subcategories: Tuple[str, ...]
    product_count: int


def _keys_for(product: Product) -> Tuple[str, ...]:
    keys: List[str] = []

    def _add(raw: str) -> None:
        full = search_form(raw)
        if full and full not in keys:
            keys.append(full)
        for tok in full.split(" "):
            if len(tok) >= MIN_TOKEN_LEN and tok not in keys:
                keys.append(tok)

    _add(product.name)
    _add(product.category)
    _add(product.subcategory)
    return tuple(keys)


class ProductIndex:
    """Immutable lookup structure over one catalog snapshot."""

    def __init__(self, entries: List[IndexEntry]) -> None:
        self._entries = entries
        self._by_barcode: Dict[str, Product] = {}
        self._categories: Dict[str, Dict[str, int]] = {}
        for e in entries:
            p = e.product
            if p.barcode:
                self._by_barcode[p.barcode] = p
            subs = self._categories.setdefault(p.category, {})
            subs[p.subcategory] = subs.get(p.subcategory, 0) + 1

    @classmethod
    def build(cls, snapshot: Snapshot) -> "ProductIndex":
        entries = [
            IndexEntry(display_name=p.display_name, keys=_keys_for(p), product=p)
            for p in iter_products(snapshot)
        ]
        return cls(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def search(self, text: str) -> List[Product]:
        """
        Bidirectional substring containment:
          key in text  ("cuaderno" in "quiero 2 cuadernos")
          text in key  ("lapic" in "lapicera azul")
        Results follow catalog order; no ranking.
        """
        q = search_form(text)
        if not q:
            return []

        out: List[Product] = []
        seen = set()
        for e in self._entries:
            if e.product.key in seen:
                continue
            for k in e.keys:
                if k in q or (len(q) >= MIN_TOKEN_LEN and q in k):
                    out.append(e.product)
                    seen.add(e.product.key)
                    break
        return out

    def by_barcode(self, code: str) -> Optional[Product]:
        return self._by_barcode.get((code or "").strip())

    def products(self) -> List[Product]:
        return [e.product for e in self._entries]

    def categories(self) -> List[CategoryInfo]:
        return [
            CategoryInfo(name=cat, subcategories=tuple(subs.keys()), product_count=sum(subs.values()))
            for cat, subs in self._categories.items()
        ]

    def stats(self) -> Dict[str, int]:
        return {
            "products": len(self._entries),
            "categories": len(self._categories),
            "subcategories": sum(len(s) for s in self._categories.values()),
            "barcodes": len(self._by_barcode),
        }


class CatalogIndex:
    """
    Holds the current ProductIndex for a CatalogStore.

    Rebuilds happen off to the side and are published with a single reference
    swap, so readers see either the old index or the new one.
    """

    def __init__(self, store: CatalogStore) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._index = ProductIndex([])
        self.rebuild()
        store.subscribe(self.rebuild)

    @property
    def store(self) -> CatalogStore:
        return self._store

    @property
    def current(self) -> ProductIndex:
        # lets the store's TTL window notice file changes
        self._store.get_snapshot()
        return self._index

    def rebuild(self) -> ProductIndex:
        started = time.perf_counter()
        try:
            fresh = ProductIndex.build(self._store.get_snapshot())
        except Exception:
            logger.exception("Index rebuild failed, keeping previous index")
            return self._index
        with self._lock:
            self._index = fresh
        logger.info(
            "Product index built in %.1f ms: %s",
            (time.perf_counter() - started) * 1000,
            fresh.stats(),
        )
        return fresh
