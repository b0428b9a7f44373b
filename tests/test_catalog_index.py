# tests/test_catalog_index.py
import copy
import json

import pytest

from conftest import CATALOG
from storechat.ordering import index as index_module
from storechat.ordering.catalog import CatalogStore, iter_products, product_from_entry
from storechat.ordering.index import CatalogIndex, ProductIndex


def names(products):
    return [p.name for p in products]


def test_product_requires_exactly_one_price():
    with pytest.raises(ValueError):
        product_from_entry("a", "b", "c", {"price": 1, "price_from": 2})
    with pytest.raises(ValueError):
        product_from_entry("a", "b", "c", {"unit": "u"})

    p = product_from_entry("Librería", "Cuadernos", "Cuaderno A4", {"price_from": 900})
    assert p.key == ("libreria", "cuadernos", "cuaderno_a4")
    assert p.unit_price == 900
    assert p.in_stock is True


def test_bad_entries_are_skipped():
    snapshot = {"x": {"y": {"ok": {"price": 10}, "broken": {"price": 1, "price_from": 1}}}}
    assert names(iter_products(snapshot)) == ["ok"]


def test_search_matches_name_tokens():
    idx = ProductIndex.build(CATALOG)
    assert names(idx.search("quiero 2 cuadernos")) == ["cuaderno_a4"]


def test_search_partial_word_matches_key():
    idx = ProductIndex.build(CATALOG)
    assert names(idx.search("lapic")) == ["lapicera_azul", "lapicera_roja"]


def test_search_follows_catalog_order_without_ranking():
    idx = ProductIndex.build(CATALOG)
    found = idx.search("3 lapiceras")
    assert names(found) == ["lapicera_azul", "lapicera_roja"]


def test_search_by_category_and_subcategory():
    idx = ProductIndex.build(CATALOG)
    assert names(idx.search("tienen algo de regaleria?")) == ["oso_de_peluche"]
    assert [p.category for p in idx.search("pelotas")] == ["deportes", "jugueteria"]


def test_short_text_does_not_match_inside_keys():
    idx = ProductIndex.build(CATALOG)
    assert idx.search("no") == []
    assert idx.search("") == []


def test_barcode_lookup_is_exact():
    idx = ProductIndex.build(CATALOG)
    assert idx.by_barcode("7791234").name == "oso_de_peluche"
    assert idx.by_barcode("779") is None


def test_categories_and_stats():
    idx = ProductIndex.build(CATALOG)
    cats = {c.name: c for c in idx.categories()}
    assert cats["libreria"].product_count == 3
    assert cats["libreria"].subcategories == ("cuadernos", "escritura")
    assert idx.stats()["products"] == len(idx) == 6


def test_index_rebuilds_on_replace(catalog_store):
    index = CatalogIndex(catalog_store)
    old = index.current

    updated = copy.deepcopy(CATALOG)
    updated["libreria"]["escritura"]["lapicera_verde"] = {"price": 380}
    catalog_store.replace(updated)

    assert index.current is not old
    assert "lapicera_verde" in names(index.current.search("lapicera"))
    # the old index object is untouched
    assert "lapicera_verde" not in names(old.search("lapicera"))


def test_failed_rebuild_keeps_previous_index(catalog_store, monkeypatch):
    index = CatalogIndex(catalog_store)
    before = index.current

    def boom(snapshot):
        raise RuntimeError("bad catalog")

    monkeypatch.setattr(index_module.ProductIndex, "build", staticmethod(boom))
    catalog_store.replace({})
    assert index.current is before


def test_store_rereads_file_after_ttl(tmp_path, clock):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"a": {"b": {"uno": {"price": 1}}}}), encoding="utf-8")
    store = CatalogStore(path, ttl_seconds=60, clock=clock)
    assert list(store.get_snapshot()["a"]["b"]) == ["uno"]
    calls = []
    store.subscribe(lambda: calls.append(1))

    path.write_text(json.dumps({"a": {"b": {"dos": {"price": 2}}}}), encoding="utf-8")
    clock.advance(30)
    assert list(store.get_snapshot()["a"]["b"]) == ["uno"]

    clock.advance(30)
    assert list(store.get_snapshot()["a"]["b"]) == ["dos"]
    assert calls == [1]


def test_store_keeps_last_good_snapshot_on_read_failure(tmp_path, clock):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"a": {"b": {"uno": {"price": 1}}}}), encoding="utf-8")
    store = CatalogStore(path, ttl_seconds=60, clock=clock)
    store.get_snapshot()

    path.write_text("{not json", encoding="utf-8")
    clock.advance(60)
    assert list(store.get_snapshot()["a"]["b"]) == ["uno"]


def test_missing_file_degrades_to_empty_catalog(tmp_path, clock):
    store = CatalogStore(tmp_path / "missing.json", clock=clock)
    assert store.get_snapshot() == {}
    assert len(CatalogIndex(store).current) == 0


def test_invalidate_rereads_and_notifies(tmp_path, clock):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"a": {"b": {"uno": {"price": 1}}}}), encoding="utf-8")
    store = CatalogStore(path, ttl_seconds=3600, clock=clock)
    index = CatalogIndex(store)
    assert names(index.current.products()) == ["uno"]

    path.write_text(json.dumps({"a": {"b": {"dos": {"price": 2}}}}), encoding="utf-8")
    store.invalidate()
    assert names(index.current.products()) == ["dos"]


def test_in_memory_store_never_reads_a_file(clock):
    store = CatalogStore(initial=copy.deepcopy(CATALOG), clock=clock)
    calls = []
    store.subscribe(lambda: calls.append(1))

    store.invalidate()
    clock.advance(3600)
    assert store._read_file() is None
    assert "libreria" in store.get_snapshot()
    assert calls == [1]
