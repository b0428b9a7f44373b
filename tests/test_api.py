# tests/test_api.py
import json

from fastapi.testclient import TestClient

from conftest import CATALOG
from storechat.config import Settings
from storechat.main import create_app


def settings(**kwargs):
    kwargs.setdefault("sweep_interval_seconds", 3600)
    return Settings(**kwargs)


def post(client, text, customer_id="5491100000001", **extra):
    payload = {"customer_id": customer_id, "display_name": "Ana", "text": text}
    payload.update(extra)
    return client.post("/messages", json=payload)


def test_health(engine):
    with TestClient(create_app(settings(), engine=engine)) as client:
        r = client.get("/")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["catalog"]["products"] == 6


def test_message_roundtrip(engine):
    with TestClient(create_app(settings(), engine=engine)) as client:
        r = post(client, "quiero 2 cuadernos")
        assert r.status_code == 200
        body = r.json()
        assert body["ignored"] is False
        assert "Cuaderno A4" in body["reply"]

        body = post(client, "si").json()
        assert "Productos agregados al carrito" in body["reply"]


def test_ignored_messages(engine):
    with TestClient(create_app(settings(), engine=engine)) as client:
        assert post(client, "   ").json() == {"reply": None, "ignored": True}
        assert post(client, "hola", timestamp=-1.0).json()["ignored"] is True


def test_invalid_payload_is_rejected(engine):
    with TestClient(create_app(settings(), engine=engine)) as client:
        r = client.post("/messages", json={"text": "hola"})
    assert r.status_code == 422


def test_catalog_invalidate(engine):
    with TestClient(create_app(settings(), engine=engine)) as client:
        r = client.post("/catalog/invalidate")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "catalog": engine.index.current.stats()}


def test_app_builds_engine_from_data_files(tmp_path):
    (tmp_path / "catalog.json").write_text(json.dumps(CATALOG), encoding="utf-8")
    (tmp_path / "ordering.json").write_text(
        json.dumps({"business": {"name": "Kiosco Centro"}, "delivery": {"enabled": False}}),
        encoding="utf-8",
    )
    cfg = settings(
        data_dir=tmp_path,
        database_url="sqlite://",
        llm_enabled=False,
        commercial_filter=True,
        order_id_prefix="KC",
    )

    with TestClient(create_app(cfg)) as client:
        assert post(client, "hola").json()["ignored"] is True
        assert "Cuaderno A4" in post(client, "hola quiero 2 cuadernos").json()["reply"]
        post(client, "si")
        reply = post(client, "confirmar").json()["reply"]

    assert "#KC-001" in reply
    assert "Retiro en local" in reply
