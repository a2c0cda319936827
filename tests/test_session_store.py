from __future__ import annotations

from flask import Response

from listing_flow.config import CategoryTemplates
from listing_flow.session_store import CookieStore, MemoryStore


def test_memory_store_ttl():
    now = [0.0]
    store = MemoryStore(clock=lambda: now[0])
    store.set("etsy_state", "abc", 300)

    assert store.get("etsy_state") == "abc"
    now[0] = 299.0
    assert "etsy_state" in store
    now[0] = 300.0
    assert store.get("etsy_state") is None


def test_memory_store_delete_is_idempotent():
    store = MemoryStore()
    store.set("k", "v", 10)
    store.delete("k")
    store.delete("k")
    assert store.get("k") is None


def test_cookie_store_reads_request_and_queues_writes():
    store = CookieStore({"etsy_state": "abc"}, secure=True)
    store.set("etsy_connected", "true", 3600, http_only=False)
    store.delete("etsy_state")

    assert store.get("etsy_state") is None
    assert store.get("etsy_connected") == "true"

    headers = store.apply(Response()).headers.getlist("Set-Cookie")
    connected = next(h for h in headers if h.startswith("etsy_connected="))
    assert "Max-Age=3600" in connected
    assert "Secure" in connected
    assert "HttpOnly" not in connected
    assert any(h.startswith("etsy_state=;") for h in headers)


def test_category_templates_are_versioned():
    templates = CategoryTemplates.load()

    assert templates.version >= 1
    assert set(templates.categories) >= {"frame-tv", "wall-art", "clipart", "other"}
    assert templates.get("FRAME-TV").label == "Frame TV"
    assert templates.get("unknown") is None
    rendered = templates.get("wall-art").render(shop_name="Lakeside", shop_url="https://lakeside.example")
    assert "Lakeside: https://lakeside.example" in rendered
