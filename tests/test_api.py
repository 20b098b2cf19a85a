"""REST layer tests: pixel map, health, middleware.

Learn: The pixel map routes only write; broadcasting is the watcher's
job. These tests swap PixelService for an in-memory fake and check the
HTTP contract: validation, auth, status codes and response shapes.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from pixelmap.config import Settings
from tests.conftest import TEST_USER_ID, authenticate, build_app


# ─── Pixel map ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_pixels_ordered_by_row(client, pixel_service):
    pixel_service.seed(9, "#000000")
    pixel_service.seed(2, "#ffffff")

    resp = await client.get("/api/v1/pixelmap")

    assert resp.status_code == 200
    assert [p["row"] for p in resp.json()] == [2, 9]


@pytest.mark.asyncio
async def test_get_pixel_by_row(client, pixel_service):
    pixel_service.seed(5, "#ff0000")

    resp = await client.get("/api/v1/pixelmap/5")
    assert resp.status_code == 200
    assert resp.json()["color"] == "#ff0000"

    resp = await client.get("/api/v1/pixelmap/6")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_paint_pixel_records_owner_and_normalizes_color(client, pixel_service):
    resp = await client.post(
        "/api/v1/pixelmap", json={"row": 5, "color": "#FF00AA", "state": "claimed"}
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["row"] == 5
    assert data["color"] == "#ff00aa"
    assert data["owner_id"] == TEST_USER_ID
    assert pixel_service.pixels[5].color == "#ff00aa"


@pytest.mark.asyncio
async def test_paint_defaults_state_to_claimed(client):
    resp = await client.post("/api/v1/pixelmap", json={"row": 1, "color": "#123456"})
    assert resp.status_code == 200
    assert resp.json()["state"] == "claimed"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"row": 1, "color": "red"},
        {"row": 1, "color": "#12345"},
        {"row": -1, "color": "#123456"},
        {"color": "#123456"},
    ],
)
async def test_paint_rejects_invalid_input(client, body):
    resp = await client.post("/api/v1/pixelmap", json=body)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_paint_rejects_row_outside_canvas(client, app):
    canvas_size = app.state.canvas.settings.canvas_size

    resp = await client.post(
        "/api/v1/pixelmap", json={"row": canvas_size, "color": "#123456"}
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_canvas_size_comes_from_app_settings(pixel_service, user_service):
    app = build_app(pixel_service, user_service, Settings(canvas_size=10))
    authenticate(app)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.post("/api/v1/pixelmap", json={"row": 50, "color": "#123456"})
        assert resp.status_code == 422

        resp = await ac.post("/api/v1/pixelmap", json={"row": 9, "color": "#123456"})
        assert resp.status_code == 200

    assert list(pixel_service.pixels) == [9]


@pytest.mark.asyncio
async def test_pixelmap_requires_auth(unauthenticated_client):
    resp = await unauthenticated_client.get("/api/v1/pixelmap")
    assert resp.status_code == 401

    resp = await unauthenticated_client.post(
        "/api/v1/pixelmap",
        json={"row": 1, "color": "#123456"},
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert resp.status_code == 401


# ─── Health + middleware ─────────────────────────────────


@pytest.mark.asyncio
async def test_health_reports_dependencies(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["server"] == "ok"
    assert data["postgres"] == "ok"
    assert data["redis"] == "unavailable"
    # watcher isn't running in tests
    assert data["watcher"] == "stopped"
    assert data["status"] == "degraded"
    assert data["stats"]["gate"]["namespace"] == "/api/v1/socket"
    assert "version" in data


@pytest.mark.asyncio
async def test_security_headers_and_request_id(client):
    resp = await client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert "Strict-Transport-Security" not in resp.headers


@pytest.mark.asyncio
async def test_request_id_generated_when_missing(client):
    resp = await client.get("/api/v1/health")
    assert resp.headers["X-Request-ID"]
