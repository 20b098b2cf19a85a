#!/usr/bin/env python3
"""
pixelmap quickstart: register, log in, paint a few pixels, check points.

Run with: python examples/quickstart.py

Requires: pip install httpx
Backend must be running: pixelmap serve (http://localhost:5500)

Open a WebSocket to ws://localhost:5500/api/v1/socket in another window
to watch the newPixel frames arrive as the pixels are painted.
"""

import sys
import uuid

import httpx

BASE = "http://localhost:5500/api/v1"


def main():
    run_id = uuid.uuid4().hex[:6]
    client = httpx.Client(base_url=BASE, timeout=10)

    # ── Health check ──────────────────────────────────────────────
    print("Checking backend health...")
    try:
        resp = client.get("/health")
    except httpx.ConnectError:
        print(f"Backend not reachable at {BASE}")
        sys.exit(1)
    health = resp.json()
    print(f"  Postgres: {health['postgres']}")
    print(f"  Redis:    {health['redis']}")
    print(f"  Watcher:  {health['watcher']}")

    # ── Register + login ──────────────────────────────────────────
    print("\n1. Registering user...")
    email = f"painter-{run_id}@example.com"
    resp = client.post("/auth/register", json={
        "email": email,
        "name": f"Painter {run_id}",
        "password": "quickstart-password",
    })
    assert resp.status_code == 201, f"Failed: {resp.text}"

    resp = client.post("/auth/login", json={"email": email, "password": "quickstart-password"})
    assert resp.status_code == 200, f"Failed: {resp.text}"
    client.headers["Authorization"] = f"Bearer {resp.json()['access_token']}"
    print(f"   Logged in as {email}")

    # ── Paint ─────────────────────────────────────────────────────
    print("\n2. Painting pixels...")
    for row, color in [(0, "#ff0000"), (1, "#00ff00"), (2, "#0000ff")]:
        resp = client.post("/pixelmap", json={"row": row, "color": color})
        assert resp.status_code == 200, f"Failed: {resp.text}"
        print(f"   row {row} → {color}")

    # Repaint an existing pixel (broadcast as an update, re-read by the watcher)
    resp = client.post("/pixelmap", json={"row": 0, "color": "#ffff00", "state": "claimed"})
    assert resp.status_code == 200, f"Failed: {resp.text}"
    print("   row 0 → #ffff00 (repaint)")

    # ── Read back ─────────────────────────────────────────────────
    print("\n3. Canvas:")
    for pixel in client.get("/pixelmap").json():
        print(f"   row {pixel['row']:>4}  {pixel['color']}  {pixel['state']}")

    me = client.get("/user/me").json()
    print(f"\n✓ Done. {me['name']} has {me['point']} point(s).")


if __name__ == "__main__":
    main()
