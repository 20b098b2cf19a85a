"""Health check endpoint.

Learn: Verifies the server is running, its dependencies (Postgres, Redis)
are reachable, and reports the watcher and gate counters.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from pixelmap import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    canvas = request.app.state.canvas
    checks = {"server": "ok", "version": __version__}

    try:
        async with canvas.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["postgres"] = "ok"
    except Exception as e:
        checks["postgres"] = f"error: {e}"

    if canvas.redis is None:
        checks["redis"] = "unavailable"
    else:
        try:
            await canvas.redis.ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e}"

    checks["watcher"] = "ok" if canvas.watcher.running else "stopped"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k not in ("version", "redis")
    ) else "degraded"

    return {
        "status": status,
        **checks,
        "stats": {
            "watcher": canvas.watcher.get_stats(),
            "gate": canvas.gate.get_stats(),
        },
    }
