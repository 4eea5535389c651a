"""Dojo backend server.

Mounts the Composer curriculum router under a single FastAPI
application. The router is imported lazily so that a storage failure
at startup does not prevent the server from starting -- the unified
health endpoint reports whether Composer loaded and why it did not.

Usage::

    # Development (auto-reload)
    uvicorn dojo_server:app --reload --port 8430

    # Production
    uvicorn dojo_server:app --host 0.0.0.0 --port 8430

    # Or run directly
    python dojo_server.py
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logger = logging.getLogger("dojo")

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Dojo API",
    description=(
        "Backend for the Dojo curriculum builder: curricula, the technique "
        "and reference-asset catalog, and curriculum composition."
    ),
    version="0.1.0",
)

# ---------------------------------------------------------------------------
# CORS -- allow the two local browser clients
# ---------------------------------------------------------------------------

_ALLOWED_ORIGINS = [
    "http://localhost:3000",   # React client
    "http://localhost:5173",   # Vue client (Vite dev server)
    "http://localhost:8430",   # Self (for Swagger UI)
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8430",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Tool loading state -- tracks whether routers mounted successfully
# ---------------------------------------------------------------------------

_tool_status: dict[str, dict[str, Any]] = {
    "composer": {"loaded": False, "error": None},
}


def _mount_composer(data_dir: Path = Path("data/composer")) -> None:
    """Mount the Composer router at ``/api/composer/``.

    Initializes ComposerStorage with an on-disk SQLite database in
    *data_dir*.
    """
    try:
        from composer.src.config import ComposerConfig
        from composer.src.server import init_composer, router as composer_router

        data_dir.mkdir(parents=True, exist_ok=True)
        init_composer(ComposerConfig(db_path=data_dir / "composer.db"))

        app.include_router(composer_router, prefix="/api/composer", tags=["composer"])
        _tool_status["composer"]["loaded"] = True
        logger.info("Composer router mounted at /api/composer/")
    except Exception as exc:
        _tool_status["composer"]["error"] = str(exc)
        logger.warning("Composer router failed to load: %s", exc)


# ---------------------------------------------------------------------------
# Unified health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/health")
async def unified_health() -> dict[str, Any]:
    """Return health status for every mounted router.

    Returns:
        Dictionary with overall status and per-tool breakdown.
    """
    all_loaded = all(t["loaded"] for t in _tool_status.values())
    return {
        "status": "ok" if all_loaded else "error",
        "version": "0.1.0",
        "tools": _tool_status,
    }


_mount_composer()


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def run_server(host: str = "127.0.0.1", port: int = 8430) -> None:
    """Start the Dojo server via uvicorn.

    Args:
        host: Bind address. Defaults to localhost.
        port: Port number. Defaults to 8430.
    """
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    run_server()
