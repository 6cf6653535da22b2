"""
main.py — Server launcher and entry point.

Run this file to start the canteen token queue API:

    python main.py

Interactive API docs are served at http://127.0.0.1:8000/docs

This file does NOT contain application logic. See app.py for the FastAPI
application, service wiring, and startup sequence.
"""

from __future__ import annotations

import os

import uvicorn


HOST = os.getenv("CANTEEN_HOST", "127.0.0.1")
PORT = int(os.getenv("CANTEEN_PORT", "8000"))


def main() -> None:
    """Start the canteen API server."""
    print("=" * 60)
    print("  Canteen Token Queue & Crowd Analytics")
    print("=" * 60)
    print(f"  Server   : http://{HOST}:{PORT}")
    print(f"  API docs : http://{HOST}:{PORT}/docs")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    uvicorn.run(
        "app:app",
        host=HOST,
        port=PORT,
        reload=os.getenv("CANTEEN_RELOAD", "false").lower() in {"1", "true", "yes"},
        log_level="info",
    )


if __name__ == "__main__":
    main()
