"""
main.py: Server launcher and entry point.

Run this file to start the banner slot reservation service:

    python main.py

This file does NOT contain application logic. See app.py for the FastAPI
application, service wiring, and startup sequence.

Direct uvicorn usage:
    uvicorn app:app --reload
"""

from __future__ import annotations

import os

import uvicorn


HOST = os.getenv("BANNER_HOST", "127.0.0.1")
PORT = int(os.getenv("BANNER_PORT", "8000"))


def main() -> None:
    """Start the reservation service."""
    print("=" * 60)
    print("  Banner Slot Reservation Engine")
    print("=" * 60)
    print(f"  Server   : http://{HOST}:{PORT}")
    print(f"  Slots    : http://{HOST}:{PORT}/api/banner/slots?type=HERO&from=...&to=...")
    print(f"  API docs : http://{HOST}:{PORT}/docs")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    # Start uvicorn: this blocks until CTRL+C
    uvicorn.run(
        "app:app",       # points to app.py → app object
        host=HOST,
        port=PORT,
        reload=False,    # a single process keeps one reaper loop
        log_level="info",
    )


if __name__ == "__main__":
    main()
