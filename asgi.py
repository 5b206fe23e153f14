"""
asgi.py -- ASGI entry point for PassGate.

Keeps the server command stable while api/main.py owns app assembly.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
