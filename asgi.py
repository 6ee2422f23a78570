"""
asgi.py -- ASGI entry point for agg-api.

Run with:  uvicorn asgi:app --reload

Process managers import this stable path; the application itself is built in
api/main.py.
"""

from api.main import app

__all__ = ["app"]
