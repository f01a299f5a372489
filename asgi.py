"""
asgi.py -- ASGI entry point for setu-auth.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --workers 2
"""

from api.main import app

__all__ = ["app"]
