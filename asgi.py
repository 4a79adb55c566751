"""
asgi.py -- ASGI entry point for the identity service.

Run with:  uvicorn asgi:app --proxy-headers

Behind a reverse proxy, pass --proxy-headers (and --forwarded-allow-ips) so
request.client.host is the real peer address; sessions are bound to it.
"""

from api.main import app

__all__ = ["app"]
