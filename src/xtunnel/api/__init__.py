"""
xtunnel control API.
"""

from .app import create_app, serve_api

__all__ = ["create_app", "serve_api"]
