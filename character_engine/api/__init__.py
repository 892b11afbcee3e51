"""HTTP and WebSocket surface."""

from .app import LoadRequest, LoadResponse, create_app

__all__ = ["LoadRequest", "LoadResponse", "create_app"]
