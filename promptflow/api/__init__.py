"""
API package - FastAPI routes and schemas.
"""

from promptflow.api.routes import websocket, workflow

__all__ = ["websocket", "workflow"]
