"""API Routers."""
from app.routers import guest, session

__all__ = ["guest", "session"]
