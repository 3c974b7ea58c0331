"""Database models."""
from app.models.local_entry import LocalEntry

__all__ = ["LocalEntry"]
