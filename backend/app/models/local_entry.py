"""Versioned key-value rows backing the device-local guest store."""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, Text

from app.database import Base


class LocalEntry(Base):
    """One namespaced key holding a JSON document."""

    __tablename__ = "local_entries"

    key = Column(String(255), primary_key=True)
    namespace = Column(String(100), nullable=False, index=True)

    # Serialized JSON document
    value = Column(Text, nullable=False)

    # Bumped on every write; compared on update (compare-and-swap)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<LocalEntry {self.key} v{self.version}>"
