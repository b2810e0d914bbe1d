from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from rainwatch.database import Base


class KVEntry(Base):
    """Local stand-in for the remote key-value store (markers, history)."""

    __tablename__ = "kv_entries"

    key = Column(String(200), primary_key=True)
    value = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=True, index=True)  # naive UTC; NULL = no expiry
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
