from sqlalchemy import Column, String, Text
from .base import Base, TimestampMixin


class StoredItem(Base, TimestampMixin):
    """One key/value entry of the on-device store."""
    __tablename__ = "stored_items"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
