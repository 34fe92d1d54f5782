"""Schema version marker."""
from sqlalchemy import Column, Integer
from pos.database import Base


class SchemaVersion(Base):
    """Single-row table holding the schema version a store was created with."""

    __tablename__ = 'schema_version'

    id = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False)
