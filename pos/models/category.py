"""Category model."""
from sqlalchemy import Column, String, Integer
from sqlalchemy.orm import relationship
from pos.database import Base
from pos.models._helpers import new_id


class Category(Base):
    """Menu category (COFFEE, TEA, PASTRY...)."""

    __tablename__ = 'categories'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False, unique=True)
    display_order = Column(Integer, nullable=False, default=1)

    # Relationships
    products = relationship('Product', back_populates='category')

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'display_order': self.display_order}
