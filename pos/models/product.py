"""Product model."""
from datetime import datetime
from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from pos.database import Base
from pos.models._helpers import new_id, serialize_value


class Product(Base):
    """
    Sellable product variant.

    A logical product is a (name, size) pair: each size is its own row with
    its own price and recipe.
    """

    __tablename__ = 'products'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    image_url = Column(String(500), nullable=False, default='')
    category_id = Column(String(36), ForeignKey('categories.id'), nullable=True)
    size = Column(String(10), nullable=False, default='M')  # M = medium, L = large
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    # Relationships
    category = relationship('Category', back_populates='products')
    recipe_lines = relationship('RecipeLine', back_populates='product')

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', size='{self.size}')>"

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'price': self.price,
            'image_url': self.image_url,
            'category_id': self.category_id,
            'size': self.size,
            'created_at': serialize_value(self.created_at),
        }
