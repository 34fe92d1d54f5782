"""Recipe line (product ingredient) model."""
from sqlalchemy import Column, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from pos.database import Base
from pos.models._helpers import new_id


class RecipeLine(Base):
    """Bill-of-materials entry: base units of one ingredient used per product sold."""

    __tablename__ = 'product_ingredients'

    id = Column(String(36), primary_key=True, default=new_id)
    product_id = Column(String(36), ForeignKey('products.id'), nullable=False, index=True)
    inventory_id = Column(String(36), ForeignKey('inventory.id'), nullable=False, index=True)
    quantity_used = Column(Numeric(12, 2), nullable=False)
    size = Column(String(10), nullable=True, default='M')

    # Relationships
    product = relationship('Product', back_populates='recipe_lines')
    inventory_item = relationship('InventoryItem', back_populates='recipe_lines')

    def __repr__(self):
        return (
            f"<RecipeLine(product_id={self.product_id}, inventory_id={self.inventory_id}, "
            f"quantity_used={self.quantity_used})>"
        )
