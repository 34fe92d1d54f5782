"""Inventory item model."""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, String, Numeric, DateTime
from sqlalchemy.orm import relationship
from pos.database import Base
from pos.models._helpers import new_id, serialize_value

DIRECT_CONTAINER = 'direct'
BASE_UNITS = ('g', 'ml', 'pc', 'kg', 'L', 'oz')


class InventoryItem(Base):
    """
    Ingredient stock, tracked in its base unit.

    Container metadata describes the purchase packaging:
    number_of_containers x container_quantity (secondary units per container)
    x quantity_per_unit (base units per secondary unit).
    """

    __tablename__ = 'inventory'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False, unique=True)
    current_stock = Column(Numeric(12, 2), nullable=False, default=0)
    minimum_threshold = Column(Numeric(12, 2), nullable=False, default=0)
    unit = Column(String(10), nullable=False)

    container_type = Column(String(30), nullable=False, default=DIRECT_CONTAINER)
    number_of_containers = Column(Numeric(12, 2), nullable=False, default=Decimal('1'))
    container_quantity = Column(Numeric(12, 2), nullable=True)
    secondary_unit = Column(String(30), nullable=True)
    quantity_per_unit = Column(Numeric(12, 2), nullable=True)

    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    # Relationships
    recipe_lines = relationship('RecipeLine', back_populates='inventory_item')

    # Columns carried in sync payloads and cache snapshots
    FIELDS = (
        'name', 'current_stock', 'minimum_threshold', 'unit', 'container_type',
        'number_of_containers', 'container_quantity', 'secondary_unit', 'quantity_per_unit',
    )

    def __repr__(self):
        return f"<InventoryItem(id={self.id}, name='{self.name}', current_stock={self.current_stock})>"

    @property
    def is_direct(self):
        return (self.container_type or DIRECT_CONTAINER) == DIRECT_CONTAINER

    @property
    def is_low_stock(self):
        return Decimal(self.current_stock) <= Decimal(self.minimum_threshold)

    def to_dict(self):
        data = {'id': self.id}
        for field in self.FIELDS:
            data[field] = getattr(self, field)
        data['updated_at'] = serialize_value(self.updated_at)
        data['is_low_stock'] = self.is_low_stock
        return data

    def to_payload(self):
        data = {'id': self.id}
        for field in self.FIELDS:
            data[field] = serialize_value(getattr(self, field))
        return data
