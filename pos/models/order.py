"""Order model."""
from datetime import datetime
from sqlalchemy import Column, String, Numeric, DateTime
from sqlalchemy.orm import relationship
from pos.database import Base
from pos.models._helpers import serialize_value


class Order(Base):
    """Completed sale. Immutable once created."""

    __tablename__ = 'orders'

    id = Column(String(40), primary_key=True)  # e.g. BRU-2026-0A3F9C12E-7B41
    total = Column(Numeric(12, 2), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False)
    change = Column(Numeric(12, 2), nullable=False)
    user_id = Column(String(64), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now, index=True)

    # Relationships
    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Order(id={self.id}, total={self.total})>"

    def to_dict(self):
        return {
            'id': self.id,
            'total': self.total,
            'amount_paid': self.amount_paid,
            'change': self.change,
            'user_id': self.user_id,
            'created_at': serialize_value(self.created_at),
        }
