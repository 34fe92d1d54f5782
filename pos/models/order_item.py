"""Order item model."""
from sqlalchemy import Column, BigInteger, String, Integer, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from pos.database import Base


class OrderItem(Base):
    """Order line. Price, name and size are captured at sale time."""

    __tablename__ = 'order_items'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    order_id = Column(String(40), ForeignKey('orders.id'), nullable=False, index=True)
    # NULL once the product is deleted; the snapshots keep history readable
    product_id = Column(String(36), ForeignKey('products.id'), nullable=True, index=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    product_name = Column(String(200), nullable=True)
    size = Column(String(10), nullable=True)

    # Relationships
    order = relationship('Order', back_populates='items')
    product = relationship('Product')

    def __repr__(self):
        return f"<OrderItem(order_id={self.order_id}, product_id={self.product_id}, quantity={self.quantity})>"
