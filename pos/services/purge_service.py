"""Administrative purge of historical orders."""
import logging
from datetime import datetime

from pos.models import Order, OrderItem

logger = logging.getLogger(__name__)


def count_orders_before(session, before: datetime) -> int:
    return session.query(Order.id).filter(Order.created_at < before).count()


def purge_orders(session, before: datetime) -> int:
    """
    Irreversibly delete orders created before `before` with their items.

    Stock is not restored: the ingredients were consumed when the orders
    were placed. Returns the number of orders removed.
    """
    old_orders = session.query(Order.id).filter(Order.created_at < before)
    session.query(OrderItem).filter(OrderItem.order_id.in_(old_orders.scalar_subquery())).delete(
        synchronize_session=False
    )
    removed = session.query(Order).filter(Order.created_at < before).delete(synchronize_session=False)
    session.flush()
    logger.warning(f"[ORDER] Purged {removed} orders created before {before.date().isoformat()}")
    return removed
