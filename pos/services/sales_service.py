"""Sales analytics built from order items at their sale-time prices."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any

from pos.models import Order, OrderItem, Product, Category


def _date_filters(query, from_date: Optional[datetime], to_date: Optional[datetime]):
    if from_date:
        query = query.filter(Order.created_at >= from_date)
    if to_date:
        query = query.filter(Order.created_at <= to_date)
    return query


def get_sales_data(session, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """
    Units sold and revenue per product variant within an optional window.

    Revenue sums each item's own sale-time price, so later price edits do not
    rewrite history. `price` is the most recent price the variant sold at.
    Items of deleted products are grouped under their name/size snapshot.
    """
    query = (
        session.query(
            OrderItem.product_id,
            OrderItem.product_name,
            OrderItem.size,
            OrderItem.price,
            OrderItem.quantity,
            Product.name.label('current_name'),
            Product.size.label('current_size'),
            Category.name.label('category_name'),
        )
        .join(Order, OrderItem.order_id == Order.id)
        .outerjoin(Product, OrderItem.product_id == Product.id)
        .outerjoin(Category, Product.category_id == Category.id)
    )
    query = _date_filters(query, from_date, to_date).order_by(Order.created_at, OrderItem.id)

    sales = {}
    for row in query.all():
        name = row.current_name or row.product_name
        size = row.current_size or row.size or 'M'
        key = (row.product_id or f'deleted:{name}', size)
        entry = sales.get(key)
        if entry is None:
            entry = {
                'product_id': row.product_id,
                'product_name': name,
                'size': size,
                'category_name': row.category_name,
                'price': row.price,
                'volume': 0,
                'total_sales': Decimal('0.00'),
            }
            sales[key] = entry
        entry['price'] = row.price
        entry['volume'] += row.quantity
        entry['total_sales'] += Decimal(row.price) * row.quantity

    return sorted(sales.values(), key=lambda e: e['total_sales'], reverse=True)


def get_non_selling_products(session, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Products with no order items inside the window."""
    sold = _date_filters(
        session.query(OrderItem.product_id)
        .join(Order, OrderItem.order_id == Order.id)
        .filter(OrderItem.product_id.isnot(None)),
        from_date, to_date,
    ).distinct()

    rows = (
        session.query(Product, Category.name)
        .outerjoin(Category, Product.category_id == Category.id)
        .filter(Product.id.notin_(sold))
        .order_by(Product.name, Product.size)
        .all()
    )
    result = []
    for product, category_name in rows:
        entry = product.to_dict()
        entry['category_name'] = category_name
        result.append(entry)
    return result
