"""
Order engine: turn a cart into a persisted order and deplete ingredients.

place_order does all of its writes in the caller's session. The store's
session_scope commits them together or rolls all of them back, so an order
never exists with only part of its stock taken, and stock never moves
without its order.
"""
import logging
import threading
import uuid
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import List, Dict, Any, Optional

from sqlalchemy.exc import SQLAlchemyError, OperationalError, InterfaceError

from pos.models import Order, OrderItem, Product
from pos.exceptions import (
    PosError, EmptyOrderError, ValidationError, InsufficientPaymentError,
    NotFoundError, TransactionFailure,
)
from pos.services.inventory_service import adjust_stock
from pos.services.recipe_service import get_ingredients_for
from pos.services.unit_conversion import MAX_AMOUNT, to_amount, to_decimal, quantize

logger = logging.getLogger(__name__)

DEFAULT_ORDER_PREFIX = 'BRU'
MAX_QUANTITY = 100000  # per cart line

_order_clock_lock = threading.Lock()
_last_order_stamp = (0, -1)


def generate_order_id(prefix: str = DEFAULT_ORDER_PREFIX, now: Optional[datetime] = None) -> str:
    """
    Human-readable order number that sorts in sale order: BRU-2026-0A3F9C12E-7B41.

    The middle part is the milliseconds since the start of the year in hex,
    bumped so ids from this process never repeat or go backwards. The random
    tail keeps ids generated on different tills apart.
    """
    global _last_order_stamp
    now = now or datetime.now()
    year_start = now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    stamp = int((now - year_start).total_seconds() * 1000)
    with _order_clock_lock:
        last_year, last_stamp = _last_order_stamp
        if last_year == now.year and stamp <= last_stamp:
            stamp = last_stamp + 1
        _last_order_stamp = (now.year, stamp)
    return f"{prefix}-{now.year}-{stamp:09X}-{uuid.uuid4().hex[:4].upper()}"


def validate_cart(cart_lines, amount_paid) -> Dict[str, Any]:
    """
    Check a cart and payment before anything touches the store.

    Prices are the ones submitted with the cart, so a price edited while the
    customer is paying cannot change the agreed total.
    """
    if not cart_lines:
        raise EmptyOrderError()

    lines = []
    total = Decimal('0.00')
    for raw in cart_lines:
        product_id = raw.get('product_id')
        if not product_id:
            raise ValidationError('Each cart line needs a product_id')

        quantity_dec = to_decimal(raw.get('quantity'))
        if (quantity_dec is None or quantity_dec <= 0 or quantity_dec > MAX_QUANTITY
                or quantity_dec != quantity_dec.to_integral_value()):
            raise ValidationError('Quantity must be a whole number greater than 0')

        price = to_amount(raw.get('price'))
        if price is None or price < 0:
            raise ValidationError('Price must be a number of at least 0')

        quantity = int(quantity_dec)
        line_total = quantize(price * quantity)
        lines.append({
            'product_id': str(product_id),
            'quantity': quantity,
            'price': price,
            'line_total': line_total,
        })
        total += line_total
        if total > MAX_AMOUNT:
            raise ValidationError(f'Order total {total} is too large')

    paid = to_amount(amount_paid)
    if paid is None:
        raise ValidationError('Amount paid must be a number')
    if paid < total:
        raise InsufficientPaymentError(total, paid)

    return {'lines': lines, 'total': total, 'amount_paid': paid, 'change': paid - total}


def place_order(session, cart_lines: List[Dict[str, Any]], amount_paid, user_id,
                order_id: Optional[str] = None, order_prefix: str = DEFAULT_ORDER_PREFIX) -> Dict[str, Any]:
    """
    Persist an order and consume its ingredients in one unit of work.

    Steps:
    1. Validate cart and payment (no writes yet)
    2. Load the products being sold
    3. Insert the order and its items (name/size snapshots, sale-time price)
    4. Resolve recipes and sum the consumption per ingredient
    5. Apply each ingredient's delta with adjust_stock, in id order so
       concurrent orders take row locks in the same sequence

    Returns the order summary (order, items, amount_paid, change,
    stock_deltas). Raises ValidationError, EmptyOrderError,
    InsufficientPaymentError, NotFoundError or TransactionFailure.
    """
    checked = validate_cart(cart_lines, amount_paid)

    try:
        product_ids = {line['product_id'] for line in checked['lines']}
        products = session.query(Product).filter(Product.id.in_(product_ids)).all()
        products_dict = {p.id: p for p in products}
        missing = product_ids - set(products_dict)
        if missing:
            raise NotFoundError(f"Product(s) not found: {', '.join(sorted(missing))}")

        order = Order(
            id=order_id or generate_order_id(order_prefix),
            total=checked['total'],
            amount_paid=checked['amount_paid'],
            change=checked['change'],
            user_id=str(user_id),
            created_at=datetime.now(),
        )
        session.add(order)

        items = []
        for line in checked['lines']:
            product = products_dict[line['product_id']]
            item = OrderItem(
                order=order,
                product_id=product.id,
                quantity=line['quantity'],
                price=line['price'],
                product_name=product.name,
                size=product.size,
            )
            session.add(item)
            items.append({
                'product_id': product.id,
                'product_name': product.name,
                'size': product.size,
                'image_url': product.image_url,
                'category_id': product.category_id,
                'quantity': line['quantity'],
                'price': line['price'],
                'line_total': line['line_total'],
            })
        session.flush()

        deltas = defaultdict(Decimal)
        for line in checked['lines']:
            for ingredient in get_ingredients_for(session, line['product_id']):
                deltas[ingredient['inventory_id']] -= Decimal(ingredient['quantity_used']) * line['quantity']

        stock_deltas = {}
        for inventory_id in sorted(deltas):
            delta = quantize(deltas[inventory_id])
            if delta == 0:
                continue
            adjust_stock(session, inventory_id, delta)
            stock_deltas[inventory_id] = delta

    except (PosError, OperationalError, InterfaceError):
        # Connection-level errors are classified by the store (fallback to local)
        raise
    except SQLAlchemyError as e:
        logger.error(f"[ORDER] Failed to place order: {e}")
        raise TransactionFailure() from e

    logger.info(
        f"[ORDER] {order.id}: total={order.total} paid={order.amount_paid} "
        f"change={order.change} ingredients={len(stock_deltas)}"
    )
    return {
        'order': order.to_dict(),
        'items': items,
        'amount_paid': order.amount_paid,
        'change': order.change,
        'stock_deltas': stock_deltas,
    }


def order_payload(summary: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-safe order record for the sync journal (order rows only, no stock)."""
    order = summary['order']
    return {
        'order': {
            'id': order['id'],
            'total': str(order['total']),
            'amount_paid': str(order['amount_paid']),
            'change': str(order['change']),
            'user_id': order['user_id'],
            'created_at': order['created_at'],
        },
        'items': [
            {
                'product_id': item['product_id'],
                'product_name': item['product_name'],
                'size': item['size'],
                'quantity': item['quantity'],
                'price': str(item['price']),
            }
            for item in summary['items']
        ],
    }


def insert_order_rows(session, payload: Dict[str, Any]) -> bool:
    """
    Write an already-validated order into a store. Stock is not touched.

    Returns False when the order id is already there, so replaying the same
    journal entry twice is harmless.
    """
    data = payload['order']
    if session.get(Order, data['id']) is not None:
        return False

    order = Order(
        id=data['id'],
        total=Decimal(data['total']),
        amount_paid=Decimal(data['amount_paid']),
        change=Decimal(data['change']),
        user_id=data['user_id'],
        created_at=datetime.fromisoformat(data['created_at']),
    )
    session.add(order)
    for item in payload['items']:
        session.add(OrderItem(
            order=order,
            product_id=item['product_id'],
            quantity=int(item['quantity']),
            price=Decimal(item['price']),
            product_name=item.get('product_name'),
            size=item.get('size'),
        ))
    session.flush()
    return True


def get_order_details(session, order_id: str) -> Dict[str, Any]:
    """Order summary for a stored order; deleted products fall back to the snapshots."""
    order = session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f'Order {order_id} not found')

    items = []
    for item in order.items:
        product = item.product
        items.append({
            'product_id': item.product_id,
            'product_name': product.name if product else (item.product_name or 'Deleted Product'),
            'size': product.size if product else (item.size or 'M'),
            'image_url': product.image_url if product else None,
            'category_id': product.category_id if product else None,
            'quantity': item.quantity,
            'price': item.price,
            'line_total': quantize(item.price * item.quantity),
        })
    return {
        'order': order.to_dict(),
        'items': items,
        'amount_paid': order.amount_paid,
        'change': order.change,
    }
