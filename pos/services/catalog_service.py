"""Catalog service: categories and size-variant products."""
import logging
from typing import Dict, Any, List

from pos.models import Category, Product, RecipeLine, OrderItem
from pos.exceptions import NotFoundError, ValidationError
from pos.services.unit_conversion import to_amount
from pos.models._helpers import serialize_value

logger = logging.getLogger(__name__)

SIZE_ORDER = {'M': 0, 'L': 1}


def create_category(session, data: Dict[str, Any]) -> Category:
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Category name is required')
    if session.query(Category.id).filter(Category.name == name).first():
        raise ValidationError(f'Category "{name}" already exists')

    values = {'name': name, 'display_order': int(data.get('display_order') or 1)}
    if data.get('id'):
        values['id'] = data['id']
    category = Category(**values)
    session.add(category)
    session.flush()
    return category


def get_product(session, product_id: str) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f'Product {product_id} not found')
    return product


def _product_values(session, data: Dict[str, Any], partial=False) -> Dict[str, Any]:
    values = {}
    if not partial or 'name' in data:
        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError('Product name is required')
        values['name'] = name
    if not partial or 'price' in data:
        price = to_amount(data.get('price'))
        if price is None or price < 0:
            raise ValidationError('Price must be a number of at least 0')
        values['price'] = price
    if not partial or 'size' in data:
        values['size'] = (data.get('size') or 'M').strip().upper()
    if not partial or 'image_url' in data:
        values['image_url'] = data.get('image_url') or ''
    if not partial or 'category_id' in data:
        category_id = data.get('category_id')
        if category_id and session.get(Category, category_id) is None:
            raise NotFoundError(f'Category {category_id} not found')
        values['category_id'] = category_id or None
    return values


def create_product(session, data: Dict[str, Any]) -> Product:
    values = _product_values(session, data)
    if data.get('id'):
        values['id'] = data['id']
    product = Product(**values)
    session.add(product)
    session.flush()
    logger.info(f"[CATALOG] Created {product.name} ({product.size}) at {product.price}")
    return product


def update_product(session, product_id: str, changes: Dict[str, Any]):
    """Returns (product, changed_fields)."""
    product = get_product(session, product_id)
    values = _product_values(session, changes, partial=True)
    changed = {k: v for k, v in values.items() if getattr(product, k) != v}
    for field, value in changed.items():
        setattr(product, field, value)
    session.flush()
    return product, changed


def delete_product(session, product_id: str) -> None:
    """
    Delete a product variant.

    Its recipe lines go with it. Past order items keep their name/size
    snapshot and lose the product reference instead of blocking the delete.
    """
    product = get_product(session, product_id)
    session.query(RecipeLine).filter(RecipeLine.product_id == product_id).delete(synchronize_session=False)
    detached = (
        session.query(OrderItem)
        .filter(OrderItem.product_id == product_id)
        .update({OrderItem.product_id: None}, synchronize_session=False)
    )
    session.delete(product)
    session.flush()
    logger.info(f"[CATALOG] Deleted {product.name} ({product.size}); {detached} order items detached")


def get_products_by_category(session, category_name: str) -> List[Dict[str, Any]]:
    """
    Products of a category with their size variants grouped by name.

    Each entry is the first variant's data plus size_options
    [{id, size, price}], medium first.
    """
    category = session.query(Category).filter(Category.name == category_name).first()
    if category is None:
        return []

    products = (
        session.query(Product)
        .filter(Product.category_id == category.id)
        .order_by(Product.name)
        .all()
    )
    grouped = {}
    for product in products:
        entry = grouped.get(product.name)
        if entry is None:
            entry = product.to_dict()
            entry['size_options'] = []
            grouped[product.name] = entry
        entry['size_options'].append({'id': product.id, 'size': product.size, 'price': product.price})

    for entry in grouped.values():
        entry['size_options'].sort(key=lambda option: SIZE_ORDER.get(option['size'], len(SIZE_ORDER)))
    return list(grouped.values())


def product_payload(product: Product) -> Dict[str, Any]:
    return {k: serialize_value(v) for k, v in product.to_dict().items()}
