"""Recipe resolver: which ingredients a product consumes, per unit sold."""
import logging
from typing import List, Dict, Any

from sqlalchemy import or_

from pos.models import Product, InventoryItem, RecipeLine
from pos.exceptions import NotFoundError, ValidationError
from pos.services.unit_conversion import to_amount

logger = logging.getLogger(__name__)


def _get_product(session, product_id: str) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f'Product {product_id} not found')
    return product


def get_ingredients_for(session, product_id: str) -> List[Dict[str, Any]]:
    """
    Recipe lines of a product variant, joined with ingredient name and unit.

    Lines without a size apply to every variant. A product without a recipe
    yields an empty list.
    """
    product = _get_product(session, product_id)
    rows = (
        session.query(RecipeLine, InventoryItem.name, InventoryItem.unit)
        .join(InventoryItem, RecipeLine.inventory_id == InventoryItem.id)
        .filter(RecipeLine.product_id == product.id)
        .filter(or_(RecipeLine.size.is_(None), RecipeLine.size == '', RecipeLine.size == product.size))
        .order_by(InventoryItem.name)
        .all()
    )
    return [
        {
            'id': line.id,
            'product_id': line.product_id,
            'inventory_id': line.inventory_id,
            'inventory_name': name,
            'quantity_used': line.quantity_used,
            'unit': unit,
            'size': line.size,
        }
        for line, name, unit in rows
    ]


def set_ingredients_for(session, product_id: str, lines: List[Dict[str, Any]]) -> List[RecipeLine]:
    """
    Replace a product's whole recipe.

    Every line is validated before anything is deleted; the delete and the
    inserts run in the caller's transaction.
    """
    product = _get_product(session, product_id)

    prepared = []
    seen = set()
    for raw in lines or []:
        inventory_id = raw.get('inventory_id')
        if not inventory_id:
            raise ValidationError('Each ingredient needs an inventory_id')
        if inventory_id in seen:
            raise ValidationError(f'Ingredient {inventory_id} is listed twice')
        seen.add(inventory_id)

        quantity = to_amount(raw.get('quantity_used'))
        if quantity is None or quantity <= 0:
            raise ValidationError('Quantity used must be greater than 0')

        size = raw.get('size') or product.size
        if size != product.size:
            raise ValidationError(
                f'Ingredient size {size} does not match product size {product.size}'
            )

        if session.get(InventoryItem, inventory_id) is None:
            raise NotFoundError(f'Inventory item {inventory_id} not found')

        prepared.append(RecipeLine(
            product_id=product.id,
            inventory_id=inventory_id,
            quantity_used=quantity,
            size=size,
        ))

    session.query(RecipeLine).filter(RecipeLine.product_id == product.id).delete(synchronize_session=False)
    session.add_all(prepared)
    session.flush()
    logger.info(f"[RECIPE] {product.name} ({product.size}) now uses {len(prepared)} ingredients")
    return prepared


def recipe_payload(session, product_id: str) -> List[Dict[str, Any]]:
    """Current recipe lines in a JSON-safe shape for the sync journal."""
    lines = session.query(RecipeLine).filter(RecipeLine.product_id == product_id).all()
    return [
        {'inventory_id': line.inventory_id, 'quantity_used': str(line.quantity_used), 'size': line.size}
        for line in lines
    ]
