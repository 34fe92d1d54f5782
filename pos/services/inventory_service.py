"""
Inventory ledger: ingredient stock levels in base units.

Stock is only ever moved with a relative, store-evaluated delta
(adjust_stock). Absolute writes to current_stock happen solely through an
operator's explicit edit in update_inventory_item.
"""
import logging
from decimal import Decimal
from typing import Dict, Any, List, Tuple

from sqlalchemy import update

from pos.models import InventoryItem, RecipeLine, DIRECT_CONTAINER, BASE_UNITS
from pos.exceptions import NotFoundError, ValidationError
from pos.services.unit_conversion import (
    MAX_AMOUNT, to_amount, to_decimal, quantize, compute_total_from_containers,
    compute_secondary_units_from_stock, require_total_from_containers,
)

logger = logging.getLogger(__name__)

CONTAINER_FIELDS = ('number_of_containers', 'container_quantity', 'quantity_per_unit')
DECIMAL_FIELDS = ('current_stock', 'minimum_threshold') + CONTAINER_FIELDS


def get_all_inventory(session) -> List[InventoryItem]:
    return session.query(InventoryItem).order_by(InventoryItem.name).all()


def get_inventory_item(session, item_id: str) -> InventoryItem:
    item = session.get(InventoryItem, item_id)
    if item is None:
        raise NotFoundError(f'Inventory item {item_id} not found')
    return item


def get_low_stock_items(session) -> List[InventoryItem]:
    """Items at or below their minimum threshold (base-unit comparison)."""
    return (
        session.query(InventoryItem)
        .filter(InventoryItem.current_stock <= InventoryItem.minimum_threshold)
        .order_by(InventoryItem.name)
        .all()
    )


def adjust_stock(session, item_id: str, delta) -> InventoryItem:
    """
    Apply current_stock += delta as a single UPDATE evaluated by the store.

    Concurrent orders touching the same ingredient both land because the
    arithmetic happens under the store's row lock, never in Python.
    """
    delta = to_amount(delta)
    if delta is None:
        raise ValidationError('Stock adjustment must be a number')

    result = session.execute(
        update(InventoryItem)
        .where(InventoryItem.id == item_id)
        .values(current_stock=InventoryItem.current_stock + delta)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f'Inventory item {item_id} not found')

    item = session.get(InventoryItem, item_id, populate_existing=True)
    logger.info(f"[STOCK] {item.name}: {'+' if delta >= 0 else ''}{delta} {item.unit} -> {item.current_stock}")
    if item.current_stock < 0:
        logger.warning(f"[STOCK] {item.name} is below zero ({item.current_stock} {item.unit})")
    return item


def _clean_text(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_decimal_field(field, value, allow_none=True):
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise ValidationError(f'{field} is required')
    parsed = to_amount(value)
    if parsed is None:
        raise ValidationError(f'{field} must be a number no larger than {MAX_AMOUNT}')
    return parsed


def _normalize_container_type(value):
    value = _clean_text(value)
    return value.lower() if value else DIRECT_CONTAINER


def _check_name_available(session, name, exclude_id=None):
    query = session.query(InventoryItem.id).filter(InventoryItem.name == name)
    if exclude_id:
        query = query.filter(InventoryItem.id != exclude_id)
    if query.first():
        raise ValidationError(f'An inventory item named "{name}" already exists')


def _validate(values: Dict[str, Any]):
    if not values.get('name'):
        raise ValidationError('Name is required')
    if values.get('unit') not in BASE_UNITS:
        raise ValidationError(f"Unit must be one of: {', '.join(BASE_UNITS)}")
    if values.get('minimum_threshold') is not None and values['minimum_threshold'] < 0:
        raise ValidationError('Minimum threshold cannot be negative')
    n = values.get('number_of_containers')
    if n is not None and n < 1:
        raise ValidationError('Number of containers must be at least 1')
    for field in ('container_quantity', 'quantity_per_unit'):
        if values.get(field) is not None and values[field] <= 0:
            raise ValidationError(f'{field} must be greater than 0')


def create_inventory_item(session, data: Dict[str, Any]) -> InventoryItem:
    """
    Create an ingredient.

    For packaged items (container_type other than "direct") the stock is
    derived from the container fields when they are complete; otherwise an
    explicit current_stock is required.
    """
    container_type = _normalize_container_type(data.get('container_type'))
    number_of_containers = _parse_decimal_field('number_of_containers', data.get('number_of_containers'))
    values = {
        'name': _clean_text(data.get('name')),
        'unit': _clean_text(data.get('unit')),
        'container_type': container_type,
        'minimum_threshold': _parse_decimal_field('minimum_threshold', data.get('minimum_threshold', 0), allow_none=False),
        'current_stock': _parse_decimal_field('current_stock', data.get('current_stock')),
        'number_of_containers': Decimal('1') if number_of_containers is None else number_of_containers,
        'container_quantity': None,
        'quantity_per_unit': None,
        'secondary_unit': None,
    }
    if container_type != DIRECT_CONTAINER:
        values['container_quantity'] = _parse_decimal_field('container_quantity', data.get('container_quantity'))
        values['quantity_per_unit'] = _parse_decimal_field('quantity_per_unit', data.get('quantity_per_unit'))
        values['secondary_unit'] = _clean_text(data.get('secondary_unit'))

        computed = compute_total_from_containers(
            values['number_of_containers'], values['container_quantity'], values['quantity_per_unit']
        )
        if computed is not None:
            values['current_stock'] = computed

    if values['current_stock'] is None:
        raise ValidationError('Current stock is required when container details are incomplete')

    _validate(values)
    _check_name_available(session, values['name'])

    if data.get('id'):
        values['id'] = data['id']
    item = InventoryItem(**values)
    session.add(item)
    session.flush()
    logger.info(f"[STOCK] Created {item.name} with {item.current_stock} {item.unit}")
    return item


def update_inventory_item(session, item_id: str, changes: Dict[str, Any]) -> Tuple[InventoryItem, Dict[str, Any]]:
    """
    Apply an operator edit. Returns the item and the columns that changed.

    Stock handling for packaged items:
    - a changed container field recomputes current_stock from containers
      (a client-sent current_stock is ignored);
    - a changed current_stock alone back-derives container_quantity (the
      operator is not editing container_quantity, or the branch above
      would have applied);
    - edits that touch neither leave stock and containers untouched.
    """
    item = get_inventory_item(session, item_id)

    proposed = {}
    for field in ('name', 'unit', 'secondary_unit'):
        if field in changes:
            proposed[field] = _clean_text(changes[field])
    if 'container_type' in changes:
        proposed['container_type'] = _normalize_container_type(changes['container_type'])
    for field in DECIMAL_FIELDS:
        if field in changes:
            proposed[field] = _parse_decimal_field(field, changes[field], allow_none=(field in ('container_quantity', 'quantity_per_unit')))

    changed = {k: v for k, v in proposed.items() if getattr(item, k) != v}

    container_type = changed.get('container_type', item.container_type)
    if container_type == DIRECT_CONTAINER:
        if 'container_type' in changed:
            changed.update({
                'container_quantity': None,
                'quantity_per_unit': None,
                'secondary_unit': None,
                'number_of_containers': Decimal('1'),
            })
        else:
            for field in ('container_quantity', 'quantity_per_unit', 'secondary_unit'):
                changed.pop(field, None)
    else:
        containers_changed = any(f in changed for f in CONTAINER_FIELDS) or 'container_type' in changed
        if containers_changed:
            changed.pop('current_stock', None)
            merged = {f: changed.get(f, getattr(item, f)) for f in CONTAINER_FIELDS}
            computed = compute_total_from_containers(
                merged['number_of_containers'], merged['container_quantity'], merged['quantity_per_unit']
            )
            if computed is not None and computed != item.current_stock:
                changed['current_stock'] = computed
        elif 'current_stock' in changed:
            derived = compute_secondary_units_from_stock(
                changed['current_stock'], item.quantity_per_unit, item.number_of_containers
            )
            if derived is not None and derived != item.container_quantity:
                changed['container_quantity'] = derived

    values = {f: changed.get(f, getattr(item, f)) for f in InventoryItem.FIELDS}
    _validate(values)
    if 'name' in changed:
        _check_name_available(session, changed['name'], exclude_id=item.id)

    for field, value in changed.items():
        setattr(item, field, value)
    session.flush()

    if 'current_stock' in changed:
        logger.info(f"[STOCK] {item.name} stock set to {item.current_stock} {item.unit} by edit")
    return item, changed


def restock_inventory_item(session, item_id: str, number_of_containers, container_quantity, quantity_per_unit):
    """
    Add a delivery to stock: number_of_containers x container_quantity x quantity_per_unit.

    The addition goes through adjust_stock so it composes with sales that
    happen at the same time. The delivered packaging then becomes the item's
    container description, with container_quantity back-derived so
    containers x container_quantity x quantity_per_unit matches the new stock.
    Returns (item, added, metadata_changes).
    """
    added = require_total_from_containers(number_of_containers, container_quantity, quantity_per_unit)
    item = adjust_stock(session, item_id, added)

    fields = {}
    if not item.is_direct:
        per_unit = quantize(to_decimal(quantity_per_unit))
        fields['quantity_per_unit'] = per_unit
        derived = compute_secondary_units_from_stock(item.current_stock, per_unit, item.number_of_containers)
        if derived is not None:
            fields['container_quantity'] = derived
        for field, value in fields.items():
            setattr(item, field, value)
        session.flush()

    logger.info(f"[STOCK] Restocked {item.name} with {added} {item.unit}")
    return item, added, fields


def apply_field_values(session, item_id: str, fields: Dict[str, Any]) -> InventoryItem:
    """Set columns verbatim (used when replaying an already validated edit)."""
    item = get_inventory_item(session, item_id)
    for field, value in fields.items():
        if field not in InventoryItem.FIELDS:
            continue
        if field in DECIMAL_FIELDS and value is not None:
            value = to_decimal(value)
        setattr(item, field, value)
    session.flush()
    return item


def delete_inventory_item(session, item_id: str) -> None:
    """Delete an ingredient after removing the recipe lines that use it."""
    item = get_inventory_item(session, item_id)
    removed = session.query(RecipeLine).filter(RecipeLine.inventory_id == item_id).delete(synchronize_session=False)
    session.delete(item)
    session.flush()
    logger.info(f"[STOCK] Deleted {item.name} ({removed} recipe lines removed)")
