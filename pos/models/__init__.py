"""Models package - exports all SQLAlchemy models."""
from pos.models.category import Category
from pos.models.product import Product
from pos.models.inventory_item import InventoryItem, DIRECT_CONTAINER, BASE_UNITS
from pos.models.recipe_line import RecipeLine
from pos.models.order import Order
from pos.models.order_item import OrderItem
from pos.models.sync_queue_entry import SyncQueueEntry, SyncOperation, SyncStatus, SyncTarget
from pos.models.schema_version import SchemaVersion

__all__ = [
    'Category', 'Product',
    'InventoryItem', 'DIRECT_CONTAINER', 'BASE_UNITS',
    'RecipeLine',
    'Order', 'OrderItem',
    'SyncQueueEntry', 'SyncOperation', 'SyncStatus', 'SyncTarget',
    'SchemaVersion',
]
