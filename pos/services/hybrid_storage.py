"""
HybridStorage: the storage facade the UI/API boundary talks to.

Every call is dispatched through DualStoreGateway, which picks the active
store, falls back to the local store when the remote drops mid-request, and
journals writes for the other store. Results are plain dicts.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pos.models import InventoryItem, SyncOperation, SyncTarget
from pos.models._helpers import serialize_value
from pos.exceptions import PosError, StoreUnavailableError
from pos.services import inventory_service, recipe_service, order_service, catalog_service, sales_service
from pos.services.sync_service import enqueue_entries
from pos.services.unit_conversion import display_string, describe_container_math
from pos.blueprints.metrics import pos_orders_placed_total, pos_store_operations_total

logger = logging.getLogger(__name__)


class DualStoreGateway:
    """
    Single dispatch point between the remote and local stores.

    run(operation, local_operation=None, journal=None):
    - ONLINE: operation(session) runs in one remote transaction. On success
      journal(result) entries are queued for the local cache (target=local).
    - OFFLINE, or the remote was unreachable for this request: the local
      variant (local_operation, default operation) runs in one local
      transaction and journal(result) entries are queued with
      target=remote in that same transaction.
    Domain errors and non-connectivity failures never trigger a fallback.
    """

    def __init__(self, remote_store, local_store, state, gate):
        self.remote = remote_store
        self.local = local_store
        self.state = state
        self.gate = gate

    def run(self, operation: Callable, local_operation: Optional[Callable] = None,
            journal: Optional[Callable] = None):
        with self.gate.shared():
            if self.state.is_online():
                try:
                    return self._run_remote(operation, journal)
                except StoreUnavailableError as e:
                    logger.warning(f"[SYNC] {e.message}; serving this request from the local store")
                    pos_store_operations_total.labels(store='remote', outcome='unavailable').inc()
            return self._run_local(local_operation or operation, journal)

    def _run_remote(self, operation, journal):
        with self.remote.session_scope() as session:
            result = operation(session)
        pos_store_operations_total.labels(store='remote', outcome='ok').inc()

        entries = journal(result) if journal else None
        if entries:
            try:
                with self.local.session_scope() as session:
                    enqueue_entries(session, entries, SyncTarget.LOCAL)
            except PosError as e:
                # The remote write stands; the next cache refresh catches the local store up.
                logger.error(f"[SYNC] Could not queue local mirror of a remote write: {e.message}")
        return result

    def _run_local(self, operation, journal):
        with self.local.session_scope() as session:
            result = operation(session)
            entries = journal(result) if journal else None
            if entries:
                enqueue_entries(session, entries, SyncTarget.REMOTE)
                logger.info(f"[SYNC] Queued {len(entries)} writes for the remote store")
        pos_store_operations_total.labels(store='local', outcome='ok').inc()
        return result


def _serialize(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: serialize_value(value) for key, value in values.items()}


def _inventory_view(item) -> Dict[str, Any]:
    data = item.to_dict()
    data['display'] = display_string(item.current_stock, item.unit)
    data['container_math'] = describe_container_math(item)
    return data


def _date_key(value: Optional[datetime]) -> str:
    return value.isoformat() if value else '-'


class HybridStorage:
    """Storage operations for the POS screens."""

    def __init__(self, gateway: DualStoreGateway, sync_service=None, cache=None,
                 order_prefix: str = order_service.DEFAULT_ORDER_PREFIX):
        self.gateway = gateway
        self.sync = sync_service
        self.cache = cache
        self.order_prefix = order_prefix

    # -- helpers ----------------------------------------------------------

    def _memoize(self, module: str, key: str, loader: Callable[[], Any]):
        if self.cache is None:
            return loader()
        return self.cache.memoize(module, key, loader)

    def _invalidate_views(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_views()

    def _write(self, operation, journal):
        result = self.gateway.run(operation, journal=journal)
        self._invalidate_views()
        return result

    # -- orders -----------------------------------------------------------

    def place_order(self, cart_lines: List[Dict[str, Any]], amount_paid, user_id) -> Dict[str, Any]:
        """
        Sell a cart. Returns the order summary, including which store took it.

        The order id is chosen up front so a remote attempt and its local
        fallback write the same order.
        """
        order_id = order_service.generate_order_id(self.order_prefix)

        def operation(session):
            summary = order_service.place_order(session, cart_lines, amount_paid, user_id, order_id=order_id)
            summary['store'] = session.info.get('store')
            return summary

        def journal(summary):
            entries = [('orders', SyncOperation.INSERT, order_service.order_payload(summary))]
            for inventory_id, delta in sorted(summary['stock_deltas'].items()):
                entries.append(('inventory', SyncOperation.UPDATE, {'id': inventory_id, 'delta': str(delta)}))
            return entries

        summary = self._write(operation, journal)
        pos_orders_placed_total.labels(store=summary['store'] or 'unknown').inc()
        return summary

    def get_order_details(self, order_id: str) -> Dict[str, Any]:
        return self.gateway.run(lambda session: order_service.get_order_details(session, order_id))

    # -- inventory --------------------------------------------------------

    def get_all_inventory(self) -> List[Dict[str, Any]]:
        def load():
            return self.gateway.run(
                lambda session: [_inventory_view(item) for item in inventory_service.get_all_inventory(session)]
            )
        return self._memoize('inventory', 'all', load)

    def get_low_stock(self) -> List[Dict[str, Any]]:
        def load():
            return self.gateway.run(
                lambda session: [_inventory_view(item) for item in inventory_service.get_low_stock_items(session)]
            )
        return self._memoize('low_stock', 'all', load)

    def create_inventory_item(self, data: Dict[str, Any]) -> Dict[str, Any]:
        def operation(session):
            return _inventory_view(inventory_service.create_inventory_item(session, data))

        def journal(item):
            return [('inventory', SyncOperation.INSERT, _serialize({k: item[k] for k in ('id',) + InventoryItem.FIELDS}))]

        return self._write(operation, journal)

    def update_inventory_item(self, item_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        def operation(session):
            item, changed = inventory_service.update_inventory_item(session, item_id, changes)
            return {'item': _inventory_view(item), 'changed': _serialize(changed)}

        def journal(result):
            if not result['changed']:
                return []
            return [('inventory', SyncOperation.UPDATE, {'id': item_id, 'fields': result['changed']})]

        return self._write(operation, journal)

    def restock_inventory_item(self, item_id: str, number_of_containers, container_quantity,
                               quantity_per_unit) -> Dict[str, Any]:
        def operation(session):
            item, added, fields = inventory_service.restock_inventory_item(
                session, item_id, number_of_containers, container_quantity, quantity_per_unit
            )
            return {'item': _inventory_view(item), 'added': added, 'changed': _serialize(fields)}

        def journal(result):
            restock = _serialize({
                'number_of_containers': number_of_containers,
                'container_quantity': container_quantity,
                'quantity_per_unit': quantity_per_unit,
            })
            return [('inventory', SyncOperation.UPDATE, {'id': item_id, 'restock': restock})]

        return self._write(operation, journal)

    def delete_inventory_item(self, item_id: str) -> Dict[str, Any]:
        def operation(session):
            inventory_service.delete_inventory_item(session, item_id)
            return {'id': item_id, 'deleted': True}

        return self._write(operation, lambda result: [('inventory', SyncOperation.DELETE, {'id': item_id})])

    # -- recipes ----------------------------------------------------------

    def get_recipe(self, product_id: str) -> List[Dict[str, Any]]:
        return self.gateway.run(lambda session: recipe_service.get_ingredients_for(session, product_id))

    def set_recipe(self, product_id: str, lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        def operation(session):
            recipe_service.set_ingredients_for(session, product_id, lines)
            return {
                'lines': recipe_service.get_ingredients_for(session, product_id),
                'payload': recipe_service.recipe_payload(session, product_id),
            }

        def journal(result):
            return [('product_ingredients', SyncOperation.UPDATE,
                     {'product_id': product_id, 'lines': result['payload']})]

        return self._write(operation, journal)['lines']

    # -- catalog ----------------------------------------------------------

    def create_category(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._write(
            lambda session: catalog_service.create_category(session, data).to_dict(),
            lambda category: [('categories', SyncOperation.INSERT, dict(category))],
        )

    def create_product(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._write(
            lambda session: catalog_service.product_payload(catalog_service.create_product(session, data)),
            lambda product: [('products', SyncOperation.INSERT, dict(product))],
        )

    def update_product(self, product_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        def operation(session):
            product, changed = catalog_service.update_product(session, product_id, changes)
            return {'product': catalog_service.product_payload(product), 'changed': _serialize(changed)}

        def journal(result):
            if not result['changed']:
                return []
            return [('products', SyncOperation.UPDATE, {'id': product_id, 'fields': result['changed']})]

        return self._write(operation, journal)

    def delete_product(self, product_id: str) -> Dict[str, Any]:
        def operation(session):
            catalog_service.delete_product(session, product_id)
            return {'id': product_id, 'deleted': True}

        return self._write(operation, lambda result: [('products', SyncOperation.DELETE, {'id': product_id})])

    def get_products_by_category(self, category_name: str) -> List[Dict[str, Any]]:
        return self.gateway.run(lambda session: catalog_service.get_products_by_category(session, category_name))

    # -- analytics --------------------------------------------------------

    def get_sales_data(self, from_date: Optional[datetime] = None,
                       to_date: Optional[datetime] = None) -> List[Dict[str, Any]]:
        def load():
            return self.gateway.run(lambda session: sales_service.get_sales_data(session, from_date, to_date))
        return self._memoize('sales', f"volume:{_date_key(from_date)}:{_date_key(to_date)}", load)

    def get_non_selling_products(self, from_date: Optional[datetime] = None,
                                 to_date: Optional[datetime] = None) -> List[Dict[str, Any]]:
        def load():
            return self.gateway.run(
                lambda session: sales_service.get_non_selling_products(session, from_date, to_date)
            )
        return self._memoize('sales', f"non_selling:{_date_key(from_date)}:{_date_key(to_date)}", load)

    # -- sync -------------------------------------------------------------

    def sync_status(self) -> Dict[str, Any]:
        if self.sync is None:
            return {'mode': self.gateway.state.mode, 'online': self.gateway.state.is_online()}
        return self.sync.status()
