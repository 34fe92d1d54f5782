import pytest
from decimal import Decimal

from config import Config
from pos import create_app
from pos.database import Store
from pos.services.inventory_service import create_inventory_item
from pos.services.catalog_service import create_category, create_product
from pos.services.recipe_service import set_ingredients_for
from pos.services.sync_service import SyncService
from pos.services.hybrid_storage import DualStoreGateway, HybridStorage

UNREACHABLE_URL = 'sqlite:////nonexistent-pos-dir/remote.db'


def _sqlite_url(tmp_path, name):
    return f"sqlite:///{tmp_path / name}"


@pytest.fixture(scope='function')
def remote_store(tmp_path):
    """System-of-record store backed by a SQLite file."""
    store = Store('remote', _sqlite_url(tmp_path, 'remote.db'))
    store.create_schema()
    yield store
    store.dispose()


@pytest.fixture(scope='function')
def local_store(tmp_path):
    """Local cache store backed by a SQLite file."""
    store = Store('local', _sqlite_url(tmp_path, 'local.db'))
    store.create_schema()
    yield store
    store.dispose()


@pytest.fixture(scope='function')
def unreachable_store():
    """A remote whose database file can never be opened."""
    store = Store('remote', UNREACHABLE_URL)
    yield store
    store.dispose()


def _seed_cafe(store):
    """Milk, espresso beans and cups; Latte M/L and Espresso M with recipes."""
    with store.session_scope() as session:
        coffee = create_category(session, {'name': 'COFFEE', 'display_order': 1})
        milk = create_inventory_item(session, {
            'name': 'Milk', 'unit': 'ml', 'container_type': 'direct',
            'current_stock': '1000', 'minimum_threshold': '200',
        })
        beans = create_inventory_item(session, {
            'name': 'Espresso Beans', 'unit': 'g', 'container_type': 'bag',
            'number_of_containers': '2', 'container_quantity': '1', 'quantity_per_unit': '1000',
            'secondary_unit': 'bag', 'minimum_threshold': '250',
        })
        cups = create_inventory_item(session, {
            'name': 'Cups', 'unit': 'pc', 'container_type': 'box',
            'number_of_containers': '2', 'container_quantity': '5', 'quantity_per_unit': '10',
            'secondary_unit': 'sleeve', 'minimum_threshold': '10',
        })
        latte_m = create_product(session, {'name': 'Latte', 'price': '4.50', 'size': 'M', 'category_id': coffee.id})
        latte_l = create_product(session, {'name': 'Latte', 'price': '5.50', 'size': 'L', 'category_id': coffee.id})
        espresso = create_product(session, {'name': 'Espresso', 'price': '2.50', 'size': 'M', 'category_id': coffee.id})

        set_ingredients_for(session, latte_m.id, [
            {'inventory_id': milk.id, 'quantity_used': '200'},
            {'inventory_id': beans.id, 'quantity_used': '18'},
            {'inventory_id': cups.id, 'quantity_used': '1'},
        ])
        set_ingredients_for(session, latte_l.id, [
            {'inventory_id': milk.id, 'quantity_used': '300'},
            {'inventory_id': beans.id, 'quantity_used': '18'},
            {'inventory_id': cups.id, 'quantity_used': '1'},
        ])
        set_ingredients_for(session, espresso.id, [
            {'inventory_id': beans.id, 'quantity_used': '18'},
            {'inventory_id': cups.id, 'quantity_used': '1'},
        ])

        return {
            'category': coffee.id,
            'milk': milk.id,
            'beans': beans.id,
            'cups': cups.id,
            'latte_m': latte_m.id,
            'latte_l': latte_l.id,
            'espresso': espresso.id,
        }


@pytest.fixture(scope='session')
def seed_cafe():
    """seed_cafe(store) -> ids of the seeded rows."""
    return _seed_cafe


@pytest.fixture(scope='function')
def cafe(remote_store):
    """Seeded remote store; returns the ids of the seeded rows."""
    return _seed_cafe(remote_store)


@pytest.fixture(scope='function')
def sync_service(remote_store, local_store):
    return SyncService(remote_store, local_store, probe_timeout=2)


@pytest.fixture(scope='function')
def storage(remote_store, local_store, sync_service):
    """HybridStorage over both stores, without a view cache."""
    gateway = DualStoreGateway(remote_store, local_store, sync_service.state, sync_service.gate)
    return HybridStorage(gateway, sync_service=sync_service)


@pytest.fixture(scope='function')
def synced_cafe(cafe, sync_service):
    """Seeded remote store copied into the local cache."""
    sync_service.refresh_local_cache()
    return cafe


def _stock_of(store, item_id):
    from pos.models import InventoryItem

    with store.session_scope() as session:
        return Decimal(session.get(InventoryItem, item_id).current_stock)


@pytest.fixture(scope='session')
def stock_of():
    """stock_of(store, item_id) -> current stock as a Decimal."""
    return _stock_of


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application instance for testing."""

    class TestConfig(Config):
        TESTING = True
        REMOTE_DATABASE_URL = _sqlite_url(tmp_path, 'app-remote.db')
        LOCAL_DATABASE_URL = _sqlite_url(tmp_path, 'app-local.db')
        SYNC_AUTOSTART = False
        CACHE_ENABLED = False

    app = create_app(TestConfig)
    yield app
    for store in app.extensions['pos_stores'].values():
        store.dispose()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()
