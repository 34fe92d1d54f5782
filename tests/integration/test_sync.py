"""
Integration tests for offline operation and dual-store synchronization.
"""

import time

import pytest
from decimal import Decimal

from pos.exceptions import InsufficientPaymentError, NotFoundError
from pos.models import Order, InventoryItem, Product, SyncQueueEntry, SyncOperation, SyncStatus, SyncTarget
from pos.services.sync_service import SyncService, ONLINE, OFFLINE, enqueue_entries
from pos.services.hybrid_storage import DualStoreGateway, HybridStorage


def _entries(store, target=None, status=None):
    with store.session_scope() as session:
        query = session.query(SyncQueueEntry).order_by(SyncQueueEntry.id)
        if target is not None:
            query = query.filter(SyncQueueEntry.target == target)
        if status is not None:
            query = query.filter(SyncQueueEntry.status == status)
        return query.all()


def _order_exists(store, order_id):
    with store.session_scope() as session:
        return session.get(Order, order_id) is not None


def _latte_cart(cafe, quantity=2):
    return [{'product_id': cafe['latte_m'], 'quantity': quantity, 'price': '4.50'}]


class TestOnlineWrites:
    """Writes while the remote store is reachable."""

    def test_order_goes_to_remote_and_is_mirrored_locally(self, storage, sync_service, synced_cafe,
                                                          remote_store, local_store, stock_of):
        summary = storage.place_order(_latte_cart(synced_cafe), '10', 'barista-1')

        assert summary['store'] == 'remote'
        assert _order_exists(remote_store, summary['order']['id'])
        assert stock_of(remote_store, synced_cafe['milk']) == Decimal('600.00')
        # Local cache not touched yet, only journaled
        assert stock_of(local_store, synced_cafe['milk']) == Decimal('1000.00')
        local_entries = _entries(local_store, SyncTarget.LOCAL, SyncStatus.PENDING)
        assert [(e.table_name, e.operation) for e in local_entries][0] == ('orders', SyncOperation.INSERT)
        assert len(local_entries) == 4

        assert sync_service.tick() == ONLINE
        assert stock_of(local_store, synced_cafe['milk']) == Decimal('600.00')
        assert _order_exists(local_store, summary['order']['id'])
        assert _entries(local_store, SyncTarget.LOCAL, SyncStatus.PENDING) == []

    def test_domain_error_does_not_fall_back(self, storage, synced_cafe, local_store):
        with pytest.raises(InsufficientPaymentError):
            storage.place_order(_latte_cart(synced_cafe), '1', 'u')
        assert _entries(local_store) == []

    def test_reads_come_from_remote(self, storage, synced_cafe, remote_store):
        with remote_store.session_scope() as session:
            session.get(InventoryItem, synced_cafe['milk']).name = 'Whole Milk'
        names = [item['name'] for item in storage.get_all_inventory()]
        assert 'Whole Milk' in names


class TestOfflineWrites:
    """Writes while the remote store is down, and their replay."""

    def test_offline_order_is_journaled_and_replayed(self, storage, sync_service, synced_cafe,
                                                     remote_store, local_store, stock_of):
        sync_service.state.set_mode(OFFLINE)

        summary = storage.place_order(_latte_cart(synced_cafe), '10', 'barista-1')
        order_id = summary['order']['id']

        assert summary['store'] == 'local'
        assert not _order_exists(remote_store, order_id)
        assert stock_of(local_store, synced_cafe['milk']) == Decimal('600.00')
        pending = _entries(local_store, SyncTarget.REMOTE, SyncStatus.PENDING)
        assert [(e.table_name, e.operation) for e in pending] == [
            ('orders', SyncOperation.INSERT),
            ('inventory', SyncOperation.UPDATE),
            ('inventory', SyncOperation.UPDATE),
            ('inventory', SyncOperation.UPDATE),
        ]

        assert sync_service.tick() == ONLINE

        assert _order_exists(remote_store, order_id)
        assert stock_of(remote_store, synced_cafe['milk']) == Decimal('600.00')
        assert stock_of(remote_store, synced_cafe['beans']) == Decimal('1964.00')
        assert _entries(local_store, SyncTarget.REMOTE, SyncStatus.PENDING) == []
        assert all(e.synced_at is not None for e in _entries(local_store, SyncTarget.REMOTE))
        # Cache refreshed from the remote after the drain
        assert stock_of(local_store, synced_cafe['milk']) == Decimal('600.00')

    def test_offline_and_remote_sales_compose(self, storage, sync_service, synced_cafe,
                                              remote_store, local_store, stock_of):
        """A sale recorded remotely while this till was offline is not overwritten by the replay."""
        sync_service.state.set_mode(OFFLINE)
        storage.place_order(_latte_cart(synced_cafe, quantity=1), '5', 'till-1')

        from pos.services.order_service import place_order
        with remote_store.session_scope() as session:
            place_order(session, _latte_cart(synced_cafe, quantity=2), '10', 'till-2')

        sync_service.tick()
        assert stock_of(remote_store, synced_cafe['milk']) == Decimal('400.00')
        assert stock_of(local_store, synced_cafe['milk']) == Decimal('400.00')

    def test_remote_drop_mid_request_falls_back(self, unreachable_store, local_store, seed_cafe, stock_of):
        ids = seed_cafe(local_store)
        service = SyncService(unreachable_store, local_store, probe_timeout=2)
        gateway = DualStoreGateway(unreachable_store, local_store, service.state, service.gate)
        storage = HybridStorage(gateway, sync_service=service)

        summary = storage.place_order(_latte_cart(ids), '10', 'u')

        assert service.state.is_online()
        assert summary['store'] == 'local'
        assert stock_of(local_store, ids['milk']) == Decimal('600.00')
        assert len(_entries(local_store, SyncTarget.REMOTE, SyncStatus.PENDING)) == 4

    def test_offline_inventory_edits_replay(self, storage, sync_service, synced_cafe,
                                            remote_store, local_store, stock_of):
        sync_service.state.set_mode(OFFLINE)

        created = storage.create_inventory_item({'name': 'Vanilla Syrup', 'unit': 'ml', 'current_stock': '750'})
        storage.update_inventory_item(synced_cafe['milk'], {'minimum_threshold': '300'})
        storage.restock_inventory_item(synced_cafe['cups'], '1', '5', '10')
        storage.delete_inventory_item(synced_cafe['beans'])

        sync_service.tick()

        with remote_store.session_scope() as session:
            syrup = session.get(InventoryItem, created['id'])
            assert syrup.current_stock == Decimal('750.00')
            assert session.get(InventoryItem, synced_cafe['milk']).minimum_threshold == Decimal('300.00')
            assert session.get(InventoryItem, synced_cafe['beans']) is None
        assert stock_of(remote_store, synced_cafe['cups']) == Decimal('150.00')

    def test_offline_catalog_edits_replay(self, storage, sync_service, synced_cafe, remote_store):
        sync_service.state.set_mode(OFFLINE)

        tea = storage.create_category({'name': 'TEA'})
        chai = storage.create_product({'name': 'Chai', 'price': '4.00', 'category_id': tea['id']})
        storage.set_recipe(chai['id'], [{'inventory_id': synced_cafe['milk'], 'quantity_used': '150'}])
        storage.update_product(synced_cafe['espresso'], {'price': '2.75'})
        storage.delete_product(synced_cafe['latte_l'])

        sync_service.tick()

        with remote_store.session_scope() as session:
            assert session.get(Product, chai['id']).category_id == tea['id']
            assert session.get(Product, synced_cafe['espresso']).price == Decimal('2.75')
            assert session.get(Product, synced_cafe['latte_l']) is None
        assert storage.get_recipe(chai['id'])[0]['quantity_used'] == Decimal('150.00')


class TestProbeAndTransitions:
    """Connectivity probing and mode changes."""

    def test_probe_failure_goes_offline(self, remote_store, local_store):
        def down():
            raise ConnectionError('no route to host')

        service = SyncService(remote_store, local_store, probe=down, probe_timeout=1)
        assert service.tick() == OFFLINE
        assert service.status()['mode'] == OFFLINE

    def test_mirrors_applied_before_going_offline(self, storage, sync_service, synced_cafe,
                                                  local_store, monkeypatch):
        storage.place_order(_latte_cart(synced_cafe), '10', 'barista-1')
        monkeypatch.setattr(sync_service, 'probe', lambda: False)

        assert sync_service.tick() == OFFLINE
        milk = next(item for item in storage.get_all_inventory() if item['id'] == synced_cafe['milk'])
        assert milk['current_stock'] == Decimal('600.00')
        assert _entries(local_store, SyncTarget.LOCAL, SyncStatus.PENDING) == []

    def test_offline_tick_applies_leftover_mirrors(self, sync_service, synced_cafe, local_store,
                                                   stock_of, monkeypatch):
        sync_service.state.set_mode(OFFLINE)
        with local_store.session_scope() as session:
            enqueue_entries(session, [
                ('inventory', SyncOperation.UPDATE, {'id': synced_cafe['milk'], 'delta': '-100'}),
            ], SyncTarget.LOCAL)
        monkeypatch.setattr(sync_service, 'probe', lambda: False)

        assert sync_service.tick() == OFFLINE
        assert stock_of(local_store, synced_cafe['milk']) == Decimal('900.00')
        assert _entries(local_store, SyncTarget.LOCAL, SyncStatus.PENDING) == []

    def test_hung_probe_counts_as_failure(self, remote_store, local_store):
        service = SyncService(remote_store, local_store, probe=lambda: time.sleep(3), probe_timeout=0.2)

        started = time.monotonic()
        assert service.probe() is False
        assert time.monotonic() - started < 2
        assert service.tick() == OFFLINE

    def test_unreachable_remote_probe(self, unreachable_store, local_store):
        service = SyncService(unreachable_store, local_store, probe_timeout=2)
        assert service.probe() is False

    def test_drain_stops_when_remote_is_unreachable(self, unreachable_store, local_store):
        service = SyncService(unreachable_store, local_store, state=None, probe=lambda: None, probe_timeout=1)
        service.state.set_mode(OFFLINE)
        with local_store.session_scope() as session:
            enqueue_entries(session, [
                ('inventory', SyncOperation.UPDATE, {'id': 'a', 'delta': '-1'}),
                ('inventory', SyncOperation.UPDATE, {'id': 'b', 'delta': '-1'}),
            ], SyncTarget.REMOTE)

        assert service.tick() == OFFLINE
        first, second = _entries(local_store, SyncTarget.REMOTE)
        assert first.status is SyncStatus.PENDING and first.attempts == 1
        assert second.attempts == 0

    def test_failed_replay_stays_pending(self, sync_service, synced_cafe, local_store, remote_store, stock_of):
        sync_service.state.set_mode(OFFLINE)
        with local_store.session_scope() as session:
            enqueue_entries(session, [
                ('inventory', SyncOperation.UPDATE, {'id': 'no-such-item', 'delta': '-5'}),
                ('inventory', SyncOperation.UPDATE, {'id': synced_cafe['milk'], 'delta': '-5'}),
                ('widgets', SyncOperation.INSERT, {}),
            ], SyncTarget.REMOTE)

        assert sync_service.tick() == ONLINE

        failing = sync_service.failing_entries()
        assert [e.payload.get('id') for e in failing] == ['no-such-item', None]
        assert all(e.attempts == 1 and e.last_error for e in failing)
        assert stock_of(remote_store, synced_cafe['milk']) == Decimal('995.00')
        assert sync_service.status()['pending'] == {'remote': 2, 'local': 0}

        # Retried on the next cycle, still failing
        sync_service.tick()
        assert [e.attempts for e in sync_service.failing_entries()] == [2, 2]

    def test_refresh_supersedes_local_mirrors(self, sync_service, synced_cafe, local_store):
        with local_store.session_scope() as session:
            enqueue_entries(session, [
                ('inventory', SyncOperation.UPDATE, {'id': synced_cafe['milk'], 'delta': '-100'}),
                ('orders', SyncOperation.INSERT, {'order': {}, 'items': []}),
            ], SyncTarget.LOCAL)

        counts = sync_service.refresh_local_cache()

        assert counts['superseded'] == 1
        assert counts['inventory'] == 3
        remaining = _entries(local_store, SyncTarget.LOCAL, SyncStatus.PENDING)
        assert [e.table_name for e in remaining] == ['orders']

    def test_background_loop(self, remote_store, local_store):
        service = SyncService(remote_store, local_store, probe_interval=0.05, probe_timeout=1)
        service.start()
        try:
            deadline = time.monotonic() + 5
            while service.last_tick_at is None and time.monotonic() < deadline:
                time.sleep(0.02)
            assert service.running
            assert service.last_tick_at is not None
        finally:
            service.stop(timeout=5)
        assert not service.running


class TestSyncStatus:
    """Status reporting through the facade."""

    def test_status(self, storage, sync_service, synced_cafe):
        sync_service.state.set_mode(OFFLINE)
        storage.place_order(_latte_cart(synced_cafe), '10', 'u')

        status = storage.sync_status()
        assert status['mode'] == OFFLINE
        assert status['online'] is False
        assert status['pending'] == {'remote': 4, 'local': 0}
        assert status['running'] is False

    def test_offline_reads_use_local_cache(self, storage, sync_service, synced_cafe, remote_store):
        sync_service.state.set_mode(OFFLINE)
        with remote_store.session_scope() as session:
            session.get(InventoryItem, synced_cafe['milk']).name = 'Remote Only Name'
        names = [item['name'] for item in storage.get_all_inventory()]
        assert 'Milk' in names
        assert 'Remote Only Name' not in names

    def test_offline_unknown_product_is_not_journaled(self, storage, sync_service, synced_cafe, local_store):
        sync_service.state.set_mode(OFFLINE)
        with pytest.raises(NotFoundError):
            storage.place_order([{'product_id': 'missing', 'quantity': 1, 'price': '1'}], '1', 'u')
        assert _entries(local_store) == []
