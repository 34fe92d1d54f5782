"""
Unit tests for SQLAlchemy models and the exception hierarchy.
"""

import pytest
from decimal import Decimal
from datetime import datetime

from pos.models import InventoryItem, Order, SyncQueueEntry, SyncOperation, SyncStatus, SyncTarget
from pos.models._helpers import new_id, serialize_value
from pos.exceptions import (
    PosError, ValidationError, EmptyOrderError, StaleContainerMathError,
    InsufficientPaymentError, NotFoundError, TransactionFailure,
    StoreUnavailableError, SyncReplayFailure,
)


class TestInventoryItemModel:
    """Tests for InventoryItem."""

    @pytest.mark.parametrize('stock, threshold, expected', [
        ('200', '200', True),
        ('200.01', '200', False),
        ('199.99', '200', True),
        ('-5', '0', True),
        ('0', '0', True),
    ])
    def test_low_stock_boundary(self, stock, threshold, expected):
        item = InventoryItem(name='Milk', unit='ml', current_stock=Decimal(stock), minimum_threshold=Decimal(threshold))
        assert item.is_low_stock is expected

    def test_direct_flag(self):
        assert InventoryItem(name='Sugar', unit='g', container_type='direct').is_direct
        assert not InventoryItem(name='Cups', unit='pc', container_type='box').is_direct

    def test_payload_is_json_safe(self):
        item = InventoryItem(
            id=new_id(), name='Milk', unit='ml', container_type='direct',
            current_stock=Decimal('1000.00'), minimum_threshold=Decimal('200.00'),
            number_of_containers=Decimal('1'),
        )
        payload = item.to_payload()
        assert payload['id'] == item.id
        assert payload['current_stock'] == '1000.00'
        assert payload['container_quantity'] is None
        assert set(payload) == {'id'} | set(InventoryItem.FIELDS)


class TestOrderModel:
    """Tests for Order."""

    def test_to_dict(self):
        created = datetime(2026, 3, 1, 9, 30)
        order = Order(
            id='BRU-2026-ABCDEF01', total=Decimal('9.00'), amount_paid=Decimal('10.00'),
            change=Decimal('1.00'), user_id='barista-1', created_at=created,
        )
        data = order.to_dict()
        assert data['id'] == 'BRU-2026-ABCDEF01'
        assert data['change'] == Decimal('1.00')
        assert data['created_at'] == '2026-03-01T09:30:00'


class TestSyncQueueEntryModel:
    """Tests for SyncQueueEntry."""

    def test_repr(self):
        entry = SyncQueueEntry(
            id=7, table_name='orders', operation=SyncOperation.INSERT,
            target=SyncTarget.REMOTE, status=SyncStatus.PENDING, payload={},
        )
        assert repr(entry) == '<SyncQueueEntry(id=7, INSERT orders, target=remote, status=pending)>'


class TestHelpers:
    """Tests for model helpers."""

    def test_new_id_is_unique(self):
        assert new_id() != new_id()
        assert len(new_id()) == 36

    def test_serialize_value(self):
        assert serialize_value(Decimal('1.50')) == '1.50'
        assert serialize_value(datetime(2026, 1, 2, 3, 4, 5)) == '2026-01-02T03:04:05'
        assert serialize_value('x') == 'x'
        assert serialize_value(None) is None


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_to_dict(self):
        error = PosError('Boom', 500, {'field': 'name'})
        assert error.to_dict() == {'field': 'name', 'message': 'Boom', 'status': 'error'}

    def test_status_codes(self):
        assert ValidationError('bad').status_code == 400
        assert EmptyOrderError().status_code == 400
        assert StaleContainerMathError().status_code == 400
        assert InsufficientPaymentError(Decimal('9.00'), Decimal('5.00')).status_code == 402
        assert NotFoundError().status_code == 404
        assert TransactionFailure().status_code == 503
        assert StoreUnavailableError('remote').status_code == 503
        assert SyncReplayFailure(1, 'x').status_code == 500

    def test_hierarchy(self):
        assert issubclass(EmptyOrderError, ValidationError)
        assert issubclass(StaleContainerMathError, ValidationError)
        assert issubclass(StoreUnavailableError, TransactionFailure)
        assert TransactionFailure.retryable is True

    def test_insufficient_payment_payload(self):
        error = InsufficientPaymentError(Decimal('9.00'), Decimal('5.00'))
        assert error.to_dict()['total'] == '9.00'
        assert error.to_dict()['amount_paid'] == '5.00'

    def test_transaction_failure_message_is_generic(self):
        assert 'retry' in TransactionFailure().message
