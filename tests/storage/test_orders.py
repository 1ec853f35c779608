"""Tests for the order read repository."""

import pytest

from opensri.exceptions import RecordNotFoundError


def test_get_loads_items(orders, sample_order):
    order = orders.get(sample_order.id)

    assert order.order_number == "1001"
    assert [item.sku for item in order.items] == ["MUG-001", "TEE-002"]


def test_missing_order(orders):
    assert orders.find(42) is None
    with pytest.raises(RecordNotFoundError):
        orders.get(42)
