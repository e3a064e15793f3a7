"""
Configuration guard tests.

The order-number prefix comes from the environment and ends up inside the
bounded order_number / group_number columns, so it is checked when the
config is instantiated.
"""

import pytest

from portorders import create_app
from portorders.config import MAX_ORDER_NUMBER_PREFIX_LENGTH, TestingConfig
from portorders.models.order import Order, OrderGroup
from portorders.services import order_service


class TestOrderNumberPrefix:
    def test_default_prefix_is_accepted(self, app):
        assert app.config["ORDER_NUMBER_PREFIX"].isalnum()

    @pytest.mark.parametrize("prefix", [
        "",
        "ORD-X",
        "ÖRD",
        "X" * (MAX_ORDER_NUMBER_PREFIX_LENGTH + 1),
    ])
    def test_bad_prefix_is_refused(self, monkeypatch, prefix):
        monkeypatch.setattr(TestingConfig, "ORDER_NUMBER_PREFIX", prefix)
        with pytest.raises(RuntimeError, match="ORDER_NUMBER_PREFIX"):
            TestingConfig()

    def test_app_factory_refuses_bad_prefix(self, monkeypatch):
        monkeypatch.setattr(TestingConfig, "ORDER_NUMBER_PREFIX", "X" * 64)
        with pytest.raises(RuntimeError):
            create_app("testing")

    def test_longest_prefix_fits_number_columns(self):
        number = order_service.generate_order_number("X" * MAX_ORDER_NUMBER_PREFIX_LENGTH)
        assert len(number) == Order.__table__.c.order_number.type.length
        assert len(order_service.group_number_for(number, 999)) <= OrderGroup.__table__.c.group_number.type.length
