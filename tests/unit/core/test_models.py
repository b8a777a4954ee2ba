"""Unit tests for BaseModel bookkeeping and the Sequence counter.

BaseModel is exercised through ``Product``, the simplest concrete model.
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from freezegun import freeze_time

from modules.core.models import Sequence
from modules.products.models import Product

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# BaseModel
# ---------------------------------------------------------------------------


class TestBaseModel:
    """Tests for UUIDv7 PK and timestamp behaviour."""

    def test_id_is_uuid_version_7(self):
        obj = Product.objects.create(sku="a", name="A")
        assert isinstance(obj.id, uuid.UUID)
        assert obj.id.version == 7

    def test_ids_are_time_ordered(self):
        """UUIDv7 encodes timestamp, so sequential creates yield ordered IDs."""
        a = Product.objects.create(sku="first", name="First")
        b = Product.objects.create(sku="second", name="Second")
        assert str(a.id) < str(b.id)

    def test_id_is_not_editable(self):
        assert Product._meta.get_field("id").editable is False

    def test_save_with_update_fields_includes_updated_at(self):
        """The save() guard must inject updated_at into update_fields."""
        with freeze_time("2026-01-01 12:00:00") as frozen:
            obj = Product.objects.create(sku="sku", name="original")
            original_updated = obj.updated_at
            frozen.tick(timedelta(minutes=1))

            obj.name = "modified"
            obj.save(update_fields=["name"])

        obj.refresh_from_db()
        assert obj.updated_at > original_updated
        assert obj.created_at == original_updated

    def test_sku_is_normalised(self):
        assert Product.objects.create(sku=" font-01 ", name="Font").sku == "FONT-01"


# ---------------------------------------------------------------------------
# Sequence
# ---------------------------------------------------------------------------


class TestSequence:
    def test_starts_at_one(self):
        assert Sequence.next_value("test_counter") == 1

    def test_increments(self):
        values = [Sequence.next_value("test_counter") for _ in range(3)]
        assert values == [1, 2, 3]

    def test_counters_are_independent(self):
        Sequence.next_value("a")
        Sequence.next_value("a")
        assert Sequence.next_value("b") == 1
