"""
Tests for canonical hashing and the actor permission gate.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from ledger_kernel.domain.actor import ActorContext, Permission
from ledger_kernel.exceptions import PermissionDeniedError, ValidationError
from ledger_kernel.utils.hashing import canonicalize_json, hash_payload, normalize_result


class TestCanonicalJson:
    def test_key_order_does_not_matter(self):
        assert hash_payload({"a": 1, "b": 2}) == hash_payload({"b": 2, "a": 1})

    def test_equal_decimals_hash_identically(self):
        assert hash_payload({"amount": Decimal("1000")}) == hash_payload(
            {"amount": Decimal("1000.00")}
        )

    def test_different_values_differ(self):
        assert hash_payload({"amount": Decimal("600")}) != hash_payload(
            {"amount": Decimal("601")}
        )

    def test_special_types(self):
        text = canonicalize_json(
            {
                "id": UUID("12345678-1234-5678-1234-567812345678"),
                "at": datetime(2024, 1, 1, tzinfo=timezone.utc),
                "tags": {"b", "a"},
            }
        )
        assert text == (
            '{"at":"2024-01-01T00:00:00+00:00",'
            '"id":"12345678-1234-5678-1234-567812345678","tags":["a","b"]}'
        )

    def test_unsupported_type_raises(self):
        with pytest.raises(TypeError):
            canonicalize_json({"x": object()})

    def test_normalize_result_round_trips(self):
        assert normalize_result({"n": 1, "items": ("a", "b")}) == {
            "n": 1,
            "items": ["a", "b"],
        }


class TestActorContext:
    def test_require_passes_with_permission(self):
        actor = ActorContext("u-1", {Permission.FINANCE_MANAGE})
        actor.require(Permission.FINANCE_MANAGE)
        assert actor.has(Permission.FINANCE_MANAGE)
        assert isinstance(actor.permissions, frozenset)

    def test_require_raises_without_permission(self):
        actor = ActorContext("u-1", {Permission.INVENTORY_INBOUND})
        with pytest.raises(PermissionDeniedError) as exc_info:
            actor.require(Permission.INVENTORY_OUTBOUND)
        assert exc_info.value.permission == "inventory:outbound"

    def test_actor_id_required(self):
        with pytest.raises(ValidationError):
            ActorContext("")
