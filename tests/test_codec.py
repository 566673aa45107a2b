"""
Tests para support/codec.py — Sobre versionado de columnas JSON.
"""

import json
import sys
from pathlib import Path

import pytest

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from support import codec
from support.errors import PersistenceError
from support.models import CancelOrderAction, Message, OrderItem, parse_action


class TestEncode:
    def test_envelope_shape(self):
        data = json.loads(codec.encode([1, 2]))
        assert data == {"v": 1, "data": [1, 2]}

    def test_non_ascii_preserved(self):
        assert "señor" in codec.encode({"text": "señor"})


class TestDecode:
    def test_items_survive(self):
        items = [OrderItem(sku="MUG-BLUE", qty=2, price=15.99).model_dump()]
        decoded = codec.decode(codec.encode(items))
        assert [OrderItem(**i) for i in decoded] == [
            OrderItem(sku="MUG-BLUE", qty=2, price=15.99)
        ]

    def test_messages_survive(self):
        messages = [Message(role="user", content="Where is my order?").model_dump()]
        assert codec.decode(codec.encode(messages)) == messages

    def test_action_survives(self):
        action = CancelOrderAction(order_id="ORD-1001", reason="changed mind")
        decoded = parse_action(codec.decode(codec.encode(action.model_dump())))
        assert decoded == action

    def test_unknown_version_rejected(self):
        with pytest.raises(PersistenceError):
            codec.decode(json.dumps({"v": 2, "data": []}))

    def test_missing_envelope_rejected(self):
        with pytest.raises(PersistenceError):
            codec.decode(json.dumps([{"sku": "X", "qty": 1, "price": 1.0}]))

    def test_extra_keys_rejected(self):
        with pytest.raises(PersistenceError):
            codec.decode(json.dumps({"v": 1, "data": [], "extra": True}))

    def test_invalid_json_rejected(self):
        with pytest.raises(PersistenceError):
            codec.decode("{not json")

    def test_decode_optional_none(self):
        assert codec.decode_optional(None) is None
