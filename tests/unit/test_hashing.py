"""Tests for canonical JSON and payload hashing."""

from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest

from revshare_kernel.utils.hashing import canonicalize_json, hash_payload


class TestCanonicalJson:

    def test_keys_sorted_without_whitespace(self):
        assert canonicalize_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_special_types_rendered(self):
        uid = UUID("12345678-1234-5678-1234-567812345678")
        rendered = canonicalize_json({
            "amount": Decimal("10.500"),
            "on": date(2024, 5, 1),
            "id": uid,
        })
        assert rendered == (
            '{"amount":"10.5","id":"12345678-1234-5678-1234-567812345678",'
            '"on":"2024-05-01"}'
        )

    def test_unknown_type_rejected(self):
        with pytest.raises(TypeError):
            canonicalize_json({"x": object()})


class TestHashPayload:

    def test_key_order_irrelevant(self):
        assert hash_payload({"id": "evt_1", "type": "charge.succeeded"}) == hash_payload(
            {"type": "charge.succeeded", "id": "evt_1"}
        )

    def test_content_change_changes_hash(self):
        assert hash_payload({"amount": 100}) != hash_payload({"amount": 101})

    def test_hex_sha256_length(self):
        digest = hash_payload({})
        assert len(digest) == 64
        int(digest, 16)
