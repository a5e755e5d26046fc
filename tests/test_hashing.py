import hashlib
import unittest
from datetime import datetime
from decimal import Decimal

from assistec.services import hashing


class CanonicalJsonTests(unittest.TestCase):
    def test_key_order_does_not_matter(self):
        left = {"b": 1, "a": [{"y": 2, "x": 1}]}
        right = {"a": [{"x": 1, "y": 2}], "b": 1}
        self.assertEqual(hashing.canonical_json(left), hashing.canonical_json(right))

    def test_decimal_and_datetime(self):
        payload = {"total": Decimal("100"), "at": datetime(2024, 5, 1, 10, 30)}
        self.assertEqual(
            hashing.canonical_json(payload),
            b'{"at":"2024-05-01T10:30:00","total":"100.00"}',
        )

    def test_unknown_type_raises(self):
        with self.assertRaises(TypeError):
            hashing.canonical_json({"value": object()})


class DigestTests(unittest.TestCase):
    def test_sha256_hex(self):
        data = b"tela trincada"
        self.assertEqual(hashing.sha256_hex(data), hashlib.sha256(data).hexdigest())

    def test_keyed_digest(self):
        payload = {"order_id": "1", "total": "10.00"}
        digest = hashing.keyed_digest(payload, "segredo")
        self.assertEqual(len(digest), 64)
        self.assertEqual(digest, hashing.keyed_digest(dict(reversed(list(payload.items()))), "segredo"))
        self.assertNotEqual(digest, hashing.keyed_digest({"order_id": "1", "total": "10.01"}, "segredo"))
        self.assertNotEqual(digest, hashlib.sha256(hashing.canonical_json(payload)).hexdigest())

    def test_digests_match(self):
        self.assertTrue(hashing.digests_match("abc", "abc"))
        self.assertFalse(hashing.digests_match("abc", "abd"))
        self.assertFalse(hashing.digests_match(None, "abc"))
        self.assertFalse(hashing.digests_match("", ""))
