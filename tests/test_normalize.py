import unittest

from loop_ledger.core.errors import InvalidRequest
from loop_ledger.core.normalize import non_negative_int, normalize_email, normalize_id


class TestNormalize(unittest.TestCase):
    def test_normalize_id(self):
        self.assertIsNone(normalize_id(None, "device_id"))
        self.assertIsNone(normalize_id("   ", "device_id"))
        self.assertEqual(normalize_id(" abc ", "device_id"), "abc")
        with self.assertRaises(InvalidRequest):
            normalize_id(["a"], "device_id")

    def test_normalize_email(self):
        self.assertEqual(normalize_email(" Admin@Example.COM "), "admin@example.com")
        self.assertEqual(normalize_email(None), "")

    def test_non_negative_int(self):
        self.assertEqual(non_negative_int("4", "credits"), 4)
        for bad in (-1, "x", None, True):
            with self.assertRaises(InvalidRequest):
                non_negative_int(bad, "credits")
