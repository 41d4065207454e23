import unittest

from loop_ledger.core.errors import Forbidden, InvalidRequest, Unauthenticated
from loop_ledger.services.identity import AuthUser, Identity, resolve_identity, resolve_target


class TestResolveIdentity(unittest.TestCase):
    def test_device_only(self):
        self.assertEqual(resolve_identity(" d1 ", None, None), Identity.device("d1"))

    def test_authenticated_caller_uses_subject(self):
        user = AuthUser(sub="u1")
        self.assertEqual(resolve_identity("d1", None, user), Identity.user("u1"))
        self.assertEqual(resolve_identity(None, "u1", user), Identity.user("u1"))

    def test_mismatched_user_id_forbidden(self):
        with self.assertRaises(Forbidden):
            resolve_identity(None, "u2", AuthUser(sub="u1"))

    def test_user_id_without_token(self):
        with self.assertRaises(Unauthenticated):
            resolve_identity("d1", "u1", None)

    def test_nothing_supplied(self):
        with self.assertRaises(InvalidRequest):
            resolve_identity(None, "  ", None)

    def test_rejects_non_string_and_oversized(self):
        with self.assertRaises(InvalidRequest):
            resolve_identity(42, None, None)
        with self.assertRaises(InvalidRequest):
            resolve_identity("x" * 257, None, None)


class TestResolveTarget(unittest.TestCase):
    def test_user_wins(self):
        self.assertEqual(resolve_target("d1", "u1"), Identity.user("u1"))

    def test_device(self):
        self.assertEqual(resolve_target("d1", ""), Identity.device("d1"))

    def test_neither_means_all(self):
        self.assertIsNone(resolve_target(None, None))


class TestIdentity(unittest.TestCase):
    def test_echo_and_str(self):
        self.assertEqual(Identity.device("d1").echo(), {"device_id": "d1"})
        self.assertEqual(Identity.user("u1").echo(), {"user_id": "u1"})
        self.assertEqual(str(Identity.user("u1")), "user:u1")
