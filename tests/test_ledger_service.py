import threading
import unittest
from concurrent.futures import ThreadPoolExecutor

from fakes import fake_tables
from loop_ledger.core.errors import Forbidden, InvalidRequest, Unauthenticated
from loop_ledger.services.identity import AuthUser, Identity
from loop_ledger.services.ledger import LedgerService
from loop_ledger.services.ledger_store import DynamoLedgerStore, InMemoryLedgerStore
from loop_ledger.services.quota import UsageRecord

ADMIN = AuthUser(sub="admin-sub", email="Admin@Example.com")
D1 = Identity.device("d1")


def make_service(store=None, **kwargs):
    kwargs.setdefault("free_quota", 3)
    kwargs.setdefault("admin_emails", ["admin@example.com"])
    return LedgerService(store or InMemoryLedgerStore(), **kwargs)


class TestCheck(unittest.TestCase):
    def test_absent_identity_reports_full_free_quota(self):
        bal = make_service().check(D1)
        self.assertEqual(bal.free_used, 0)
        self.assertEqual(bal.credits, 0)
        self.assertEqual(bal.free_remaining, 3)
        self.assertEqual(bal.credits_remaining, 0)

    def test_check_is_read_only(self):
        svc = make_service()
        svc.consume(D1)
        first = svc.check(D1)
        for _ in range(5):
            self.assertEqual(svc.check(D1), first)
        self.assertEqual(svc.consume(D1).free_used, 2)

    def test_free_remaining_never_negative(self):
        svc = make_service()
        svc.store.put(D1, UsageRecord(free_used=10))
        self.assertEqual(svc.check(D1).free_remaining, 0)


class TestConsume(unittest.TestCase):
    def test_device_scenario(self):
        svc = make_service()
        for expected in (1, 2, 3):
            res = svc.consume(D1)
            self.assertTrue(res.allowed)
            self.assertEqual((res.free_used, res.credits), (expected, 0))

        res = svc.consume(D1)
        self.assertFalse(res.allowed)
        self.assertEqual((res.free_used, res.credits), (3, 0))

        svc.admin_set_balance(ADMIN, D1, free_used=3, credits=2)
        res = svc.consume(D1)
        self.assertTrue(res.allowed)
        self.assertEqual((res.free_used, res.credits), (3, 1))
        self.assertEqual(res.source, "credit")

    def test_denied_consume_does_not_write(self):
        tables = fake_tables()
        svc = make_service(DynamoLedgerStore(tables))
        svc.store.put(D1, UsageRecord(free_used=3, credits=0))
        before = list(tables.device_usage.calls)
        self.assertFalse(svc.consume(D1).allowed)
        self.assertEqual(tables.device_usage.calls[len(before):], ["get_item"])

    def test_reset_during_consume_is_not_lost(self):
        tables = fake_tables()
        svc = make_service(DynamoLedgerStore(tables))
        svc.store.put(D1, UsageRecord(free_used=3, credits=5))
        reset = []

        def admin_resets(tbl, item):
            if not reset:
                reset.append(svc.admin_reset(ADMIN, D1))

        tables.device_usage.before_put = admin_resets
        res = svc.consume(D1)
        self.assertEqual((res.allowed, res.source), (True, "free"))
        self.assertEqual(svc.store.get(D1), UsageRecord(free_used=1, credits=0))

    def test_accounts_and_devices_do_not_share_rows(self):
        svc = make_service()
        svc.consume(Identity.user("u1"))
        self.assertEqual(svc.check(Identity.device("u1")).free_used, 0)
        self.assertEqual(svc.check(Identity.user("u1")).free_used, 1)

    def test_rejects_non_positive_units(self):
        with self.assertRaises(InvalidRequest):
            make_service().consume(D1, units=0)


class ConcurrencyMixin:
    def make_store(self):
        raise NotImplementedError

    def run_concurrent(self, n, free_used, credits):
        store = self.make_store()
        svc = make_service(store)
        store.put(D1, UsageRecord(free_used=free_used, credits=credits))
        barrier = threading.Barrier(n)

        def worker(_):
            barrier.wait()
            return svc.consume(D1).allowed

        with ThreadPoolExecutor(max_workers=n) as pool:
            results = list(pool.map(worker, range(n)))
        return results, svc.check(D1)

    def test_exactly_k_allowed(self):
        results, bal = self.run_concurrent(n=12, free_used=1, credits=3)
        self.assertEqual(sum(results), 5)
        self.assertEqual((bal.free_used, bal.credits), (3, 0))

    def test_all_allowed_when_enough_units(self):
        results, bal = self.run_concurrent(n=6, free_used=3, credits=10)
        self.assertEqual(sum(results), 6)
        self.assertEqual(bal.credits, 4)


class TestConcurrentConsumeInMemory(ConcurrencyMixin, unittest.TestCase):
    def make_store(self):
        return InMemoryLedgerStore()


class TestConcurrentConsumeDynamo(ConcurrencyMixin, unittest.TestCase):
    def make_store(self):
        return DynamoLedgerStore(fake_tables(), max_attempts=100)


class TestConcurrentTopUpAndConsume(unittest.TestCase):
    def test_no_update_lost(self):
        store = DynamoLedgerStore(fake_tables(), max_attempts=100)
        svc = make_service(store)
        store.put(D1, UsageRecord(free_used=3, credits=20))
        barrier = threading.Barrier(8)

        def consumer(_):
            barrier.wait()
            return svc.consume(D1).allowed

        def topper(i):
            barrier.wait()
            return store.apply_top_up(D1, f"cs_{i}", 500, 10)

        with ThreadPoolExecutor(max_workers=8) as pool:
            consumed = [pool.submit(consumer, i) for i in range(4)]
            topped = [pool.submit(topper, i) for i in range(4)]
            self.assertTrue(all(f.result() for f in consumed))
            self.assertTrue(all(f.result() for f in topped))

        self.assertEqual(svc.check(D1).credits, 20 - 4 + 40)


class TestAdmin(unittest.TestCase):
    def test_reset_requires_caller(self):
        with self.assertRaises(Unauthenticated):
            make_service().admin_reset(None, D1)

    def test_reset_rejects_non_admin(self):
        with self.assertRaises(Forbidden):
            make_service().admin_reset(AuthUser(sub="x", email="someone@example.com"), D1)

    def test_reset_rejects_caller_without_email(self):
        with self.assertRaises(Unauthenticated):
            make_service().admin_reset(AuthUser(sub="x"), D1)

    def test_empty_allowlist_still_requires_email(self):
        svc = make_service(admin_emails=[])
        svc.consume(D1)
        for caller in (AuthUser(sub="x"), AuthUser(sub="x", email="  ")):
            with self.assertRaises(Unauthenticated):
                svc.admin_reset(caller, D1)
            with self.assertRaises(Unauthenticated):
                svc.admin_set_balance(caller, D1, 0, 99)
        self.assertEqual(svc.check(D1).free_used, 1)

    def test_empty_allowlist_admits_any_authenticated_user(self):
        svc = make_service(admin_emails=[])
        resp = svc.admin_reset(AuthUser(sub="x", email="x@example.com"), D1)
        self.assertEqual(resp, {"ok": True, "device_id": "d1"})

    def test_empty_allowlist_can_be_locked_down(self):
        svc = make_service(admin_emails=[], require_allowlist=True)
        with self.assertRaises(Forbidden):
            svc.admin_reset(AuthUser(sub="x", email="a@b.c"), None)

    def test_reset_single_identity(self):
        svc = make_service()
        svc.consume(D1)
        svc.consume(Identity.device("d2"))
        resp = svc.admin_reset(ADMIN, D1)
        self.assertEqual(resp, {"ok": True, "device_id": "d1"})
        self.assertEqual(svc.check(D1).free_used, 0)
        self.assertEqual(svc.check(Identity.device("d2")).free_used, 1)

    def test_reset_all(self):
        svc = make_service()
        svc.consume(D1)
        svc.consume(Identity.user("u1"))
        resp = svc.admin_reset(ADMIN, None)
        self.assertEqual(resp["cleared"], "all")
        self.assertEqual(resp["deleted"], 2)
        self.assertEqual(svc.check(Identity.user("u1")).free_used, 0)

    def test_set_balance_is_full_replace(self):
        svc = make_service()
        svc.store.put(D1, UsageRecord(free_used=1, credits=50))
        svc.admin_set_balance(ADMIN, D1, free_used=2, credits=7)
        bal = svc.check(D1)
        self.assertEqual((bal.free_used, bal.credits), (2, 7))

    def test_set_balance_requires_target(self):
        with self.assertRaises(InvalidRequest):
            make_service().admin_set_balance(ADMIN, None, 0, 0)

    def test_set_balance_rejects_negative(self):
        with self.assertRaises(InvalidRequest):
            make_service().admin_set_balance(ADMIN, D1, -1, 0)
