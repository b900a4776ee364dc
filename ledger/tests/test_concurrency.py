from datetime import date
from decimal import Decimal
from threading import Lock, Thread

from django.db import close_old_connections, connection
from django.test import TransactionTestCase

from ledger import operations
from ledger.models import Advance, Invoice, TimeEntry

from .helpers import LedgerFixtures


class LedgerConcurrencyTests(LedgerFixtures, TransactionTestCase):
    def setUp(self):
        if connection.vendor == "sqlite":
            self.skipTest("SQLite locking makes this concurrency test flaky; run on Postgres/MySQL.")
        self.make_world()

    def run_workers(self, target, count):
        results = []
        lock = Lock()

        def worker(ix):
            close_old_connections()
            try:
                result = target(ix)
                with lock:
                    results.append(result)
            finally:
                close_old_connections()

        threads = [Thread(target=worker, args=(i,)) for i in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_concurrent_consumes_never_overdraw(self):
        advance = self.deposit("100.00")

        results = self.run_workers(
            lambda ix: operations.consume_advance(self.firm, advance.pk, {"amount": "30.00"}), 8,
        )

        successes = [r for r in results if r.success]
        failures = [r for r in results if not r.success]
        self.assertEqual(len(successes), 3)
        self.assertTrue(all(r.error_type == "insufficient_balance" for r in failures))
        advance = Advance.objects.get(pk=advance.pk)
        self.assertEqual(advance.balance_remaining, Decimal("10.00"))

    def test_concurrent_compose_bills_each_entry_once(self):
        entries = [self.log_time(minutes=60) for _ in range(3)]

        results = self.run_workers(
            lambda ix: operations.compose_invoice(self.firm, {
                "client_id": self.client_obj.pk,
                "issue_date": date(2026, 1, 31).isoformat(),
            }),
            5,
        )

        self.assertEqual(sum(1 for r in results if r.success), 1)
        self.assertEqual(Invoice.objects.count(), 1)
        invoice = Invoice.objects.get()
        self.assertEqual(invoice.subtotal, Decimal("600.00"))
        self.assertEqual(
            set(TimeEntry.objects.filter(invoice=invoice).values_list("pk", flat=True)),
            {entry.pk for entry in entries},
        )
