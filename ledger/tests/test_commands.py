from datetime import date
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from ledger.models import Advance, Firm, Invoice

from .helpers import LedgerFixtures


class GenerateSampleDataTests(TestCase):
    def test_generates_and_regenerates_a_firm(self):
        out = StringIO()
        call_command("generate_sample_data", "--firm", "demo", "--seed", "7", stdout=out)
        self.assertIn("Successfully generated sample data for demo", out.getvalue())
        firm = Firm.objects.get(code="demo")
        self.assertTrue(Advance.objects.filter(firm=firm).exists())

        call_command("generate_sample_data", "--firm", "demo", "--seed", "7", stdout=StringIO())
        self.assertEqual(Firm.objects.filter(code="demo").count(), 1)
        for advance in Advance.objects.filter(firm__code="demo"):
            self.assertGreaterEqual(advance.balance_remaining, 0)
            self.assertLessEqual(advance.balance_remaining, advance.amount)
        for invoice in Invoice.objects.filter(firm__code="demo"):
            self.assertEqual(invoice.total, invoice.taxable_amount + invoice.vat_amount)


class RevenueReportCommandTests(LedgerFixtures, TestCase):
    def setUp(self):
        self.make_world()

    def test_prints_per_currency_totals(self):
        self.deposit("5000.00", date_received=date(2026, 1, 5))
        self.deposit("800.00", currency="EUR", date_received=date(2026, 1, 9))
        out = StringIO()
        call_command("revenue_report", self.firm.code, "2026-01-01", "2026-01-31", stdout=out)
        output = out.getvalue()
        self.assertIn("USD", output)
        self.assertIn("5000.00", output)
        self.assertIn("EUR", output)

    def test_breakdown_by_client(self):
        self.deposit("5000.00", date_received=date(2026, 1, 5))
        out = StringIO()
        call_command("revenue_report", self.firm.code, "2026-01-01", "2026-01-31", "--by", "client", stdout=out)
        self.assertIn(str(self.client_obj.pk), out.getvalue())

    def test_bad_input(self):
        with self.assertRaises(CommandError):
            call_command("revenue_report", "nobody", "2026-01-01", "2026-01-31", stdout=StringIO())
        with self.assertRaises(CommandError):
            call_command("revenue_report", self.firm.code, "2026-01-31", "2026-01-01", stdout=StringIO())
