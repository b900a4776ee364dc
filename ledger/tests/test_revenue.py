from datetime import date
from decimal import Decimal

from django.test import TestCase

from ledger.exceptions import CurrencyMismatchError, ValidationError
from ledger.models import Client
from ledger.services import advances, invoices, revenue

from .helpers import LedgerFixtures


JAN_START, JAN_END = date(2026, 1, 1), date(2026, 1, 31)


class RevenueForPeriodTests(LedgerFixtures, TestCase):
    def setUp(self):
        self.make_world()

    def paid_invoice(self, minutes, paid_on, currency=None):
        self.log_time(minutes=minutes, currency=currency)
        invoice = invoices.compose_invoice(firm=self.firm, client=self.client_obj, issue_date=date(2026, 1, 8))
        invoice = invoices.send_invoice(invoice, sent_date=date(2026, 1, 8))
        return invoices.record_payment(invoice, invoice.total, paid_on)

    def test_retainer_and_paid_invoice_excluding_lawyer_advance(self):
        self.deposit("5000.00", date_received=date(2026, 1, 5))
        self.deposit("500.00", advance_type="lawyer_advance", date_received=date(2026, 1, 6))
        paid = self.paid_invoice(450, date(2026, 1, 10))    # 1500.00
        self.assertEqual(paid.total, Decimal("1500.00"))

        summary = revenue.revenue_for_period(self.firm, JAN_START, JAN_END)["USD"]

        self.assertEqual(summary.retainers, Decimal("5000.00"))
        self.assertEqual(summary.fee_payments, Decimal("0"))
        self.assertEqual(summary.paid_invoices, Decimal("1500.00"))
        self.assertEqual(summary.total, Decimal("6500.00"))

    def test_pass_through_advances_never_count(self):
        self.deposit("900.00", advance_type="client_expense_advance", date_received=date(2026, 1, 3))
        self.deposit("700.00", advance_type="lawyer_advance", date_received=date(2026, 1, 4))

        report = revenue.revenue_for_period(self.firm, JAN_START, JAN_END)

        self.assertEqual(len(report), 0)
        self.assertEqual(report.summary("USD").total, Decimal("0"))

    def test_fee_payments_are_revenue(self):
        self.deposit("1200.00", advance_type="fee_payment_fixed", date_received=date(2026, 1, 12))
        self.deposit("300.00", advance_type="fee_payment_consultation", date_received=date(2026, 1, 13))
        summary = revenue.revenue_for_period(self.firm, JAN_START, JAN_END).sole()
        self.assertEqual(summary.fee_payments, Decimal("1500.00"))
        self.assertEqual(summary.retainers, Decimal("0"))

    def test_period_bounds_are_inclusive(self):
        self.deposit("100.00", date_received=JAN_START)
        self.deposit("200.00", date_received=JAN_END)
        self.deposit("400.00", date_received=date(2026, 2, 1))
        self.assertEqual(revenue.revenue_for_period(self.firm, JAN_START, JAN_END)["USD"].total, Decimal("300.00"))

    def test_refunded_retainer_is_not_revenue(self):
        retainer = self.deposit("1000.00")
        advances.refund(retainer, Decimal("1000.00"))
        self.assertEqual(len(revenue.revenue_for_period(self.firm, JAN_START, JAN_END)), 0)

    def test_unpaid_and_partially_paid_invoices_do_not_count(self):
        self.log_time(minutes=300)
        invoice = invoices.compose_invoice(firm=self.firm, client=self.client_obj, issue_date=date(2026, 1, 8))
        invoice = invoices.send_invoice(invoice, sent_date=date(2026, 1, 8))
        invoices.record_payment(invoice, Decimal("500.00"), date(2026, 1, 20))
        self.assertEqual(len(revenue.revenue_for_period(self.firm, JAN_START, JAN_END)), 0)

    def test_invoice_counts_in_the_period_it_was_paid(self):
        self.paid_invoice(60, date(2026, 2, 3))
        self.assertEqual(len(revenue.revenue_for_period(self.firm, JAN_START, JAN_END)), 0)
        february = revenue.revenue_for_period(self.firm, date(2026, 2, 1), date(2026, 2, 28))
        self.assertEqual(february["USD"].paid_invoices, Decimal("200.00"))

    def test_currencies_are_reported_separately(self):
        self.deposit("1000.00")
        self.deposit("800.00", currency="EUR")

        report = revenue.revenue_for_period(self.firm, JAN_START, JAN_END)

        self.assertEqual(report.currencies, ["EUR", "USD"])
        self.assertEqual(report["EUR"].total, Decimal("800.00"))
        self.assertEqual(report["USD"].total, Decimal("1000.00"))
        with self.assertRaises(CurrencyMismatchError):
            report.sole()

    def test_scoped_to_client_and_firm(self):
        other = Client.objects.create(firm=self.firm, client_number="CLT0002", name="TechStart Inc.")
        self.deposit("1000.00")
        self.deposit("250.00", client=other)
        other_firm = self.make_firm(code="rival-firm")

        self.assertEqual(
            revenue.revenue_for_period(self.firm, JAN_START, JAN_END, client=other)["USD"].total,
            Decimal("250.00"),
        )
        self.assertEqual(len(revenue.revenue_for_period(other_firm, JAN_START, JAN_END)), 0)

    def test_breakdown_by_client(self):
        other = Client.objects.create(firm=self.firm, client_number="CLT0002", name="TechStart Inc.")
        self.deposit("1000.00")
        self.deposit("2500.00", client=other)
        rows = revenue.revenue_by_client(self.firm, JAN_START, JAN_END)
        self.assertEqual([(row["client_id"], row["total"]) for row in rows], [
            (other.pk, Decimal("2500.00")),
            (self.client_obj.pk, Decimal("1000.00")),
        ])

    def test_end_before_start_is_invalid(self):
        with self.assertRaises(ValidationError):
            revenue.revenue_for_period(self.firm, JAN_END, JAN_START)
