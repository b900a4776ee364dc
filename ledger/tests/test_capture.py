from datetime import date
from decimal import Decimal

from django.test import TestCase

from ledger.exceptions import InsufficientBalanceError, ValidationError
from ledger.models import Expense, Lawyer
from ledger.services import capture

from .helpers import LedgerFixtures


class TimeCaptureTests(LedgerFixtures, TestCase):
    def setUp(self):
        self.make_world()

    def test_rate_is_frozen_at_capture(self):
        entry = self.log_time(minutes=90)
        self.lawyer.hourly_rate = Decimal("999.00")
        self.lawyer.save()
        entry.refresh_from_db()
        self.assertEqual(entry.rate, Decimal("200.00"))
        self.assertEqual(entry.total_amount.amount, Decimal("300.00"))

    def test_negative_minutes_are_rejected(self):
        with self.assertRaises(ValidationError):
            self.log_time(minutes=-15)

    def test_narrative_is_required(self):
        with self.assertRaises(ValidationError):
            self.log_time(narrative="   ")

    def test_inactive_matter_is_rejected(self):
        self.matter.is_active = False
        self.matter.save()
        with self.assertRaises(ValidationError):
            self.log_time()


class ExpenseCaptureTests(LedgerFixtures, TestCase):
    def setUp(self):
        self.make_world()

    def record(self, amount="120.00", **kwargs):
        return capture.record_expense(
            firm=self.firm,
            matter=self.matter,
            date=date(2026, 1, 9),
            category="Court Reporter",
            amount=Decimal(amount),
            **kwargs,
        )

    def test_plain_expense(self):
        expense, deductions = self.record()
        self.assertEqual(expense.currency, "USD")
        self.assertEqual(expense.status, "draft")
        self.assertEqual(deductions, [])

    def test_markup_is_applied_when_billed(self):
        expense, _ = self.record("200.00", markup_percent=Decimal("15"))
        self.assertEqual(expense.billed_amount.amount, Decimal("230.00"))

    def test_deducts_from_lawyer_and_client_expense_advances(self):
        lawyer_advance = self.deposit("500.00", advance_type="lawyer_advance")
        client_advance = self.deposit("1000.00", advance_type="client_expense_advance")

        expense, deductions = self.record("120.00", lawyer=self.lawyer, deduct_from_advances=True)

        self.assertEqual([d["type"] for d in deductions], ["lawyer_advance", "client_expense_advance"])
        lawyer_advance.refresh_from_db()
        client_advance.refresh_from_db()
        self.assertEqual(lawyer_advance.balance_remaining, Decimal("380.00"))
        self.assertEqual(client_advance.balance_remaining, Decimal("880.00"))
        self.assertEqual(expense.advance, client_advance)

    def test_short_advance_rolls_back_the_expense(self):
        lawyer_advance = self.deposit("50.00", advance_type="lawyer_advance")
        with self.assertRaises(InsufficientBalanceError):
            self.record("120.00", lawyer=self.lawyer, deduct_from_advances=True)
        self.assertFalse(Expense.objects.exists())
        lawyer_advance.refresh_from_db()
        self.assertEqual(lawyer_advance.balance_remaining, Decimal("50.00"))

    def test_advance_in_another_currency_is_skipped(self):
        self.deposit("1000.00", advance_type="client_expense_advance", currency="EUR")
        _, deductions = self.record(deduct_from_advances=True)
        self.assertEqual(deductions, [])

    def test_other_lawyers_advance_is_untouched(self):
        colleague = Lawyer.objects.create(
            firm=self.firm, employee_id="ATT002", first_name="Michael", last_name="Chen",
            hourly_rate=Decimal("425.00"),
        )
        self.deposit("500.00", advance_type="lawyer_advance", lawyer=colleague)
        _, deductions = self.record(lawyer=self.lawyer, deduct_from_advances=True)
        self.assertEqual(deductions, [])
