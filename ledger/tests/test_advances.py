from datetime import date
from decimal import Decimal

from django.test import TestCase

from ledger.exceptions import (
    BalanceMutationError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from ledger.models import Advance, AdvanceMovement, Client
from ledger.money import Money
from ledger.services import advances

from .helpers import LedgerFixtures


class DepositTests(LedgerFixtures, TestCase):
    def setUp(self):
        self.make_world()

    def test_deposit_starts_active_with_full_balance(self):
        advance = self.deposit("5000.00")
        self.assertEqual(advance.status, "active")
        self.assertEqual(advance.balance_remaining, Decimal("5000.00"))
        self.assertEqual(advance.currency, "USD")
        movement = AdvanceMovement.objects.get(advance=advance)
        self.assertEqual(movement.kind, "deposit")
        self.assertEqual(movement.balance_after, Decimal("5000.00"))

    def test_deposit_rejects_non_positive_amounts(self):
        for amount in ("0", "-10.00"):
            with self.assertRaises(ValidationError) as ctx:
                self.deposit(amount)
            self.assertEqual(ctx.exception.field, "amount")
        self.assertFalse(Advance.objects.exists())

    def test_deposit_rejects_unknown_type(self):
        with self.assertRaises(ValidationError):
            self.deposit(advance_type="gift")

    def test_lawyer_advance_needs_a_lawyer_and_drops_the_client(self):
        advance = self.deposit("500.00", advance_type="lawyer_advance", client=self.client_obj)
        self.assertEqual(advance.lawyer, self.lawyer)
        self.assertIsNone(advance.client)

    def test_client_advance_needs_a_client(self):
        with self.assertRaises(ValidationError) as ctx:
            advances.deposit(
                firm=self.firm,
                advance_type="client_retainer",
                amount=Decimal("100.00"),
                currency="USD",
                date_received=date(2026, 1, 5),
            )
        self.assertEqual(ctx.exception.field, "client_id")

    def test_inactive_client_cannot_deposit(self):
        self.client_obj.is_active = False
        self.client_obj.save()
        with self.assertRaises(ValidationError):
            self.deposit()

    def test_client_from_another_firm_is_not_found(self):
        other_firm = self.make_firm(code="other-firm")
        stranger = Client.objects.create(firm=other_firm, client_number="CLT9999", name="Stranger Ltd")
        with self.assertRaises(NotFoundError):
            self.deposit(client=stranger)


class ConsumeRefundTests(LedgerFixtures, TestCase):
    def setUp(self):
        self.make_world()
        self.advance = self.deposit("1000.00")

    def assertWithinBounds(self, advance):
        advance.refresh_from_db()
        self.assertGreaterEqual(advance.balance_remaining, Decimal("0"))
        self.assertLessEqual(advance.balance_remaining, advance.amount)

    def test_consume_reduces_balance(self):
        result = advances.consume(self.advance, Decimal("250.00"))
        self.assertTrue(result.success)
        self.assertEqual(result.new_balance, Decimal("750.00"))
        self.advance.refresh_from_db()
        self.assertEqual(self.advance.balance_remaining, Decimal("750.00"))
        self.assertEqual(self.advance.status, "active")
        self.assertWithinBounds(self.advance)

    def test_consume_to_zero_depletes(self):
        advances.consume(self.advance, Decimal("1000.00"))
        self.advance.refresh_from_db()
        self.assertEqual(self.advance.status, "depleted")
        self.assertEqual(self.advance.balance_remaining, Decimal("0.00"))

    def test_overdraw_fails_and_leaves_balance_untouched(self):
        with self.assertRaises(InsufficientBalanceError) as ctx:
            advances.consume(self.advance, Decimal("1000.01"))
        self.assertEqual(ctx.exception.available, Decimal("1000.00"))
        self.advance.refresh_from_db()
        self.assertEqual(self.advance.balance_remaining, Decimal("1000.00"))
        self.assertEqual(self.advance.version, 0)
        self.assertEqual(self.advance.movements.filter(kind="consume").count(), 0)
        self.assertWithinBounds(self.advance)

    def test_consume_requires_positive_amount(self):
        with self.assertRaises(ValidationError):
            advances.consume(self.advance, Decimal("0"))

    def test_partial_refund_stays_active(self):
        advance = advances.refund(self.advance, Decimal("400.00"))
        self.assertEqual(advance.balance_remaining, Decimal("600.00"))
        self.assertEqual(advance.status, "active")

    def test_full_refund_marks_refunded(self):
        advances.consume(self.advance, Decimal("300.00"))
        advance = advances.refund(self.advance, Decimal("700.00"))
        self.assertEqual(advance.status, "refunded")
        self.assertEqual(advance.balance_remaining, Decimal("0.00"))

    def test_refund_beyond_balance_fails(self):
        advances.consume(self.advance, Decimal("900.00"))
        with self.assertRaises(InsufficientBalanceError):
            advances.refund(self.advance, Decimal("200.00"))
        self.assertWithinBounds(self.advance)

    def test_release_cannot_exceed_original_deposit(self):
        advances.consume(self.advance, Decimal("100.00"))
        advances.release(self.advance, Decimal("100.00"))
        with self.assertRaises(ValidationError):
            advances.release(self.advance, Decimal("0.01"))
        self.assertWithinBounds(self.advance)

    def test_every_movement_journals_the_balance(self):
        advances.consume(self.advance, Decimal("100.00"))
        advances.refund(self.advance, Decimal("50.00"))
        kinds = list(self.advance.movements.order_by("id").values_list("kind", "balance_after"))
        self.assertEqual(kinds, [
            ("deposit", Decimal("1000.00")),
            ("consume", Decimal("900.00")),
            ("refund", Decimal("850.00")),
        ])

    def test_movements_are_scoped_to_the_firm(self):
        rival = self.make_firm(code="rival-firm")
        advances.consume(self.advance, Decimal("100.00"))
        self.assertEqual(AdvanceMovement.objects.filter(firm=self.firm).count(), 2)
        self.assertFalse(AdvanceMovement.objects.filter(firm=rival).exists())

    def test_refunded_advance_cannot_be_drawn_on(self):
        advances.consume(self.advance, Decimal("600.00"))
        advances.refund(self.advance, Decimal("400.00"))
        advances.release(self.advance, Decimal("100.00"))
        with self.assertRaises(ValidationError):
            advances.consume(self.advance, Decimal("50.00"))
        advance = advances.refund(self.advance, Decimal("100.00"))
        self.assertEqual(advance.status, "refunded")
        self.assertEqual(advance.balance_remaining, Decimal("0.00"))


class BalanceGuardTests(LedgerFixtures, TestCase):
    def setUp(self):
        self.make_world()
        self.advance = self.deposit("1000.00")

    def test_direct_save_of_balance_is_refused(self):
        self.advance.balance_remaining = Decimal("10.00")
        with self.assertRaises(BalanceMutationError):
            self.advance.save()

    def test_queryset_update_of_balance_is_refused(self):
        with self.assertRaises(BalanceMutationError):
            Advance.objects.filter(pk=self.advance.pk).update(balance_remaining=Decimal("1.00"))

    def test_other_fields_can_still_be_edited(self):
        self.advance.notes = "Received by wire"
        self.advance.save()
        self.advance.refresh_from_db()
        self.assertEqual(self.advance.notes, "Received by wire")


class OutstandingBalanceTests(LedgerFixtures, TestCase):
    def setUp(self):
        self.make_world()

    def test_balances_are_summed_per_currency(self):
        self.deposit("1000.00")
        second = self.deposit("500.00")
        self.deposit("800.00", currency="EUR")
        advances.consume(second, Decimal("200.00"))

        balances = advances.outstanding_balance(self.firm, self.client_obj)
        self.assertEqual(balances, {
            "EUR": Money("800.00", "EUR"),
            "USD": Money("1300.00", "USD"),
        })

    def test_expense_advances_are_not_retainer_balance(self):
        self.deposit("300.00", advance_type="client_expense_advance")
        self.assertEqual(advances.outstanding_balance(self.firm, self.client_obj), {})

    def test_low_balance_alerts(self):
        advance = self.deposit("1000.00", minimum_balance_alert=Decimal("250.00"))
        self.assertEqual(advances.low_balance_advances(self.firm), [])
        advances.consume(advance, Decimal("800.00"))
        self.assertEqual([a.pk for a in advances.low_balance_advances(self.firm)], [advance.pk])
