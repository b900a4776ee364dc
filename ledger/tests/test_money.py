from decimal import Decimal

from django.test import SimpleTestCase

from ledger.exceptions import CurrencyMismatchError, ValidationError
from ledger.money import Money, money_sum, normalize_currency, round_money


class MoneyTests(SimpleTestCase):
    def test_round_money_is_half_up(self):
        self.assertEqual(round_money(Decimal("2.345")), Decimal("2.35"))
        self.assertEqual(round_money(Decimal("2.344")), Decimal("2.34"))
        self.assertEqual(round_money("0.005"), Decimal("0.01"))

    def test_round_money_rejects_garbage(self):
        with self.assertRaises(ValidationError):
            round_money("twelve")

    def test_round_money_rejects_values_too_large_to_quantize(self):
        with self.assertRaises(ValidationError) as ctx:
            round_money("1e30", "rate")
        self.assertEqual(ctx.exception.field, "rate")

    def test_currency_codes_are_normalized(self):
        self.assertEqual(normalize_currency(" usd "), "USD")
        with self.assertRaises(ValidationError):
            normalize_currency("US")
        with self.assertRaises(ValidationError):
            normalize_currency("")

    def test_same_currency_arithmetic(self):
        total = Money("100.00", "USD") + Money("50.25", "usd")
        self.assertEqual(total, Money("150.25", "USD"))
        self.assertEqual(total - Money("0.25", "USD"), Money("150.00", "USD"))
        self.assertEqual(Money("10.00", "USD") * Decimal("1.5"), Money("15.00", "USD"))

    def test_mixing_currencies_raises(self):
        with self.assertRaises(CurrencyMismatchError):
            Money("1.00", "USD") + Money("1.00", "EUR")
        with self.assertRaises(CurrencyMismatchError):
            Money("1.00", "USD") < Money("2.00", "EUR")

    def test_zero_in_another_currency_still_mismatches(self):
        with self.assertRaises(CurrencyMismatchError):
            Money("1.00", "USD") + Money.zero("EUR")

    def test_builtin_sum_starts_from_integer_zero(self):
        self.assertEqual(sum([Money("1.10", "USD"), Money("2.20", "USD")]), Money("3.30", "USD"))

    def test_money_sum_of_nothing_is_zero(self):
        self.assertEqual(money_sum([], "EUR"), Money.zero("EUR"))

    def test_min_and_floor_zero(self):
        self.assertEqual(Money("300", "USD").min(Money("400", "USD")), Money("300", "USD"))
        self.assertTrue((Money("1", "USD") - Money("5", "USD")).floor_zero().is_zero())

    def test_str(self):
        self.assertEqual(str(Money("400", "USD")), "USD 400.00")
