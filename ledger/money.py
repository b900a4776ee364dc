"""Currency-tagged amounts.

Amounts are never converted between currencies; any arithmetic or comparison
between two different currencies raises ``CurrencyMismatchError``.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from .exceptions import CurrencyMismatchError, ValidationError


CENTS = Decimal('0.01')


def to_decimal(value, field='amount'):
    if value is None or value == '':
        raise ValidationError(f'{field} is required', field=field)
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(f'{field} must be a number', field=field)
    if not result.is_finite():
        raise ValidationError(f'{field} must be a number', field=field)
    return result


def round_money(value, field='amount'):
    """Round half-up to two decimal places."""
    try:
        return to_decimal(value, field).quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f'{field} is out of range', field=field)


def normalize_currency(currency, field='currency'):
    code = (currency or '').strip().upper()
    if not code:
        raise ValidationError('currency is required', field=field)
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f'{currency!r} is not a currency code', field=field)
    return code


@dataclass(frozen=True)
class Money:
    amount: Decimal
    currency: str

    def __post_init__(self):
        object.__setattr__(self, 'amount', to_decimal(self.amount))
        object.__setattr__(self, 'currency', normalize_currency(self.currency))

    @classmethod
    def zero(cls, currency):
        return cls(Decimal('0.00'), currency)

    def _check(self, other):
        if not isinstance(other, Money):
            raise TypeError(f'Cannot combine Money with {type(other).__name__}')
        if other.currency != self.currency:
            raise CurrencyMismatchError([self.currency, other.currency])

    def __add__(self, other):
        if isinstance(other, int) and other == 0:
            # lets sum() start from its integer default
            return self
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    __radd__ = __add__

    def __sub__(self, other):
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self):
        return Money(-self.amount, self.currency)

    def __mul__(self, factor):
        if isinstance(factor, Money):
            raise TypeError('Cannot multiply two Money values')
        return Money(self.amount * to_decimal(factor, 'factor'), self.currency)

    __rmul__ = __mul__

    def __eq__(self, other):
        if isinstance(other, Money):
            return self.currency == other.currency and self.amount == other.amount
        return NotImplemented

    def __hash__(self):
        return hash((self.amount, self.currency))

    def __lt__(self, other):
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other):
        self._check(other)
        return self.amount <= other.amount

    def __gt__(self, other):
        self._check(other)
        return self.amount > other.amount

    def __ge__(self, other):
        self._check(other)
        return self.amount >= other.amount

    def rounded(self):
        return Money(round_money(self.amount), self.currency)

    def min(self, other):
        return self if self <= other else other

    def floor_zero(self):
        return self if self.amount > 0 else Money.zero(self.currency)

    def is_zero(self):
        return self.amount == 0

    def __str__(self):
        return f'{self.currency} {round_money(self.amount)}'


def money_sum(amounts, currency):
    total = Money.zero(currency)
    for amount in amounts:
        total = total + amount
    return total
