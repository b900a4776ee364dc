"""Time and expense capture.

Rates are resolved once, when the entry is recorded, and never recomputed.
"""
import logging
from decimal import Decimal

from django.db import transaction

from ..exceptions import NotFoundError, ValidationError
from ..models import Expense, TimeEntry
from ..money import normalize_currency, round_money, to_decimal
from . import advances


logger = logging.getLogger(__name__)


def _check_scope(firm, matter, lawyer=None):
    if matter.firm_id != firm.pk:
        raise NotFoundError('Matter', matter.pk, field='matter_id')
    if lawyer is not None and lawyer.firm_id != firm.pk:
        raise NotFoundError('Lawyer', lawyer.pk, field='lawyer_id')
    if not matter.is_active:
        raise ValidationError('Matter is inactive', field='matter_id')
    if not matter.client.is_active:
        raise ValidationError('Client is inactive', field='client_id')


def resolve_rate(lawyer, matter):
    """(rate, currency) for new time: the matter's custom rate beats the lawyer's own."""
    if matter.custom_hourly_rate is not None:
        return matter.custom_hourly_rate, matter.currency
    return lawyer.hourly_rate, lawyer.hourly_rate_currency


def record_time_entry(*, firm, lawyer, matter, date, minutes, narrative, billable=True,
                      rate=None, currency=None):
    _check_scope(firm, matter, lawyer)
    minutes = to_decimal(minutes, 'minutes')
    if minutes < 0:
        raise ValidationError('minutes cannot be negative', field='minutes')
    narrative = (narrative or '').strip()
    if not narrative:
        raise ValidationError('narrative is required', field='narrative')

    default_rate, default_currency = resolve_rate(lawyer, matter)
    rate = round_money(default_rate if rate is None else rate)
    if rate < 0:
        raise ValidationError('rate cannot be negative', field='rate')
    currency = normalize_currency(currency or default_currency)

    entry = TimeEntry.objects.create(
        firm=firm,
        lawyer=lawyer,
        client=matter.client,
        matter=matter,
        date=date,
        minutes=minutes,
        narrative=narrative,
        billable=billable,
        rate=rate,
        currency=currency,
    )
    logger.info('Time entry %s recorded: %s min at %s %s', entry.pk, minutes, currency, rate)
    return entry


@transaction.atomic
def record_expense(*, firm, matter, date, category, amount, currency=None, description='',
                   billable=True, markup_percent=Decimal('0'), lawyer=None,
                   deduct_from_advances=False):
    """Record an expense, optionally drawing it from the paying lawyer's advance
    and from the client's expense advance in the same transaction."""
    _check_scope(firm, matter, lawyer)
    amount = round_money(amount)
    if amount <= 0:
        raise ValidationError('amount must be greater than zero', field='amount')
    markup_percent = to_decimal(markup_percent or 0, 'markup_percent')
    if markup_percent < 0:
        raise ValidationError('markup_percent cannot be negative', field='markup_percent')
    category = (category or '').strip()
    if not category:
        raise ValidationError('category is required', field='category')
    currency = normalize_currency(currency or matter.currency)

    expense = Expense.objects.create(
        firm=firm,
        client=matter.client,
        matter=matter,
        lawyer=lawyer,
        date=date,
        category=category,
        description=description or '',
        amount=amount,
        currency=currency,
        billable=billable,
        markup_percent=markup_percent,
    )

    deductions = []
    if deduct_from_advances:
        lawyer_advance = advances.find_lawyer_advance(firm, lawyer)
        if lawyer_advance is not None and lawyer_advance.currency == currency:
            result = advances.consume(lawyer_advance, amount, expense=expense, memo=f'Expense {expense.pk}')
            deductions.append({'type': advances.LAWYER_ADVANCE, 'advance_id': lawyer_advance.pk,
                               'amount': amount, 'new_balance': result.new_balance})

        client_advance = advances.find_active_advance(
            firm, matter.client, advances.CLIENT_EXPENSE_ADVANCE, matter=matter,
        )
        if client_advance is not None and client_advance.currency == currency:
            result = advances.consume(client_advance, amount, expense=expense, memo=f'Expense {expense.pk}')
            expense.advance = client_advance
            expense.save(update_fields=['advance'])
            deductions.append({'type': advances.CLIENT_EXPENSE_ADVANCE, 'advance_id': client_advance.pk,
                               'amount': amount, 'new_balance': result.new_balance})

    logger.info('Expense %s recorded: %s %s, %d deduction(s)', expense.pk, currency, amount, len(deductions))
    return expense, deductions
