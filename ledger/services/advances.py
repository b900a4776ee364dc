"""Retainer and advance ledger.

This module is the only code allowed to change ``Advance.balance_remaining``.
Every mutation locks the advance row first, so two writers consuming the same
deposit are serialized by the database.
"""
import logging
from collections import namedtuple
from decimal import Decimal

from django.db import transaction
from django.db.models import Sum

from ..exceptions import InsufficientBalanceError, NotFoundError, ValidationError
from ..models import Advance, AdvanceMovement
from ..money import Money, normalize_currency, round_money


logger = logging.getLogger(__name__)

ADVANCE_TYPES = {choice for choice, _ in Advance.TYPE_CHOICES}
CLIENT_RETAINER = 'client_retainer'
CLIENT_EXPENSE_ADVANCE = 'client_expense_advance'
LAWYER_ADVANCE = 'lawyer_advance'

ConsumeResult = namedtuple('ConsumeResult', ['success', 'new_balance', 'advance'])


def _positive_amount(amount, field='amount'):
    value = round_money(amount)
    if value <= 0:
        raise ValidationError(f'{field} must be greater than zero', field=field)
    return value


def get_advance(firm, advance_id, for_update=False):
    qs = Advance.objects.filter(firm=firm)
    if for_update:
        qs = qs.select_for_update()
    advance = qs.filter(pk=advance_id).first()
    if advance is None:
        raise NotFoundError('Advance', advance_id, field='advance_id')
    return advance


def _lock(advance):
    return get_advance(advance.firm_id, advance.pk, for_update=True)


def _journal(advance, kind, amount, invoice=None, expense=None, memo=''):
    return AdvanceMovement.objects.create(
        firm_id=advance.firm_id,
        advance=advance,
        kind=kind,
        amount=amount,
        balance_after=advance.balance_remaining,
        invoice=invoice,
        expense=expense,
        memo=memo[:255],
    )


@transaction.atomic
def deposit(*, firm, advance_type, amount, currency, date_received, client=None, matter=None,
            lawyer=None, payment_method='bank_transfer', reference_number='',
            minimum_balance_alert=None, notes=''):
    """Record a deposit. The new advance starts active with its full amount available."""
    if advance_type not in ADVANCE_TYPES:
        raise ValidationError(f'Unknown advance type {advance_type!r}', field='advance_type')
    amount = _positive_amount(amount)
    currency = normalize_currency(currency)
    if date_received is None:
        raise ValidationError('date_received is required', field='date_received')

    if advance_type == LAWYER_ADVANCE:
        if lawyer is None:
            raise ValidationError('A lawyer advance needs a lawyer', field='lawyer_id')
        # lawyer advances are never tied to a client relationship
        client = None
        matter = None
    else:
        if client is None:
            raise ValidationError('A client is required for this advance type', field='client_id')
        if not client.is_active:
            raise ValidationError('Client is inactive', field='client_id')
        if matter is not None and matter.client_id != client.pk:
            raise ValidationError('Matter does not belong to the client', field='matter_id')

    for related in (client, matter, lawyer):
        if related is not None and related.firm_id != firm.pk:
            raise NotFoundError(type(related).__name__, related.pk)

    if minimum_balance_alert is not None and advance_type.startswith('fee_payment_'):
        minimum_balance_alert = None

    advance = Advance.objects.create(
        firm=firm,
        advance_type=advance_type,
        client=client,
        matter=matter,
        lawyer=lawyer,
        amount=amount,
        currency=currency,
        date_received=date_received,
        payment_method=payment_method or 'bank_transfer',
        reference_number=reference_number or '',
        balance_remaining=amount,
        minimum_balance_alert=minimum_balance_alert,
        status='active',
        notes=notes or '',
    )
    _journal(advance, 'deposit', amount)

    logger.info('Advance %s deposited: %s %s %s', advance.pk, advance_type, currency, amount)
    return advance


@transaction.atomic
def consume(advance, amount, *, invoice=None, expense=None, memo=''):
    """Draw ``amount`` from an advance; never overdraws."""
    amount = _positive_amount(amount)
    locked = _lock(advance)
    if locked.status == 'refunded':
        raise ValidationError(f'Advance {locked.pk} has been refunded', field='advance_id')
    if amount > locked.balance_remaining:
        raise InsufficientBalanceError(locked.pk, amount, locked.balance_remaining)

    new_balance = locked.balance_remaining - amount
    locked._apply_balance(new_balance, 'depleted' if new_balance == 0 else 'active')
    _journal(locked, 'consume', amount, invoice=invoice, expense=expense, memo=memo)

    logger.info('Advance %s consumed %s, balance now %s', locked.pk, amount, new_balance)
    return ConsumeResult(True, new_balance, locked)


@transaction.atomic
def refund(advance, amount, *, memo=''):
    """Return part or all of the remaining balance to the depositor."""
    amount = _positive_amount(amount)
    locked = _lock(advance)
    if amount > locked.balance_remaining:
        raise InsufficientBalanceError(locked.pk, amount, locked.balance_remaining)

    new_balance = locked.balance_remaining - amount
    refunded = new_balance == 0 or locked.status == 'refunded'
    locked._apply_balance(new_balance, 'refunded' if refunded else 'active')
    _journal(locked, 'refund', amount, memo=memo)

    logger.info('Advance %s refunded %s, balance now %s', locked.pk, amount, new_balance)
    return locked


@transaction.atomic
def release(advance, amount, *, invoice=None, expense=None, memo=''):
    """Give back a previous consumption (void of the invoice or expense that used it)."""
    amount = _positive_amount(amount)
    locked = _lock(advance)
    new_balance = locked.balance_remaining + amount
    if new_balance > locked.amount:
        raise ValidationError(
            f'Releasing {amount} would exceed the original deposit of {locked.amount}',
            field='amount',
        )
    # a refunded advance stays closed; released money is only refundable
    status = 'refunded' if locked.status == 'refunded' else 'active'
    locked._apply_balance(new_balance, status)
    _journal(locked, 'release', amount, invoice=invoice, expense=expense, memo=memo)

    logger.info('Advance %s released %s, balance now %s', locked.pk, amount, new_balance)
    return locked


def consumed_by_invoice(invoice):
    """Net amount each advance gave to ``invoice``: {advance_id: Decimal}."""
    net = {}
    for movement in AdvanceMovement.objects.filter(invoice=invoice, kind__in=['consume', 'release']):
        sign = 1 if movement.kind == 'consume' else -1
        net[movement.advance_id] = net.get(movement.advance_id, Decimal('0')) + sign * movement.amount
    return {advance_id: amount for advance_id, amount in net.items() if amount > 0}


def outstanding_balance(firm, client, advance_type=CLIENT_RETAINER):
    """Remaining balance per currency across the client's active/depleted advances."""
    rows = (
        Advance.objects.filter(firm=firm, client=client, advance_type=advance_type,
                               status__in=['active', 'depleted'])
        .values('currency')
        .annotate(total=Sum('balance_remaining'))
        .order_by('currency')
    )
    return {row['currency']: Money(round_money(row['total']), row['currency']) for row in rows}


def find_active_advance(firm, client, advance_type, matter=None):
    """Matter-specific advance first, then the client-wide one; newest deposit wins."""
    qs = Advance.objects.filter(
        firm=firm, client=client, advance_type=advance_type, status='active',
    ).order_by('-date_received', '-id')
    if matter is not None:
        advance = qs.filter(matter=matter).first()
        if advance is not None:
            return advance
    return qs.first()


def find_lawyer_advance(firm, lawyer):
    if lawyer is None:
        return None
    return (
        Advance.objects.filter(firm=firm, lawyer=lawyer, advance_type=LAWYER_ADVANCE, status='active')
        .order_by('-date_received', '-id')
        .first()
    )


def low_balance_advances(firm):
    advances = Advance.objects.filter(
        firm=firm, status='active', minimum_balance_alert__isnull=False,
    ).select_related('client', 'matter', 'lawyer').order_by('balance_remaining')
    return [advance for advance in advances if advance.is_low_balance]
