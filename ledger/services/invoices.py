"""Invoice composition and the invoice status machine.

Line amounts are rounded half-up to cents one line at a time and the subtotal
is the sum of those rounded lines. Totals on an invoice therefore always
reconcile with its printed lines, even when that differs by a cent from
rounding the unrounded sum.
"""
import logging
import re
from datetime import date, timedelta
from decimal import Decimal

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date

from .. import conf
from ..exceptions import (
    ConcurrencyConflictError,
    CurrencyMismatchError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from ..models import Expense, Invoice, InvoiceLineItem, Payment, TimeEntry
from ..money import Money, money_sum, normalize_currency, round_money, to_decimal
from . import advances


logger = logging.getLogger(__name__)

HOURS_QUANT = Decimal('0.0001')
OPEN_STATUSES = ('sent', 'partial')
VOIDABLE_STATUSES = ('draft', 'sent', 'partial', 'overdue')
VOID_STATUSES = ('cancelled', 'written_off')
MAX_AMOUNT = Decimal('999999999999.99')
MAX_QUANTITY = Decimal('99999999.9999')


# ---------------------------------------------------------------- selection

def unbilled_time(firm, client, matter=None):
    qs = TimeEntry.objects.filter(firm=firm, client=client, status='draft', billable=True)
    if matter is not None:
        qs = qs.filter(matter=matter)
    return qs.order_by('date', 'id')


def unbilled_expenses(firm, client, matter=None):
    qs = Expense.objects.filter(firm=firm, client=client, status='draft', billable=True)
    if matter is not None:
        qs = qs.filter(matter=matter)
    return qs.order_by('date', 'id')


def _select_for_billing(model, default_qs, firm, client, matter, ids, field):
    """Lock the entries to bill. Explicit ids must all be billable drafts in scope."""
    if ids is None:
        return list(default_qs.select_for_update())

    ids = list(dict.fromkeys(ids))
    entries = list(
        model.objects.select_for_update().filter(firm=firm, pk__in=ids).order_by('date', 'id')
    )
    found = {entry.pk for entry in entries}
    missing = [pk for pk in ids if pk not in found]
    if missing:
        raise NotFoundError(model.__name__, missing[0], field=field)
    for entry in entries:
        if entry.client_id != client.pk or (matter is not None and entry.matter_id != matter.pk):
            raise ValidationError(f'{model.__name__} {entry.pk} is outside the invoice scope', field=field)
        if entry.status != 'draft':
            raise ValidationError(f'{model.__name__} {entry.pk} is already invoiced', field=field)
        if not entry.billable:
            raise ValidationError(f'{model.__name__} {entry.pk} is not billable', field=field)
    return entries


# ---------------------------------------------------------------- pricing

def price_time_entry(entry):
    hours = (entry.minutes / Decimal('60')).quantize(HOURS_QUANT)
    return {
        'item_type': 'time',
        'item_date': entry.date,
        'time_entry': entry,
        'description': entry.narrative,
        'quantity': hours,
        'unit': 'hours',
        'rate': entry.rate,
        'amount': entry.total_amount,
    }


def price_expense(expense):
    billed = expense.billed_amount
    description = expense.description or expense.category
    return {
        'item_type': 'expense',
        'item_date': expense.date,
        'expense': expense,
        'description': description,
        'quantity': Decimal('1'),
        'unit': 'item',
        'rate': billed.amount,
        'amount': billed,
    }


def price_manual_item(item, currency):
    description = (item.get('description') or '').strip()
    if not description:
        raise ValidationError('Manual items need a description', field='manual_items')
    quantity = to_decimal(item.get('quantity', 1), 'quantity')
    rate = to_decimal(item.get('rate'), 'rate')
    if quantity <= 0 or rate < 0:
        raise ValidationError('Manual items need a positive quantity and a rate of at least zero',
                              field='manual_items')
    # must fit the line item columns
    if quantity > MAX_QUANTITY or rate > MAX_AMOUNT or quantity * rate > MAX_AMOUNT:
        raise ValidationError('Manual item amount is too large', field='manual_items')
    rate = round_money(rate, 'manual_items')
    return {
        'item_type': 'manual',
        'item_date': _manual_item_date(item.get('item_date')),
        'description': description,
        'quantity': quantity,
        'unit': item.get('unit') or 'item',
        'rate': rate,
        'amount': Money(quantity * rate, currency).rounded(),
    }


def _manual_item_date(value):
    if value in (None, ''):
        return None
    if isinstance(value, date):
        return value
    try:
        parsed = parse_date(str(value))
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f'{value!r} is not a valid item date', field='manual_items')
    return parsed


def compute_discount(subtotal, discount_type, discount_value):
    discount_value = to_decimal(discount_value or 0, 'discount_value')
    if discount_value < 0:
        raise ValidationError('discount_value cannot be negative', field='discount_value')
    if discount_type == 'fixed':
        discount = Money(discount_value, subtotal.currency).rounded()
    elif discount_type == 'percent':
        discount = (subtotal * (discount_value / Decimal('100'))).rounded()
    elif discount_type in (None, '', 'none'):
        discount = Money.zero(subtotal.currency)
    else:
        raise ValidationError(f'Unknown discount type {discount_type!r}', field='discount_type')
    if discount > subtotal:
        raise ValidationError('Discount exceeds the subtotal', field='discount_value')
    return discount


def compute_totals(subtotal, discount, retainer_applied, vat_rate):
    taxable = (subtotal - discount - retainer_applied).floor_zero()
    vat = (taxable * (vat_rate / Decimal('100'))).rounded()
    return taxable, vat, taxable + vat


def next_invoice_number(firm, year):
    prefix = f'{conf.invoice_prefix()}-{year}-'
    numbers = Invoice.objects.filter(firm=firm, invoice_number__startswith=prefix).values_list(
        'invoice_number', flat=True)
    highest = 0
    for number in numbers:
        match = re.match(rf'^{re.escape(prefix)}(\d+)$', number)
        if match:
            highest = max(highest, int(match.group(1)))
    return f'{prefix}{highest + 1:04d}'


def _resolve_currency(lines, requested, retainer_advance):
    currencies = {line['amount'].currency for line in lines if 'amount' in line}
    if requested:
        currencies.add(normalize_currency(requested))
    if retainer_advance is not None:
        currencies.add(retainer_advance.currency)
    if len(currencies) > 1:
        raise CurrencyMismatchError(currencies)
    return currencies.pop() if currencies else None


# ---------------------------------------------------------------- compose

@transaction.atomic
def compose_invoice(*, firm, client, matter=None, time_entry_ids=None, expense_ids=None,
                    manual_items=None, discount_type='none', discount_value=Decimal('0'),
                    vat_rate=None, retainer_advance=None, retainer_amount=None,
                    issue_date=None, due_date=None, period_start=None, period_end=None,
                    currency=None, notes_to_client='', internal_notes='', client_reference=''):
    """Build a draft invoice from unbilled time and expenses.

    Entry selection, retainer consumption, invoice creation and entry marking
    all happen in one transaction; any failure leaves every entry in draft
    and every advance balance untouched.
    """
    if client.firm_id != firm.pk:
        raise NotFoundError('Client', client.pk, field='client_id')
    if not client.is_active:
        raise ValidationError('Client is inactive', field='client_id')
    if matter is not None:
        if matter.firm_id != firm.pk:
            raise NotFoundError('Matter', matter.pk, field='matter_id')
        if matter.client_id != client.pk:
            raise ValidationError('Matter does not belong to the client', field='matter_id')
        if not matter.is_active:
            raise ValidationError('Matter is inactive', field='matter_id')

    explicit = time_entry_ids is not None or expense_ids is not None
    time_entries = _select_for_billing(
        TimeEntry, unbilled_time(firm, client, matter), firm, client, matter,
        (time_entry_ids or []) if explicit else None, 'time_entry_ids',
    )
    expenses = _select_for_billing(
        Expense, unbilled_expenses(firm, client, matter), firm, client, matter,
        (expense_ids or []) if explicit else None, 'expense_ids',
    )

    lines = [price_time_entry(entry) for entry in time_entries]
    lines += [price_expense(expense) for expense in expenses]
    if retainer_advance is not None and retainer_advance.firm_id != firm.pk:
        raise NotFoundError('Advance', retainer_advance.pk, field='retainer_advance_id')

    invoice_currency = _resolve_currency(lines, currency, retainer_advance)
    if manual_items:
        invoice_currency = invoice_currency or (matter.currency if matter else firm.default_currency)
        lines += [price_manual_item(item, invoice_currency) for item in manual_items]
    if not lines:
        raise ValidationError('There is nothing to invoice for this client', field='time_entry_ids')

    subtotal = money_sum((line['amount'] for line in lines), invoice_currency)
    discount = compute_discount(subtotal, discount_type, discount_value)

    applied = Money.zero(invoice_currency)
    locked_advance = None
    if retainer_advance is not None:
        locked_advance = advances.get_advance(firm, retainer_advance.pk, for_update=True)
        if locked_advance.client_id != client.pk:
            raise ValidationError('Retainer belongs to another client', field='retainer_advance_id')
        if locked_advance.advance_type != advances.CLIENT_RETAINER:
            raise ValidationError('Only client retainers can be applied to invoices',
                                  field='retainer_advance_id')
        if locked_advance.status == 'refunded':
            raise ValidationError('Retainer has been refunded', field='retainer_advance_id')
        if locked_advance.status != 'active' and retainer_amount is None:
            raise ValidationError('Retainer has no balance left', field='retainer_advance_id')
        available = locked_advance.balance
        if retainer_amount is None:
            requested = available
        else:
            requested = Money(round_money(retainer_amount), invoice_currency)
            if requested.amount < 0:
                raise ValidationError('retainer_amount cannot be negative', field='retainer_amount')
            if requested > available:
                raise InsufficientBalanceError(locked_advance.pk, requested.amount, available.amount,
                                               field='retainer_amount')
        applied = requested.min((subtotal - discount).floor_zero())

    vat_rate = conf.default_vat_rate() if vat_rate is None else to_decimal(vat_rate, 'vat_rate')
    if vat_rate < 0:
        raise ValidationError('vat_rate cannot be negative', field='vat_rate')
    taxable, vat, total = compute_totals(subtotal, discount, applied, vat_rate)

    issue_date = issue_date or timezone.localdate()
    dated = [line['item_date'] for line in lines if line.get('item_date')]
    invoice = Invoice.objects.create(
        firm=firm,
        invoice_number=next_invoice_number(firm, issue_date.year),
        client=client,
        matter=matter,
        period_start=period_start or (min(dated) if dated else None),
        period_end=period_end or (max(dated) if dated else issue_date),
        issue_date=issue_date,
        due_date=due_date or issue_date + timedelta(days=conf.payment_terms_days()),
        subtotal=subtotal.amount,
        discount_type=discount_type or 'none',
        discount_value=to_decimal(discount_value or 0, 'discount_value'),
        discount_amount=discount.amount,
        retainer_advance=locked_advance if not applied.is_zero() else None,
        retainer_applied=applied.amount,
        taxable_amount=taxable.amount,
        vat_rate=vat_rate,
        vat_amount=vat.amount,
        total=total.amount,
        currency=invoice_currency,
        status='draft',
        notes_to_client=notes_to_client or '',
        internal_notes=internal_notes or '',
        client_reference=client_reference or '',
    )

    InvoiceLineItem.objects.bulk_create([
        InvoiceLineItem(
            firm=firm,
            invoice=invoice,
            item_type=line['item_type'],
            item_date=line.get('item_date'),
            time_entry=line.get('time_entry'),
            expense=line.get('expense'),
            description=line['description'],
            quantity=line['quantity'],
            unit=line['unit'],
            rate=line['rate'],
            amount=line['amount'].amount,
            sort_order=index,
        )
        for index, line in enumerate(lines)
    ])

    _mark_invoiced(TimeEntry, [entry.pk for entry in time_entries], invoice)
    _mark_invoiced(Expense, [expense.pk for expense in expenses], invoice)

    if not applied.is_zero():
        advances.consume(locked_advance, applied.amount, invoice=invoice,
                         memo=f'Applied to {invoice.invoice_number}')

    logger.info('Invoice %s composed for client %s: %d line(s), total %s',
                invoice.invoice_number, client.pk, len(lines), total)
    return invoice


def _mark_invoiced(model, ids, invoice):
    if not ids:
        return
    updated = model.objects.filter(pk__in=ids, status='draft').update(status='invoiced', invoice=invoice)
    if updated != len(ids):
        raise ConcurrencyConflictError(
            f'{len(ids) - updated} {model.__name__} row(s) were invoiced concurrently',
            field='time_entry_ids' if model is TimeEntry else 'expense_ids',
        )


# ---------------------------------------------------------------- status machine

def effective_status(invoice, today=None):
    """Stored status, or ``overdue`` for open invoices past their due date."""
    today = today or timezone.localdate()
    if invoice.status in OPEN_STATUSES and invoice.due_date and invoice.due_date < today:
        return 'overdue'
    return invoice.status


def get_invoice(firm, invoice_id, for_update=False):
    qs = Invoice.objects.filter(firm=firm)
    if for_update:
        qs = qs.select_for_update()
    invoice = qs.filter(pk=invoice_id).first()
    if invoice is None:
        raise NotFoundError('Invoice', invoice_id, field='invoice_id')
    return invoice


@transaction.atomic
def send_invoice(invoice, sent_date=None):
    invoice = get_invoice(invoice.firm_id, invoice.pk, for_update=True)
    if invoice.status != 'draft':
        raise ValidationError(f'Only draft invoices can be sent (status is {invoice.status})', field='status')

    sent_date = sent_date or timezone.localdate()
    invoice.sent_date = sent_date
    if invoice.total == 0:
        # fully covered by discount or retainer; nothing left to collect
        invoice.status = 'paid'
        invoice.paid_date = invoice.paid_date or sent_date
    else:
        invoice.status = 'sent'
    invoice.save(update_fields=['status', 'sent_date', 'paid_date', 'updated_at'])

    logger.info('Invoice %s sent, status %s', invoice.invoice_number, invoice.status)
    return invoice


@transaction.atomic
def record_payment(invoice, amount, payment_date, *, currency=None, payment_method='wire',
                   reference_number='', notes=''):
    """Journal a payment. Reaching the total moves the invoice to paid and
    sets paid_date once; later calls never overwrite it."""
    invoice = get_invoice(invoice.firm_id, invoice.pk, for_update=True)
    if payment_date is None:
        raise ValidationError('payment_date is required', field='payment_date')
    payment = Money(round_money(amount), currency or invoice.currency)
    if payment.currency != invoice.currency:
        raise CurrencyMismatchError([payment.currency, invoice.currency])
    if payment.amount <= 0:
        raise ValidationError('amount must be greater than zero', field='amount')

    if invoice.status == 'paid':
        replay = invoice.payments.filter(amount=payment.amount, payment_date=payment_date).exists()
        if replay:
            logger.info('Duplicate payment on paid invoice %s ignored', invoice.invoice_number)
            return invoice
        raise ValidationError('Invoice is already paid', field='amount')
    if invoice.status not in OPEN_STATUSES:
        raise ValidationError(f'Payments cannot be recorded on a {invoice.status} invoice', field='status')
    if payment.amount > invoice.balance_due:
        raise ValidationError(f'Payment exceeds the balance due of {invoice.balance_due}', field='amount')

    Payment.objects.create(
        firm_id=invoice.firm_id,
        invoice=invoice,
        client_id=invoice.client_id,
        payment_date=payment_date,
        amount=payment.amount,
        payment_method=payment_method or 'wire',
        reference_number=reference_number or '',
        notes=notes or '',
    )
    invoice.paid_amount = invoice.paid_amount + payment.amount
    if invoice.paid_amount >= invoice.total:
        invoice.status = 'paid'
        if invoice.paid_date is None:
            invoice.paid_date = payment_date
    else:
        invoice.status = 'partial'
    invoice.save(update_fields=['paid_amount', 'status', 'paid_date', 'updated_at'])

    logger.info('Payment of %s recorded on invoice %s, status %s',
                payment, invoice.invoice_number, invoice.status)
    return invoice


@transaction.atomic
def void_invoice(invoice, reason, *, write_off=False, allow_paid=False):
    """Cancel or write off an invoice, returning its entries to draft and its
    retainer consumption to the advance."""
    invoice = get_invoice(invoice.firm_id, invoice.pk, for_update=True)
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('A reason is required to void an invoice', field='reason')
    if invoice.status == 'paid':
        if not allow_paid:
            raise ValidationError('Paid invoices can only be voided with an administrative override',
                                  field='status')
    elif invoice.status not in VOIDABLE_STATUSES:
        raise ValidationError(f'Invoice is already {invoice.status}', field='status')

    reverted_time = list(
        TimeEntry.objects.select_for_update().filter(invoice=invoice).values_list('pk', flat=True))
    reverted_expenses = list(
        Expense.objects.select_for_update().filter(invoice=invoice).values_list('pk', flat=True))
    TimeEntry.objects.filter(pk__in=reverted_time).update(status='draft', invoice=None)
    Expense.objects.filter(pk__in=reverted_expenses).update(status='draft', invoice=None)

    for advance_id, amount in advances.consumed_by_invoice(invoice).items():
        advance = advances.get_advance(invoice.firm_id, advance_id, for_update=True)
        advances.release(advance, amount, invoice=invoice, memo=f'Void of {invoice.invoice_number}')

    invoice.status = 'written_off' if write_off else 'cancelled'
    invoice.void_reason = reason
    invoice.voided_at = timezone.now()
    invoice.save(update_fields=['status', 'void_reason', 'voided_at', 'updated_at'])

    logger.info('Invoice %s %s: %d time entr(ies), %d expense(s) returned to draft',
                invoice.invoice_number, invoice.status, len(reverted_time), len(reverted_expenses))
    return invoice
