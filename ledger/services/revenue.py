"""Revenue recognition for period reports.

Revenue for a period is retainers received, fee payments received and
invoices paid within it. Client expense advances and lawyer advances are
pass-through money and never count, whatever their amount. Figures are kept
per currency and never added across currencies.
"""
from dataclasses import dataclass, field
from decimal import Decimal

from django.db.models import Count, Q, Sum
from django.utils import timezone

from ..exceptions import CurrencyMismatchError, ValidationError
from ..models import Advance, Invoice
from ..money import round_money
from . import advances as advance_ledger
from .invoices import OPEN_STATUSES, effective_status


ZERO = Decimal('0.00')
RECOGNIZED_ADVANCE_STATUSES = ('active', 'depleted')
NON_REVENUE_ADVANCE_TYPES = ('client_expense_advance', 'lawyer_advance')
FEE_PAYMENT_PREFIX = 'fee_payment_'


@dataclass
class RevenueSummary:
    currency: str
    retainers: Decimal = ZERO
    fee_payments: Decimal = ZERO
    paid_invoices: Decimal = ZERO

    @property
    def total(self):
        return self.retainers + self.fee_payments + self.paid_invoices

    def as_dict(self):
        return {
            'retainers': self.retainers,
            'fee_payments': self.fee_payments,
            'paid_invoices': self.paid_invoices,
            'total': self.total,
        }


@dataclass
class RevenueReport:
    start: object
    end: object
    by_currency: dict = field(default_factory=dict)

    def __getitem__(self, currency):
        return self.by_currency[currency]

    def __contains__(self, currency):
        return currency in self.by_currency

    def __len__(self):
        return len(self.by_currency)

    @property
    def currencies(self):
        return sorted(self.by_currency)

    def summary(self, currency):
        return self.by_currency.get(currency) or RevenueSummary(currency)

    def sole(self):
        """The only currency's summary; mixed periods must be read per currency."""
        if len(self.by_currency) > 1:
            raise CurrencyMismatchError(self.by_currency.keys())
        if not self.by_currency:
            return None
        return next(iter(self.by_currency.values()))

    def as_dict(self):
        return {currency: self.by_currency[currency].as_dict() for currency in self.currencies}


def _check_period(start, end):
    if start is None or end is None:
        raise ValidationError('Both start and end dates are required', field='start')
    if end < start:
        raise ValidationError('end must not be before start', field='end')


def recognized_advances(firm, start, end):
    return Advance.objects.filter(
        firm=firm,
        date_received__gte=start,
        date_received__lte=end,
        status__in=RECOGNIZED_ADVANCE_STATUSES,
    ).exclude(advance_type__in=NON_REVENUE_ADVANCE_TYPES)


def paid_invoices(firm, start, end):
    return Invoice.objects.filter(
        firm=firm,
        status='paid',
        paid_date__isnull=False,
        paid_date__gte=start,
        paid_date__lte=end,
    )


def _advance_rows(qs, group_by):
    return (
        qs.values(*group_by)
        .annotate(
            retainers=Sum('amount', filter=Q(advance_type='client_retainer')),
            fee_payments=Sum('amount', filter=Q(advance_type__startswith=FEE_PAYMENT_PREFIX)),
        )
        .order_by(*group_by)
    )


def _invoice_rows(qs, group_by):
    return qs.values(*group_by).annotate(paid=Sum('total')).order_by(*group_by)


def _collect(firm, start, end, group_by, advance_filter=None, invoice_filter=None):
    """{group key tuple: RevenueSummary} where the key ends with the currency."""
    advances = recognized_advances(firm, start, end)
    invoices = paid_invoices(firm, start, end)
    if advance_filter:
        advances = advances.filter(**advance_filter)
    if invoice_filter:
        invoices = invoices.filter(**invoice_filter)

    summaries = {}

    def summary_for(row):
        key = tuple(row[name] for name in group_by)
        if key not in summaries:
            summaries[key] = RevenueSummary(row['currency'])
        return summaries[key]

    for row in _advance_rows(advances, group_by):
        summary = summary_for(row)
        summary.retainers += round_money(row['retainers'] or ZERO)
        summary.fee_payments += round_money(row['fee_payments'] or ZERO)
    for row in _invoice_rows(invoices, group_by):
        summary_for(row).paid_invoices += round_money(row['paid'] or ZERO)
    return summaries


def revenue_for_period(firm, start, end, client=None, matter=None):
    """Revenue received in [start, end], optionally scoped to a client or matter."""
    _check_period(start, end)
    scope = {}
    if client is not None:
        scope['client'] = client
    if matter is not None:
        scope['matter'] = matter
    summaries = _collect(firm, start, end, ['currency'], scope, scope)
    return RevenueReport(start, end, {key[0]: summary for key, summary in summaries.items()})


def revenue_by_client(firm, start, end):
    _check_period(start, end)
    summaries = _collect(firm, start, end, ['client_id', 'currency'])
    rows = [
        {'client_id': client_id, 'currency': currency, **summary.as_dict()}
        for (client_id, currency), summary in summaries.items()
        if client_id is not None
    ]
    return sorted(rows, key=lambda row: (-row['total'], row['currency'], row['client_id']))


def revenue_by_matter(firm, start, end):
    _check_period(start, end)
    summaries = _collect(firm, start, end, ['matter_id', 'currency'])
    rows = [
        {'matter_id': matter_id, 'currency': currency, **summary.as_dict()}
        for (matter_id, currency), summary in summaries.items()
        if matter_id is not None
    ]
    return sorted(rows, key=lambda row: (-row['total'], row['currency'], row['matter_id']))


def dashboard_summary(firm, today=None):
    """Headline billing figures for the firm dashboard."""
    today = today or timezone.localdate()
    month_start = today.replace(day=1)

    open_invoices = list(Invoice.objects.filter(firm=firm, status__in=OPEN_STATUSES))
    outstanding = {}
    overdue_count = 0
    for invoice in open_invoices:
        outstanding[invoice.currency] = outstanding.get(invoice.currency, ZERO) + invoice.balance_due
        if effective_status(invoice, today) == 'overdue':
            overdue_count += 1

    draft_count = Invoice.objects.filter(firm=firm, status='draft').aggregate(count=Count('id'))['count']
    return {
        'draft_invoices': draft_count,
        'open_invoices': len(open_invoices),
        'overdue_invoices': overdue_count,
        'outstanding': outstanding,
        'this_month_revenue': revenue_for_period(firm, month_start, today).as_dict(),
        'low_balance_advances': [advance.pk for advance in advance_ledger.low_balance_advances(firm)],
    }
