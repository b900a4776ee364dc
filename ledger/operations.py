"""Operation contracts exposed to the API layer.

Each write operation validates its input with a form, runs the ledger service
and returns an ``OperationResult``. Business-rule errors come back as
``success=False`` with field-level errors; unexpected database failures come
back as a generic ``system`` failure. Nothing raised by the ledger crosses
this boundary.
"""
import functools
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db import DatabaseError, IntegrityError, OperationalError

from . import conf
from .exceptions import ConcurrencyConflictError, LedgerError, NotFoundError, ValidationError
from .forms import (
    AdvanceAmountForm,
    ComposeInvoiceForm,
    DepositAdvanceForm,
    RecordExpenseForm,
    RecordPaymentForm,
    RevenueQueryForm,
    SendInvoiceForm,
    VoidInvoiceForm,
)
from .models import Advance, Client, Lawyer, Matter
from .services import advances, capture, invoices, revenue


logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    success: bool
    id: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    error_type: Optional[str] = None
    retryable: bool = False

    @classmethod
    def ok(cls, id=None, **data):
        return cls(success=True, id=id, data=data)

    @classmethod
    def from_error(cls, exc):
        return cls(success=False, errors=list(exc.errors), error_type=exc.error_type, retryable=exc.retryable)

    @classmethod
    def system_failure(cls):
        return cls(
            success=False,
            errors=[{'field': None, 'message': 'The ledger could not complete the operation; try again later'}],
            error_type='system',
            retryable=True,
        )

    def as_dict(self):
        result = {'success': self.success}
        if self.id is not None:
            result['id'] = self.id
        if self.data:
            result['data'] = self.data
        if not self.success:
            result['errors'] = self.errors
            result['error_type'] = self.error_type
            result['retryable'] = self.retryable
        return result


def retry_on_conflict(func, attempts=None):
    """Run ``func`` again when another writer won a lock or a unique number."""
    attempts = attempts or conf.concurrency_retries()
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except (ConcurrencyConflictError, OperationalError, IntegrityError) as exc:
            logger.warning('Ledger conflict on attempt %d/%d: %s', attempt, attempts, exc)
            if attempt == attempts:
                raise ConcurrencyConflictError(
                    'The ledger was changed by another user; reload and try again',
                ) from exc


def ledger_operation(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return retry_on_conflict(lambda: func(*args, **kwargs))
        except ValidationError as exc:
            logger.info('%s rejected: %s', func.__name__, exc.errors)
            return OperationResult.from_error(exc)
        except LedgerError as exc:
            logger.warning('%s failed (%s): %s', func.__name__, exc.error_type, exc.message)
            return OperationResult.from_error(exc)
        except DatabaseError:
            logger.exception('%s failed with a storage error', func.__name__)
            return OperationResult.system_failure()
        except Exception:
            logger.exception('%s failed unexpectedly', func.__name__)
            return OperationResult.system_failure()
    return wrapper


def _validated(form_class, data):
    form = form_class(data=data or {})
    if not form.is_valid():
        raise ValidationError.from_form(form)
    return form.cleaned_data


def _lookup(model, firm, pk, field_name):
    if pk in (None, ''):
        return None
    obj = model.objects.filter(firm=firm, pk=pk).first()
    if obj is None:
        raise NotFoundError(model.__name__, pk, field=field_name)
    return obj


def _money(value):
    return str(value) if isinstance(value, Decimal) else value


def serialize_advance(advance):
    return {
        'id': advance.pk,
        'advance_type': advance.advance_type,
        'client_id': advance.client_id,
        'matter_id': advance.matter_id,
        'lawyer_id': advance.lawyer_id,
        'amount': _money(advance.amount),
        'currency': advance.currency,
        'date_received': advance.date_received.isoformat(),
        'balance_remaining': _money(advance.balance_remaining),
        'status': advance.status,
    }


def serialize_invoice(invoice, today=None):
    return {
        'id': invoice.pk,
        'invoice_number': invoice.invoice_number,
        'client_id': invoice.client_id,
        'matter_id': invoice.matter_id,
        'issue_date': invoice.issue_date.isoformat(),
        'due_date': invoice.due_date.isoformat(),
        'currency': invoice.currency,
        'subtotal': _money(invoice.subtotal),
        'discount_amount': _money(invoice.discount_amount),
        'retainer_applied': _money(invoice.retainer_applied),
        'taxable_amount': _money(invoice.taxable_amount),
        'vat_rate': _money(invoice.vat_rate),
        'vat_amount': _money(invoice.vat_amount),
        'total': _money(invoice.total),
        'paid_amount': _money(invoice.paid_amount),
        'balance_due': _money(invoice.balance_due),
        'status': invoice.status,
        'effective_status': invoices.effective_status(invoice, today),
        'paid_date': invoice.paid_date.isoformat() if invoice.paid_date else None,
        'line_items': [
            {
                'item_type': item.item_type,
                'description': item.description,
                'quantity': _money(item.quantity),
                'unit': item.unit,
                'rate': _money(item.rate),
                'amount': _money(item.amount),
                'time_entry_id': item.time_entry_id,
                'expense_id': item.expense_id,
            }
            for item in invoice.line_items.all()
        ],
    }


def _revenue_dict(report):
    return {
        currency: {key: _money(value) for key, value in summary.items()}
        for currency, summary in report.as_dict().items()
    }


# ---------------------------------------------------------------- advances

@ledger_operation
def deposit_advance(firm, data):
    cleaned = _validated(DepositAdvanceForm, data)
    advance = advances.deposit(
        firm=firm,
        advance_type=cleaned['advance_type'],
        amount=cleaned['amount'],
        currency=cleaned['currency'],
        date_received=cleaned['date_received'],
        client=_lookup(Client, firm, cleaned.get('client_id'), 'client_id'),
        matter=_lookup(Matter, firm, cleaned.get('matter_id'), 'matter_id'),
        lawyer=_lookup(Lawyer, firm, cleaned.get('lawyer_id'), 'lawyer_id'),
        payment_method=cleaned.get('payment_method'),
        reference_number=cleaned.get('reference_number'),
        minimum_balance_alert=cleaned.get('minimum_balance_alert'),
        notes=cleaned.get('notes'),
    )
    return OperationResult.ok(id=advance.pk, advance=serialize_advance(advance))


@ledger_operation
def consume_advance(firm, advance_id, data):
    cleaned = _validated(AdvanceAmountForm, data)
    advance = advances.get_advance(firm, advance_id)
    result = advances.consume(advance, cleaned['amount'], memo=cleaned.get('memo') or '')
    return OperationResult.ok(id=advance.pk, new_balance=_money(result.new_balance),
                              status=result.advance.status)


@ledger_operation
def refund_advance(firm, advance_id, data):
    cleaned = _validated(AdvanceAmountForm, data)
    advance = advances.get_advance(firm, advance_id)
    advance = advances.refund(advance, cleaned['amount'], memo=cleaned.get('memo') or '')
    return OperationResult.ok(id=advance.pk, new_balance=_money(advance.balance_remaining),
                              status=advance.status)


@ledger_operation
def retainer_balance(firm, client_id):
    client = _lookup(Client, firm, client_id, 'client_id')
    if client is None:
        raise ValidationError('client_id is required', field='client_id')
    balances = advances.outstanding_balance(firm, client)
    return OperationResult.ok(
        id=client.pk,
        balances={currency: _money(money.amount) for currency, money in balances.items()},
    )


@ledger_operation
def record_expense(firm, data):
    cleaned = _validated(RecordExpenseForm, data)
    matter = _lookup(Matter, firm, cleaned['matter_id'], 'matter_id')
    expense, deductions = capture.record_expense(
        firm=firm,
        matter=matter,
        lawyer=_lookup(Lawyer, firm, cleaned.get('lawyer_id'), 'lawyer_id'),
        date=cleaned['date'],
        category=cleaned['category'],
        description=cleaned.get('description') or '',
        amount=cleaned['amount'],
        currency=cleaned.get('currency') or None,
        billable=cleaned['billable'] if 'billable' in (data or {}) else True,
        markup_percent=cleaned.get('markup_percent') or Decimal('0'),
        deduct_from_advances=cleaned.get('deduct_from_advances', False),
    )
    return OperationResult.ok(
        id=expense.pk,
        deductions=[{**d, 'amount': _money(d['amount']), 'new_balance': _money(d['new_balance'])}
                    for d in deductions],
    )


# ---------------------------------------------------------------- invoices

@ledger_operation
def compose_invoice(firm, data):
    cleaned = _validated(ComposeInvoiceForm, data)
    client = _lookup(Client, firm, cleaned['client_id'], 'client_id')
    invoice = invoices.compose_invoice(
        firm=firm,
        client=client,
        matter=_lookup(Matter, firm, cleaned.get('matter_id'), 'matter_id'),
        time_entry_ids=cleaned.get('time_entry_ids'),
        expense_ids=cleaned.get('expense_ids'),
        manual_items=cleaned.get('manual_items'),
        discount_type=cleaned.get('discount_type') or 'none',
        discount_value=cleaned.get('discount_value') or Decimal('0'),
        vat_rate=cleaned.get('vat_rate'),
        retainer_advance=_lookup(
            Advance, firm, cleaned.get('retainer_advance_id'), 'retainer_advance_id'),
        retainer_amount=cleaned.get('retainer_amount'),
        issue_date=cleaned.get('issue_date'),
        due_date=cleaned.get('due_date'),
        period_start=cleaned.get('period_start'),
        period_end=cleaned.get('period_end'),
        currency=cleaned.get('currency') or None,
        notes_to_client=cleaned.get('notes_to_client'),
        internal_notes=cleaned.get('internal_notes'),
        client_reference=cleaned.get('client_reference'),
    )
    return OperationResult.ok(id=invoice.pk, invoice=serialize_invoice(invoice))


@ledger_operation
def send_invoice(firm, invoice_id, data=None):
    cleaned = _validated(SendInvoiceForm, data)
    invoice = invoices.send_invoice(invoices.get_invoice(firm, invoice_id), cleaned.get('sent_date'))
    return OperationResult.ok(id=invoice.pk, status=invoice.status)


@ledger_operation
def record_payment(firm, invoice_id, data):
    cleaned = _validated(RecordPaymentForm, data)
    invoice = invoices.record_payment(
        invoices.get_invoice(firm, invoice_id),
        cleaned['amount'],
        cleaned['payment_date'],
        currency=cleaned.get('currency') or None,
        payment_method=cleaned.get('payment_method'),
        reference_number=cleaned.get('reference_number'),
        notes=cleaned.get('notes'),
    )
    return OperationResult.ok(
        id=invoice.pk,
        status=invoice.status,
        paid_amount=_money(invoice.paid_amount),
        paid_date=invoice.paid_date.isoformat() if invoice.paid_date else None,
    )


@ledger_operation
def void_invoice(firm, invoice_id, data):
    cleaned = _validated(VoidInvoiceForm, data)
    invoice = invoices.void_invoice(
        invoices.get_invoice(firm, invoice_id),
        cleaned['reason'],
        write_off=cleaned.get('write_off', False),
        allow_paid=cleaned.get('allow_paid', False),
    )
    return OperationResult.ok(id=invoice.pk, status=invoice.status)


# ---------------------------------------------------------------- reports

@ledger_operation
def revenue_for_period(firm, data):
    cleaned = _validated(RevenueQueryForm, data)
    report = revenue.revenue_for_period(
        firm,
        cleaned['start'],
        cleaned['end'],
        client=_lookup(Client, firm, cleaned.get('client_id'), 'client_id'),
        matter=_lookup(Matter, firm, cleaned.get('matter_id'), 'matter_id'),
    )
    return OperationResult.ok(
        start=cleaned['start'].isoformat(),
        end=cleaned['end'].isoformat(),
        revenue=_revenue_dict(report),
    )
