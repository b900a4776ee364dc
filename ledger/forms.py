from decimal import Decimal

from django import forms
from django.core.exceptions import ValidationError

from .models import Advance, Invoice, Payment


class IdListField(forms.Field):
    """Custom field for a list of integer ids (JSON array or comma separated)"""

    def to_python(self, value):
        if value in self.empty_values:
            return None
        if isinstance(value, str):
            value = [part for part in value.split(',') if part.strip()]
        if not isinstance(value, (list, tuple)):
            raise ValidationError('Enter a list of ids.', code='invalid')
        try:
            return [int(item) for item in value]
        except (TypeError, ValueError):
            raise ValidationError('Ids must be whole numbers.', code='invalid')


class CurrencyField(forms.CharField):
    """Three-letter currency code, upper-cased"""

    def __init__(self, *args, **kwargs):
        kwargs.setdefault('min_length', 3)
        kwargs.setdefault('max_length', 3)
        super().__init__(*args, **kwargs)

    def to_python(self, value):
        value = super().to_python(value)
        return value.upper() if value else value


class DepositAdvanceForm(forms.Form):
    advance_type = forms.ChoiceField(choices=Advance.TYPE_CHOICES)
    client_id = forms.IntegerField(required=False)
    matter_id = forms.IntegerField(required=False)
    lawyer_id = forms.IntegerField(required=False)
    amount = forms.DecimalField(max_digits=14, decimal_places=2)
    currency = CurrencyField()
    date_received = forms.DateField()
    payment_method = forms.ChoiceField(choices=Advance.PAYMENT_METHOD_CHOICES, required=False)
    reference_number = forms.CharField(max_length=100, required=False)
    minimum_balance_alert = forms.DecimalField(max_digits=14, decimal_places=2, required=False, min_value=0)
    notes = forms.CharField(required=False)

    def clean_amount(self):
        amount = self.cleaned_data['amount']
        if amount <= 0:
            raise ValidationError('Amount must be greater than zero.')
        return amount

    def clean(self):
        cleaned = super().clean()
        advance_type = cleaned.get('advance_type')
        if advance_type == 'lawyer_advance':
            if not cleaned.get('lawyer_id'):
                self.add_error('lawyer_id', 'A lawyer advance needs a lawyer.')
        elif advance_type and not cleaned.get('client_id'):
            self.add_error('client_id', 'This advance type needs a client.')
        return cleaned


class AdvanceAmountForm(forms.Form):
    """Consume or refund part of an advance"""
    amount = forms.DecimalField(max_digits=14, decimal_places=2)
    memo = forms.CharField(max_length=255, required=False)

    def clean_amount(self):
        amount = self.cleaned_data['amount']
        if amount <= 0:
            raise ValidationError('Amount must be greater than zero.')
        return amount


class RecordExpenseForm(forms.Form):
    matter_id = forms.IntegerField()
    lawyer_id = forms.IntegerField(required=False)
    date = forms.DateField()
    category = forms.CharField(max_length=100)
    description = forms.CharField(max_length=1000, required=False)
    amount = forms.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal('0.01'))
    currency = CurrencyField(required=False)
    billable = forms.BooleanField(required=False, initial=True)
    markup_percent = forms.DecimalField(max_digits=6, decimal_places=2, required=False, min_value=0)
    deduct_from_advances = forms.BooleanField(required=False)


class ComposeInvoiceForm(forms.Form):
    client_id = forms.IntegerField()
    matter_id = forms.IntegerField(required=False)
    time_entry_ids = IdListField(required=False)
    expense_ids = IdListField(required=False)
    manual_items = forms.JSONField(required=False)
    discount_type = forms.ChoiceField(choices=Invoice.DISCOUNT_TYPE_CHOICES, required=False)
    discount_value = forms.DecimalField(max_digits=14, decimal_places=2, required=False, min_value=0)
    vat_rate = forms.DecimalField(max_digits=6, decimal_places=3, required=False, min_value=0)
    retainer_advance_id = forms.IntegerField(required=False)
    retainer_amount = forms.DecimalField(max_digits=14, decimal_places=2, required=False, min_value=0)
    issue_date = forms.DateField(required=False)
    due_date = forms.DateField(required=False)
    period_start = forms.DateField(required=False)
    period_end = forms.DateField(required=False)
    currency = CurrencyField(required=False)
    notes_to_client = forms.CharField(required=False)
    internal_notes = forms.CharField(required=False)
    client_reference = forms.CharField(max_length=100, required=False)

    def clean_manual_items(self):
        items = self.cleaned_data.get('manual_items')
        if items in (None, ''):
            return []
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise ValidationError('Manual items must be a list of objects.')
        return items

    def clean(self):
        cleaned = super().clean()
        if cleaned.get('retainer_amount') is not None and not cleaned.get('retainer_advance_id'):
            self.add_error('retainer_advance_id', 'Name the retainer to apply.')
        issue_date, due_date = cleaned.get('issue_date'), cleaned.get('due_date')
        if issue_date and due_date and due_date < issue_date:
            self.add_error('due_date', 'Due date cannot be before the issue date.')
        return cleaned


class RecordPaymentForm(forms.Form):
    amount = forms.DecimalField(max_digits=14, decimal_places=2)
    payment_date = forms.DateField()
    currency = CurrencyField(required=False)
    payment_method = forms.ChoiceField(choices=Payment.PAYMENT_METHOD_CHOICES, required=False)
    reference_number = forms.CharField(max_length=100, required=False)
    notes = forms.CharField(required=False)

    def clean_amount(self):
        amount = self.cleaned_data['amount']
        if amount <= 0:
            raise ValidationError('Amount must be greater than zero.')
        return amount


class SendInvoiceForm(forms.Form):
    sent_date = forms.DateField(required=False)


class VoidInvoiceForm(forms.Form):
    reason = forms.CharField(max_length=1000)
    write_off = forms.BooleanField(required=False)
    allow_paid = forms.BooleanField(required=False)


class RevenueQueryForm(forms.Form):
    start = forms.DateField()
    end = forms.DateField()
    client_id = forms.IntegerField(required=False)
    matter_id = forms.IntegerField(required=False)

    def clean(self):
        cleaned = super().clean()
        start, end = cleaned.get('start'), cleaned.get('end')
        if start and end and end < start:
            self.add_error('end', 'End date cannot be before the start date.')
        return cleaned
