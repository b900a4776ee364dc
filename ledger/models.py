from django.db import models
from django.core.validators import MinValueValidator
from decimal import Decimal

from .exceptions import BalanceMutationError
from .money import Money


MONEY_FIELD = dict(max_digits=14, decimal_places=2)


class Firm(models.Model):
    """Tenant; every ledger row belongs to exactly one firm"""
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=200)
    default_currency = models.CharField(max_length=3, default='USD')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.code} - {self.name}"


class Client(models.Model):
    """Law firm client (owned by client management, read-only here)"""
    firm = models.ForeignKey(Firm, on_delete=models.PROTECT, related_name='clients')
    client_number = models.CharField(max_length=20)
    name = models.CharField(max_length=200)
    is_active = models.BooleanField(default=True)
    created_date = models.DateField(auto_now_add=True)

    class Meta:
        ordering = ['name']
        unique_together = ['firm', 'client_number']

    def __str__(self):
        return f"{self.client_number} - {self.name}"


class Lawyer(models.Model):
    """Fee earners whose time is billed"""
    firm = models.ForeignKey(Firm, on_delete=models.PROTECT, related_name='lawyers')
    employee_id = models.CharField(max_length=20)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    hourly_rate = models.DecimalField(**MONEY_FIELD, validators=[MinValueValidator(Decimal('0.00'))])
    hourly_rate_currency = models.CharField(max_length=3, default='USD')
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['last_name', 'first_name']
        unique_together = ['firm', 'employee_id']

    def __str__(self):
        return self.full_name

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"


class Matter(models.Model):
    """Legal matters/cases"""
    STATUS_CHOICES = [
        ('open', 'Open'),
        ('pending', 'Pending'),
        ('closed', 'Closed'),
        ('on_hold', 'On Hold'),
    ]

    FEE_ARRANGEMENT_CHOICES = [
        ('hourly', 'Hourly'),
        ('flat_fee', 'Flat Fee'),
        ('contingency', 'Contingency'),
        ('retainer', 'Retainer'),
    ]

    firm = models.ForeignKey(Firm, on_delete=models.PROTECT, related_name='matters')
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name='matters')
    matter_number = models.CharField(max_length=30)
    title = models.CharField(max_length=200)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='open')
    fee_arrangement = models.CharField(max_length=20, choices=FEE_ARRANGEMENT_CHOICES, default='hourly')
    currency = models.CharField(max_length=3, default='USD')
    custom_hourly_rate = models.DecimalField(**MONEY_FIELD, null=True, blank=True)
    is_active = models.BooleanField(default=True)
    opened_date = models.DateField(null=True, blank=True)

    class Meta:
        ordering = ['-opened_date', 'matter_number']
        unique_together = ['firm', 'matter_number']

    def __str__(self):
        return f"{self.matter_number} - {self.title}"


class TimeEntry(models.Model):
    """Captured time; billed at most once"""
    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('invoiced', 'Invoiced'),
    ]

    firm = models.ForeignKey(Firm, on_delete=models.PROTECT, related_name='time_entries')
    lawyer = models.ForeignKey(Lawyer, on_delete=models.PROTECT, related_name='time_entries')
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name='time_entries')
    matter = models.ForeignKey(Matter, on_delete=models.PROTECT, related_name='time_entries')
    date = models.DateField()
    minutes = models.DecimalField(max_digits=10, decimal_places=4, validators=[MinValueValidator(Decimal('0'))])
    narrative = models.TextField()
    billable = models.BooleanField(default=True)
    rate = models.DecimalField(**MONEY_FIELD, validators=[MinValueValidator(Decimal('0.00'))])
    currency = models.CharField(max_length=3)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    invoice = models.ForeignKey('Invoice', on_delete=models.PROTECT, null=True, blank=True, related_name='time_entries')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['date', 'id']
        verbose_name_plural = 'time entries'

    def __str__(self):
        return f"{self.lawyer} - {self.matter} - {self.date}"

    @property
    def hours(self):
        return self.minutes / Decimal('60')

    @property
    def total_amount(self):
        return Money(self.rate * self.minutes / Decimal('60'), self.currency).rounded()


class Expense(models.Model):
    """Disbursements related to matters"""
    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('invoiced', 'Invoiced'),
    ]

    firm = models.ForeignKey(Firm, on_delete=models.PROTECT, related_name='expenses')
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name='expenses')
    matter = models.ForeignKey(Matter, on_delete=models.PROTECT, related_name='expenses')
    lawyer = models.ForeignKey(Lawyer, on_delete=models.PROTECT, null=True, blank=True, related_name='expenses')
    date = models.DateField()
    category = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    amount = models.DecimalField(**MONEY_FIELD, validators=[MinValueValidator(Decimal('0.01'))])
    currency = models.CharField(max_length=3)
    billable = models.BooleanField(default=True)
    markup_percent = models.DecimalField(max_digits=6, decimal_places=2, default=Decimal('0.00'),
                                         validators=[MinValueValidator(Decimal('0.00'))])
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    invoice = models.ForeignKey('Invoice', on_delete=models.PROTECT, null=True, blank=True, related_name='expenses')
    advance = models.ForeignKey('Advance', on_delete=models.PROTECT, null=True, blank=True, related_name='expenses')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['date', 'id']

    def __str__(self):
        return f"{self.category} - {self.matter} - {self.currency} {self.amount}"

    @property
    def billed_amount(self):
        factor = Decimal('1') + self.markup_percent / Decimal('100')
        return Money(self.amount * factor, self.currency).rounded()


class AdvanceQuerySet(models.QuerySet):
    def update(self, **kwargs):
        if 'balance_remaining' in kwargs:
            raise BalanceMutationError('balance_remaining can only change through the advances ledger')
        return super().update(**kwargs)


class Advance(models.Model):
    """Deposit held for a client or lawyer"""
    TYPE_CHOICES = [
        ('client_retainer', 'Client Retainer'),
        ('client_expense_advance', 'Client Expense Advance'),
        ('lawyer_advance', 'Lawyer Advance'),
        ('fee_payment_fixed', 'Fee Payment - Fixed'),
        ('fee_payment_consultation', 'Fee Payment - Consultation'),
        ('fee_payment_success', 'Fee Payment - Success'),
        ('fee_payment_milestone', 'Fee Payment - Milestone'),
        ('fee_payment_other', 'Fee Payment - Other'),
    ]

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('depleted', 'Depleted'),
        ('refunded', 'Refunded'),
    ]

    PAYMENT_METHOD_CHOICES = [
        ('bank_transfer', 'Bank Transfer'),
        ('check', 'Check'),
        ('cash', 'Cash'),
        ('credit_card', 'Credit Card'),
    ]

    firm = models.ForeignKey(Firm, on_delete=models.PROTECT, related_name='advances')
    advance_type = models.CharField(max_length=30, choices=TYPE_CHOICES)
    client = models.ForeignKey(Client, on_delete=models.PROTECT, null=True, blank=True, related_name='advances')
    matter = models.ForeignKey(Matter, on_delete=models.PROTECT, null=True, blank=True, related_name='advances')
    lawyer = models.ForeignKey(Lawyer, on_delete=models.PROTECT, null=True, blank=True, related_name='advances')
    amount = models.DecimalField(**MONEY_FIELD, validators=[MinValueValidator(Decimal('0.01'))])
    currency = models.CharField(max_length=3)
    date_received = models.DateField()
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES, default='bank_transfer')
    reference_number = models.CharField(max_length=100, blank=True)
    balance_remaining = models.DecimalField(**MONEY_FIELD)
    minimum_balance_alert = models.DecimalField(**MONEY_FIELD, null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    notes = models.TextField(blank=True)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = AdvanceQuerySet.as_manager()

    class Meta:
        ordering = ['-date_received', '-id']

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._sealed_balance = self.__dict__.get('balance_remaining')

    def __str__(self):
        return f"{self.get_advance_type_display()} - {self.currency} {self.amount}"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._sealed_balance = instance.__dict__.get('balance_remaining')
        return instance

    def refresh_from_db(self, *args, **kwargs):
        super().refresh_from_db(*args, **kwargs)
        self._sealed_balance = self.__dict__.get('balance_remaining')

    def save(self, *args, **kwargs):
        if self._state.adding:
            if self.balance_remaining is None:
                self.balance_remaining = self.amount
            if Decimal(self.balance_remaining) != Decimal(self.amount):
                raise BalanceMutationError('a new advance must start with its full amount available')
        elif self.balance_remaining != self._sealed_balance:
            raise BalanceMutationError('balance_remaining can only change through the advances ledger')
        super().save(*args, **kwargs)
        self._sealed_balance = self.balance_remaining

    def _apply_balance(self, new_balance, status):
        # only ledger.services.advances calls this, with the row locked
        if new_balance < 0 or new_balance > self.amount:
            raise BalanceMutationError(f'balance {new_balance} outside [0, {self.amount}]')
        self.balance_remaining = new_balance
        self._sealed_balance = new_balance
        self.status = status
        self.version += 1
        self.save(update_fields=['balance_remaining', 'status', 'version', 'updated_at'])

    @property
    def balance(self):
        return Money(self.balance_remaining, self.currency)

    @property
    def is_fee_payment(self):
        return self.advance_type.startswith('fee_payment_')

    @property
    def is_low_balance(self):
        if self.minimum_balance_alert is None or self.status != 'active':
            return False
        return self.balance_remaining <= self.minimum_balance_alert


class AdvanceMovement(models.Model):
    """Append-only journal of every change to an advance balance"""
    KIND_CHOICES = [
        ('deposit', 'Deposit'),
        ('consume', 'Consume'),
        ('refund', 'Refund'),
        ('release', 'Release'),
    ]

    firm = models.ForeignKey(Firm, on_delete=models.PROTECT, related_name='advance_movements')
    advance = models.ForeignKey(Advance, on_delete=models.PROTECT, related_name='movements')
    kind = models.CharField(max_length=10, choices=KIND_CHOICES)
    amount = models.DecimalField(**MONEY_FIELD)
    balance_after = models.DecimalField(**MONEY_FIELD)
    invoice = models.ForeignKey('Invoice', on_delete=models.PROTECT, null=True, blank=True, related_name='advance_movements')
    expense = models.ForeignKey(Expense, on_delete=models.PROTECT, null=True, blank=True, related_name='advance_movements')
    memo = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at', 'id']

    def __str__(self):
        return f"{self.kind} {self.amount} on advance {self.advance_id}"


class Invoice(models.Model):
    """Client invoices"""
    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('sent', 'Sent'),
        ('partial', 'Partially Paid'),
        ('paid', 'Paid'),
        ('overdue', 'Overdue'),
        ('cancelled', 'Cancelled'),
        ('written_off', 'Written Off'),
    ]

    DISCOUNT_TYPE_CHOICES = [
        ('none', 'None'),
        ('percent', 'Percent'),
        ('fixed', 'Fixed'),
    ]

    firm = models.ForeignKey(Firm, on_delete=models.PROTECT, related_name='invoices')
    invoice_number = models.CharField(max_length=30)
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name='invoices')
    matter = models.ForeignKey(Matter, on_delete=models.PROTECT, null=True, blank=True, related_name='invoices')
    period_start = models.DateField(null=True, blank=True)
    period_end = models.DateField(null=True, blank=True)
    issue_date = models.DateField()
    due_date = models.DateField()
    subtotal = models.DecimalField(**MONEY_FIELD, default=Decimal('0.00'))
    discount_type = models.CharField(max_length=10, choices=DISCOUNT_TYPE_CHOICES, default='none')
    discount_value = models.DecimalField(**MONEY_FIELD, default=Decimal('0.00'))
    discount_amount = models.DecimalField(**MONEY_FIELD, default=Decimal('0.00'))
    retainer_advance = models.ForeignKey(Advance, on_delete=models.PROTECT, null=True, blank=True, related_name='invoices')
    retainer_applied = models.DecimalField(**MONEY_FIELD, default=Decimal('0.00'))
    taxable_amount = models.DecimalField(**MONEY_FIELD, default=Decimal('0.00'))
    vat_rate = models.DecimalField(max_digits=6, decimal_places=3, default=Decimal('0.000'))
    vat_amount = models.DecimalField(**MONEY_FIELD, default=Decimal('0.00'))
    total = models.DecimalField(**MONEY_FIELD, default=Decimal('0.00'))
    currency = models.CharField(max_length=3)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    paid_amount = models.DecimalField(**MONEY_FIELD, default=Decimal('0.00'))
    sent_date = models.DateField(null=True, blank=True)
    paid_date = models.DateField(null=True, blank=True)
    notes_to_client = models.TextField(blank=True)
    internal_notes = models.TextField(blank=True)
    client_reference = models.CharField(max_length=100, blank=True)
    void_reason = models.TextField(blank=True)
    voided_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-issue_date', '-id']
        unique_together = ['firm', 'invoice_number']

    def __str__(self):
        return f"{self.invoice_number} - {self.client}"

    @property
    def balance_due(self):
        return self.total - self.paid_amount

    @property
    def total_money(self):
        return Money(self.total, self.currency)

    @property
    def is_void(self):
        return self.status in ('cancelled', 'written_off')


class InvoiceLineItem(models.Model):
    """Line items on invoices"""
    ITEM_TYPE_CHOICES = [
        ('time', 'Time Entry'),
        ('expense', 'Expense'),
        ('manual', 'Manual'),
    ]

    firm = models.ForeignKey(Firm, on_delete=models.PROTECT, related_name='invoice_line_items')
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='line_items')
    item_type = models.CharField(max_length=20, choices=ITEM_TYPE_CHOICES)
    item_date = models.DateField(null=True, blank=True)
    time_entry = models.ForeignKey(TimeEntry, on_delete=models.PROTECT, null=True, blank=True, related_name='invoice_items')
    expense = models.ForeignKey(Expense, on_delete=models.PROTECT, null=True, blank=True, related_name='invoice_items')
    description = models.TextField()
    quantity = models.DecimalField(max_digits=12, decimal_places=4)
    unit = models.CharField(max_length=20)
    rate = models.DecimalField(**MONEY_FIELD)
    amount = models.DecimalField(**MONEY_FIELD)
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['sort_order', 'id']

    def __str__(self):
        return f"{self.invoice} - {self.description}"


class Payment(models.Model):
    """Payments journaled against invoices"""
    PAYMENT_METHOD_CHOICES = [
        ('check', 'Check'),
        ('wire', 'Wire Transfer'),
        ('credit_card', 'Credit Card'),
        ('ach', 'ACH'),
        ('cash', 'Cash'),
    ]

    firm = models.ForeignKey(Firm, on_delete=models.PROTECT, related_name='payments')
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name='payments')
    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name='payments')
    payment_date = models.DateField()
    amount = models.DecimalField(**MONEY_FIELD, validators=[MinValueValidator(Decimal('0.01'))])
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES, default='wire')
    reference_number = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-payment_date', '-id']

    def __str__(self):
        return f"{self.client} - {self.amount} - {self.payment_date}"
