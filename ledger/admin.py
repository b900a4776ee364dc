from django.contrib import admin
from .models import (
    Firm, Client, Lawyer, Matter, TimeEntry, Expense,
    Advance, AdvanceMovement, Invoice, InvoiceLineItem, Payment
)


@admin.register(Firm)
class FirmAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'default_currency', 'created_at']
    search_fields = ['code', 'name']
    readonly_fields = ['created_at']


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = ['client_number', 'name', 'firm', 'is_active', 'created_date']
    list_filter = ['firm', 'is_active', 'created_date']
    search_fields = ['client_number', 'name']
    readonly_fields = ['created_date']


@admin.register(Lawyer)
class LawyerAdmin(admin.ModelAdmin):
    list_display = ['employee_id', 'full_name', 'firm', 'hourly_rate', 'hourly_rate_currency', 'is_active']
    list_filter = ['firm', 'is_active']
    search_fields = ['employee_id', 'first_name', 'last_name']
    readonly_fields = ['full_name']


@admin.register(Matter)
class MatterAdmin(admin.ModelAdmin):
    list_display = ['matter_number', 'title', 'client', 'status', 'fee_arrangement', 'currency', 'opened_date']
    list_filter = ['status', 'fee_arrangement', 'currency', 'is_active']
    search_fields = ['matter_number', 'title', 'client__name']


@admin.register(TimeEntry)
class TimeEntryAdmin(admin.ModelAdmin):
    list_display = ['date', 'lawyer', 'matter', 'minutes', 'rate', 'currency', 'total_amount', 'status']
    list_filter = ['status', 'billable', 'date', 'lawyer']
    search_fields = ['narrative', 'matter__matter_number', 'lawyer__last_name']
    readonly_fields = ['total_amount', 'status', 'invoice', 'created_at', 'updated_at']


@admin.register(Expense)
class ExpenseAdmin(admin.ModelAdmin):
    list_display = ['date', 'category', 'matter', 'lawyer', 'amount', 'currency', 'billable', 'status']
    list_filter = ['status', 'billable', 'category', 'date']
    search_fields = ['description', 'matter__matter_number']
    readonly_fields = ['status', 'invoice', 'advance', 'created_at']


class AdvanceMovementInline(admin.TabularInline):
    model = AdvanceMovement
    extra = 0
    can_delete = False
    readonly_fields = ['firm', 'kind', 'amount', 'balance_after', 'invoice', 'expense', 'memo', 'created_at']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Advance)
class AdvanceAdmin(admin.ModelAdmin):
    list_display = ['id', 'advance_type', 'client', 'lawyer', 'amount', 'balance_remaining', 'currency', 'status', 'date_received']
    list_filter = ['advance_type', 'status', 'currency', 'date_received']
    search_fields = ['client__name', 'lawyer__last_name', 'reference_number']
    # balances only move through the advance ledger service
    readonly_fields = ['amount', 'balance_remaining', 'status', 'version', 'created_at', 'updated_at']
    inlines = [AdvanceMovementInline]

    def has_add_permission(self, request):
        return False


class InvoiceLineItemInline(admin.TabularInline):
    model = InvoiceLineItem
    extra = 0
    can_delete = False
    readonly_fields = ['firm', 'item_type', 'item_date', 'description', 'quantity', 'unit', 'rate', 'amount']

    def has_add_permission(self, request, obj=None):
        return False


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    can_delete = False
    readonly_fields = ['payment_date', 'amount', 'payment_method', 'reference_number']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ['invoice_number', 'client', 'matter', 'issue_date', 'due_date', 'total', 'paid_amount', 'currency', 'status']
    list_filter = ['status', 'currency', 'issue_date', 'due_date']
    search_fields = ['invoice_number', 'client__name', 'matter__matter_number']
    readonly_fields = [
        'invoice_number', 'subtotal', 'discount_amount', 'retainer_advance', 'retainer_applied',
        'taxable_amount', 'vat_rate', 'vat_amount', 'total', 'currency', 'status', 'paid_amount',
        'sent_date', 'paid_date', 'void_reason', 'voided_at', 'created_at', 'updated_at',
    ]
    inlines = [InvoiceLineItemInline, PaymentInline]

    def has_add_permission(self, request):
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ['payment_date', 'invoice', 'client', 'amount', 'payment_method', 'reference_number']
    list_filter = ['payment_method', 'payment_date']
    search_fields = ['invoice__invoice_number', 'client__name', 'reference_number']
    readonly_fields = ['invoice', 'client', 'amount', 'payment_date']
