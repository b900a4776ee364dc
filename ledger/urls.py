from django.urls import path
from .views import ledger_api

urlpatterns = [
    path('firms/<slug:firm_code>/', ledger_api.api_dashboard, name='dashboard'),

    # Advances
    path('firms/<slug:firm_code>/advances/', ledger_api.api_deposit_advance, name='api_deposit_advance'),
    path('firms/<slug:firm_code>/advances/<int:advance_id>/consume/', ledger_api.api_consume_advance, name='api_consume_advance'),
    path('firms/<slug:firm_code>/advances/<int:advance_id>/refund/', ledger_api.api_refund_advance, name='api_refund_advance'),
    path('firms/<slug:firm_code>/clients/<int:client_id>/retainer-balance/', ledger_api.api_retainer_balance, name='api_retainer_balance'),

    # Expenses
    path('firms/<slug:firm_code>/expenses/', ledger_api.api_record_expense, name='api_record_expense'),

    # Invoices
    path('firms/<slug:firm_code>/invoices/', ledger_api.api_compose_invoice, name='api_compose_invoice'),
    path('firms/<slug:firm_code>/invoices/<int:invoice_id>/', ledger_api.api_invoice_detail, name='api_invoice_detail'),
    path('firms/<slug:firm_code>/invoices/<int:invoice_id>/send/', ledger_api.api_send_invoice, name='api_send_invoice'),
    path('firms/<slug:firm_code>/invoices/<int:invoice_id>/payments/', ledger_api.api_record_payment, name='api_record_payment'),
    path('firms/<slug:firm_code>/invoices/<int:invoice_id>/void/', ledger_api.api_void_invoice, name='api_void_invoice'),

    # Reports
    path('firms/<slug:firm_code>/revenue/', ledger_api.api_revenue, name='api_revenue'),
]
