"""JSON API for the billing ledger, scoped to one firm per URL"""
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from django.shortcuts import get_object_or_404
import json

from .. import operations
from ..models import Firm
from ..services import invoices, revenue


STATUS_BY_ERROR = {
    'validation': 400,
    'not_found': 404,
    'concurrency_conflict': 409,
    'insufficient_balance': 422,
    'currency_mismatch': 422,
    'system': 500,
}


def _json_body(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (ValueError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _respond(result, created=False):
    if result.success:
        return JsonResponse(result.as_dict(), status=201 if created else 200)
    return JsonResponse(result.as_dict(), status=STATUS_BY_ERROR.get(result.error_type, 400))


def _bad_json():
    return JsonResponse({
        'success': False,
        'errors': [{'field': None, 'message': 'Request body must be a JSON object'}],
        'error_type': 'validation',
        'retryable': False,
    }, status=400)


def _run(request, firm_code, operation, *args, created=False):
    firm = get_object_or_404(Firm, code=firm_code)
    data = _json_body(request)
    if data is None:
        return _bad_json()
    return _respond(operation(firm, *args, data), created=created)


@csrf_exempt
@require_http_methods(["POST"])
def api_deposit_advance(request, firm_code):
    """Record a retainer, expense advance, lawyer advance or fee payment"""
    return _run(request, firm_code, operations.deposit_advance, created=True)


@csrf_exempt
@require_http_methods(["POST"])
def api_consume_advance(request, firm_code, advance_id):
    return _run(request, firm_code, operations.consume_advance, advance_id)


@csrf_exempt
@require_http_methods(["POST"])
def api_refund_advance(request, firm_code, advance_id):
    return _run(request, firm_code, operations.refund_advance, advance_id)


@require_http_methods(["GET"])
def api_retainer_balance(request, firm_code, client_id):
    """Outstanding retainer balance per currency for a client"""
    firm = get_object_or_404(Firm, code=firm_code)
    return _respond(operations.retainer_balance(firm, client_id))


@csrf_exempt
@require_http_methods(["POST"])
def api_record_expense(request, firm_code):
    return _run(request, firm_code, operations.record_expense, created=True)


@csrf_exempt
@require_http_methods(["POST"])
def api_compose_invoice(request, firm_code):
    """Build a draft invoice from unbilled work"""
    return _run(request, firm_code, operations.compose_invoice, created=True)


@require_http_methods(["GET"])
def api_invoice_detail(request, firm_code, invoice_id):
    firm = get_object_or_404(Firm, code=firm_code)
    invoice = get_object_or_404(firm.invoices.prefetch_related('line_items'), id=invoice_id)
    return JsonResponse({
        'success': True,
        'id': invoice.id,
        'data': {'invoice': operations.serialize_invoice(invoice)},
    })


@csrf_exempt
@require_http_methods(["POST"])
def api_send_invoice(request, firm_code, invoice_id):
    return _run(request, firm_code, operations.send_invoice, invoice_id)


@csrf_exempt
@require_http_methods(["POST"])
def api_record_payment(request, firm_code, invoice_id):
    return _run(request, firm_code, operations.record_payment, invoice_id)


@csrf_exempt
@require_http_methods(["POST"])
def api_void_invoice(request, firm_code, invoice_id):
    return _run(request, firm_code, operations.void_invoice, invoice_id)


@require_http_methods(["GET"])
def api_revenue(request, firm_code):
    """Revenue per currency for ?start=YYYY-MM-DD&end=YYYY-MM-DD"""
    firm = get_object_or_404(Firm, code=firm_code)
    return _respond(operations.revenue_for_period(firm, request.GET))


@require_http_methods(["GET"])
def api_dashboard(request, firm_code):
    """Headline figures: open and overdue invoices, outstanding and this month's revenue"""
    firm = get_object_or_404(Firm, code=firm_code)
    summary = revenue.dashboard_summary(firm)
    summary['outstanding'] = {currency: str(amount) for currency, amount in summary['outstanding'].items()}
    summary['this_month_revenue'] = {
        currency: {key: str(value) for key, value in figures.items()}
        for currency, figures in summary['this_month_revenue'].items()
    }
    open_invoices = firm.invoices.filter(status__in=invoices.OPEN_STATUSES).order_by('due_date')[:10]
    summary['upcoming'] = [
        {
            'id': invoice.id,
            'invoice_number': invoice.invoice_number,
            'due_date': invoice.due_date.isoformat(),
            'balance_due': str(invoice.balance_due),
            'currency': invoice.currency,
            'status': invoices.effective_status(invoice),
        }
        for invoice in open_invoices
    ]
    return JsonResponse({'success': True, 'data': summary})
