"""Ledger settings with defaults, overridable from the Django settings module."""
from decimal import Decimal

from django.conf import settings


def _setting(name, default):
    return getattr(settings, name, default)


def default_currency():
    return _setting('LEDGER_DEFAULT_CURRENCY', 'USD')


def default_vat_rate():
    return Decimal(str(_setting('LEDGER_DEFAULT_VAT_RATE', '0')))


def payment_terms_days():
    return int(_setting('LEDGER_PAYMENT_TERMS_DAYS', 30))


def invoice_prefix():
    return _setting('LEDGER_INVOICE_PREFIX', 'INV')


def concurrency_retries():
    return max(1, int(_setting('LEDGER_CONCURRENCY_RETRIES', 3)))
