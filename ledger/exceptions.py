"""Business-rule errors raised by the ledger services.

Every error carries a list of ``{field, message}`` dicts so the operation
boundary can hand them to callers unchanged.
"""


class LedgerError(Exception):
    """Base class for user-facing ledger failures."""
    error_type = 'ledger'
    retryable = False

    def __init__(self, message, field=None, errors=None):
        super().__init__(message)
        self.message = message
        if errors:
            self.errors = list(errors)
        else:
            self.errors = [{'field': field, 'message': message}]

    @property
    def field(self):
        return self.errors[0]['field'] if self.errors else None


class ValidationError(LedgerError):
    """Bad input shape or value; user-correctable."""
    error_type = 'validation'

    @classmethod
    def from_form(cls, form):
        errors = []
        for field, messages in form.errors.items():
            for message in messages:
                errors.append({
                    'field': None if field == '__all__' else field,
                    'message': message,
                })
        return cls('Invalid input', errors=errors)


class InsufficientBalanceError(LedgerError):
    """An advance does not cover the requested consumption or refund."""
    error_type = 'insufficient_balance'

    def __init__(self, advance_id, requested, available, field='amount'):
        self.advance_id = advance_id
        self.requested = requested
        self.available = available
        super().__init__(
            f'Advance {advance_id} has {available} available, {requested} requested',
            field=field,
        )


class CurrencyMismatchError(LedgerError):
    """Arithmetic or aggregation across incompatible currencies."""
    error_type = 'currency_mismatch'

    def __init__(self, currencies, field='currency'):
        self.currencies = sorted(set(currencies))
        super().__init__(
            f'Amounts span more than one currency: {", ".join(self.currencies)}',
            field=field,
        )


class NotFoundError(LedgerError):
    """A referenced id does not resolve within the firm."""
    error_type = 'not_found'

    def __init__(self, entity, entity_id, field=None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f'{entity} {entity_id} not found', field=field)


class ConcurrencyConflictError(LedgerError):
    """Another writer won the race and the retry budget is exhausted."""
    error_type = 'concurrency_conflict'
    retryable = True


class BalanceMutationError(RuntimeError):
    """Raised when code outside the advances ledger touches a balance."""
