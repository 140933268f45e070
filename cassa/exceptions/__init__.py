"""Custom exceptions for the Cassa POS engine."""


class CassaError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(CassaError):
    """Raised when an input is rejected locally (no external call, no mutation)."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class BusinessLogicError(CassaError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(CassaError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InvalidTransitionError(BusinessLogicError):
    """Raised when an order status change is not allowed by the lifecycle."""
    def __init__(self, current_status, target_status):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f'Transizione non consentita: {_status_name(current_status)} -> {_status_name(target_status)}',
            status_code=409,
        )


class FrozenOrderLimitError(BusinessLogicError):
    """Raised when freezing would exceed the number of frozen orders allowed."""
    def __init__(self, limit):
        self.limit = limit
        super().__init__(
            f'Limite ordini congelati raggiunto ({limit}). Chiudi almeno un ordine congelato.',
            status_code=409,
        )


class PromotionSyntaxError(BusinessLogicError):
    """Raised when a promotion rule cannot be parsed."""
    def __init__(self, rule_text, reason):
        self.rule_text = rule_text
        super().__init__(f'Regola promozione non valida ({reason}): {rule_text!r}')


class InsufficientStockError(BusinessLogicError):
    """Raised when an operation fails due to lack of stock."""
    def __init__(self, product_id, required, available):
        self.product_id = product_id
        self.required = required
        self.available = available
        message = f"Stock insufficiente per prodotto {product_id}: richiesti {required}, disponibili {available}"
        super().__init__(message, status_code=409)


class CollaboratorCallFailure(CassaError):
    """Raised when an external store call does not succeed."""
    def __init__(self, operation, message=None):
        self.operation = operation
        super().__init__(message or f'Chiamata {operation} fallita', 502, {'operation': operation})


class CompensationFailure(CassaError):
    """
    Raised when rolling back a failed workflow did not fully succeed.

    Carries the error that started the rollback and every rollback failure,
    so the operator can reconcile by hand.
    """
    def __init__(self, original, failures):
        self.original = original
        self.failures = list(failures)
        super().__init__(
            f'Operazione fallita e ripristino incompleto ({len(self.failures)} errori): {original}',
            500,
            {'failed_compensations': [str(f) for f in self.failures]},
        )


def _status_name(status):
    return getattr(status, 'name', status)
