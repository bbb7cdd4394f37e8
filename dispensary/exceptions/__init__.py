"""Custom exceptions for the dispensary cart core."""


def _fmt_qty(value):
    return f"{int(value)}" if value % 1 == 0 else f"{value:.2f}".rstrip('0').rstrip('.')


class DispensaryError(Exception):
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

class BusinessLogicError(DispensaryError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)

class NotFoundError(DispensaryError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)

class OutOfStockError(BusinessLogicError):
    """Raised when zero units are available. Never clamped."""
    def __init__(self, product_name):
        super().__init__(f"{product_name} is out of stock", status_code=409,
                         payload={'product_name': product_name})

class InsufficientStockError(BusinessLogicError):
    """Raised when more units are requested than are available."""
    def __init__(self, product_name, required, available):
        message = f"Only {_fmt_qty(available)} of {product_name} available ({_fmt_qty(required)} requested)"
        super().__init__(message, status_code=409, payload={
            'product_name': product_name,
            'required': required,
            'available': available,
        })
        self.required = required
        self.available = available

class RemoteReadError(DispensaryError):
    """Raised by backend adapters when the remote store cannot be read."""
    def __init__(self, message="Remote store unavailable", payload=None):
        super().__init__(message, 503, payload)

class PricingConfigurationError(DispensaryError):
    """Raised when a product's bulk price schedule is malformed."""
    def __init__(self, message, payload=None):
        super().__init__(message, 500, payload)
