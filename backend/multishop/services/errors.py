"""
Domain errors raised by the service layer.

Routes translate these into HTTP responses; services never build
HTTPException themselves.
"""


class ServiceError(Exception):
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(ServiceError, ValueError):
    pass


class NotFoundError(ServiceError, LookupError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ServiceError, RuntimeError):
    pass


class AuthenticationError(ServiceError):
    status_code = 401
    default_message = "Invalid credentials"


class PermissionDeniedError(ServiceError):
    status_code = 403
    default_message = "Access denied"


# --- Order placement ---

class InvalidCustomerError(ValidationError):
    default_message = "Invalid customer"


class ProductNotFoundError(ValidationError):
    """A product of another tenant is reported exactly like a missing one."""

    def __init__(self, product_id):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class ProductUnavailableError(ValidationError):
    def __init__(self, product_name: str):
        super().__init__(f"Product {product_name} is not available")
        self.product_name = product_name


class InsufficientInventoryError(ValidationError):
    def __init__(self, product_name: str, available: int):
        super().__init__(f"Insufficient inventory for {product_name}. Available: {available}")
        self.product_name = product_name
        self.available = available


# --- Order lifecycle ---

class OrderNotFoundError(NotFoundError):
    default_message = "Order not found"


class OrderNotCancellableError(ConflictError):
    default_message = "Order cannot be cancelled"


class InvalidStatusTransitionError(ConflictError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot change order status from {current} to {target}")
        self.current = current
        self.target = target


# --- Uniqueness / references ---

class DuplicateError(ConflictError):
    pass
