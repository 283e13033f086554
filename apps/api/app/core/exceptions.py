class ServiceError(Exception):
    """Base class for service-layer errors."""

    status_code: int = 400

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.code = code or "service_error"


class NotFoundError(ServiceError):
    status_code = 404

    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="not_found")


class ValidationError(ServiceError):
    def __init__(self, message: str = "Validation error"):
        super().__init__(message, code="validation_error")


class AuthenticationError(ServiceError):
    """Inbound billing event failed signature verification."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message, code="invalid_signature")


class ConflictError(ServiceError):
    status_code = 409

    def __init__(self, message: str = "Conflict"):
        super().__init__(message, code="conflict")


class QuotaExceededError(ServiceError):
    status_code = 402

    def __init__(self, message: str = "Monthly budget limit reached", *, limit: int | None = None, used: int | None = None):
        super().__init__(message, code="quota_exceeded")
        self.limit = limit
        self.used = used


class PersistenceError(ServiceError):
    status_code = 500

    def __init__(self, message: str = "Storage operation failed"):
        super().__init__(message, code="database_error")


class BillingProviderError(ServiceError):
    status_code = 502

    def __init__(self, message: str = "Billing provider request failed"):
        super().__init__(message, code="billing_provider_error")
