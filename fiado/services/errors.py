from __future__ import annotations


class ServiceError(ValueError):
    """Erro de regra de negócio; as rotas traduzem para HTTP."""

    status_code = 400
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class NotFoundError(ServiceError):
    status_code = 404
    default_code = "NOT_FOUND"


class ValidationError(ServiceError):
    status_code = 400
    default_code = "VALIDATION_ERROR"


class InvariantViolation(RuntimeError):
    """Estado que a validação deveria ter impedido. Indica bug: não tratar, deixar dar rollback."""

    def __init__(self, message: str, *, sale_id: int | None = None):
        super().__init__(message)
        self.sale_id = sale_id


# códigos usados pelas rotas/front
AMOUNT_EXCEEDS = "AMOUNT_EXCEEDS"
INVALID_AMOUNT = "INVALID_AMOUNT"
NO_RECEIVABLES = "NO_RECEIVABLES"
INVALID_STATUS = "INVALID_STATUS"
SALE_CANCELLED = "SALE_CANCELLED"
SALE_COMPLETED = "SALE_COMPLETED"
ALREADY_CANCELLED = "ALREADY_CANCELLED"
CLIENT_REQUIRED = "CLIENT_REQUIRED"
PLAN_EXISTS = "PLAN_EXISTS"
INVALID_PAYMENT_DAY = "INVALID_PAYMENT_DAY"
