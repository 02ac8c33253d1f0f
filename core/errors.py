"""
Domain error taxonomy.

Services raise these; a single FastAPI handler renders them the same way
``HTTPException`` is rendered (``{"detail": ...}``), so routes never need to
translate them one by one.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class AppError(Exception):
    status_code: int = 400
    default_detail: str = "Request failed"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(AppError):
    status_code = 400
    default_detail = "Invalid input"


class PriceMismatch(ValidationError):
    def __init__(self, product_id: int, name: str, declared, expected):
        self.product_id = product_id
        super().__init__(f"Price for {name} has changed: expected {expected}, got {declared}")


class ProductNotFound(AppError):
    status_code = 404

    def __init__(self, product_id: int, name: str | None = None):
        self.product_id = product_id
        super().__init__(f"Product not found: {name or product_id}")


class InsufficientStock(AppError):
    status_code = 409

    def __init__(self, product_id: int, name: str):
        self.product_id = product_id
        super().__init__(f"Insufficient stock for {name}")


class InvalidSignature(AppError):
    status_code = 400
    default_detail = "Invalid webhook signature"


class PersistenceFailure(AppError):
    status_code = 500
    default_detail = "Storage failure"


class NotFound(AppError):
    status_code = 404
    default_detail = "Not found"


class Forbidden(AppError):
    status_code = 403
    default_detail = "Not allowed"


class AlreadyConfirmed(AppError):
    status_code = 400
    default_detail = "Order already marked delivered"


class InvalidToken(AppError):
    status_code = 403
    default_detail = "Invalid token"


class OrderingDisabled(AppError):
    status_code = 403
    default_detail = "Ordering is disabled"


class PaymentGatewayError(AppError):
    status_code = 502
    default_detail = "Unable to initialize payment"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error_handler(request: Request, exc: AppError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
