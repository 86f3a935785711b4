from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from ..config import configure_logging
from .middleware import RequestLoggingMiddleware
from .routes import router
from .store import BookingStore, StoreError

OPENAPI_TAGS = [
    {"name": "System", "description": "Operational endpoints."},
    {"name": "Auth", "description": "Token refresh."},
    {"name": "Bookings", "description": "Customer booking creation and history."},
    {"name": "Assignment", "description": "Provider availability, accept and reject."},
    {"name": "Completion", "description": "Two-party completion confirmation."},
    {"name": "Payments", "description": "Payment status, verification and earnings."},
]


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def create_app(store: BookingStore | None = None) -> FastAPI:
    app = FastAPI(title="Chorebook Booking Server", openapi_tags=OPENAPI_TAGS)
    app.state.store = store or BookingStore()
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(router)

    @app.exception_handler(StoreError)
    async def store_error(request: Request, exc: StoreError):
        return _error(exc.status_code, exc.message)

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return _error(422, "Invalid request body")

    @app.get("/health", tags=["System"])
    async def health():
        return {"status": "ok", "service": "chorebook-server"}

    return app


configure_logging()
app = create_app()
