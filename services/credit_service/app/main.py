from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from loguru import logger

from shared import RequestIDMiddleware, error_response, http_exception_handler, unhandled_exception_handler
from shared.errors import request_id_of

from .errors import CreditError, RedemptionNotYetAvailable, OtpCooldown
from .routes import register_routes
from .startup import setup_instrumentation, setup_logging, init_service_startup, shutdown_instrumentation


async def credit_error_handler(request: Request, exc: CreditError) -> JSONResponse:
    context = exc.to_context()
    headers = None
    if isinstance(exc, RedemptionNotYetAvailable):
        headers = {"Retry-After": str(context["retry_after_seconds"])}
    elif isinstance(exc, OtpCooldown):
        headers = {"Retry-After": str(context["wait_seconds"])}
    if exc.status_code >= 500:
        logger.error(f"credit.error code={exc.code} path={request.url.path} context={context}")
    return error_response(
        exc.status_code,
        error=exc.code,
        detail=exc.message,
        request_id=request_id_of(request),
        context=context,
        headers=headers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_service_startup(app)
    yield
    await shutdown_instrumentation(app)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="Credit Service", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestIDMiddleware)
    app.add_exception_handler(CreditError, credit_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    setup_instrumentation(app)
    register_routes(app)
    return app
