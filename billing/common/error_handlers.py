from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from billing.core.exceptions import BillingError
from billing.logger_config import logger


def error_body(message, status_code, error):
    return {
        "success": False,
        "message": message,
        "status_code": status_code,
        "error": error,
    }


def register_error_handlers(app: FastAPI):
    @app.exception_handler(BillingError)
    async def handle_billing_error(request: Request, e: BillingError):
        logger.warning(f"{request.method} {request.url.path} refused ({e.error}): {e.message}")
        return JSONResponse(
            status_code=e.status_code,
            content=error_body(e.message, e.status_code, e.error),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, e: RequestValidationError):
        body = error_body("Invalid request", 422, "request_validation_error")
        body["details"] = jsonable_encoder(e.errors())
        return JSONResponse(status_code=422, content=body)

    @app.exception_handler(Exception)
    async def handle_exception(request: Request, e: Exception):
        # Log the exception with traceback
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}")

        # Handle all other exceptions (coding, DB errors, etc.)
        body = error_body("Internal Server Error", 500, "internal_error")
        body["details"] = str(e)
        return JSONResponse(status_code=500, content=body)
