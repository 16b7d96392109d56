from .schemas import ErrorResponse
from .errors import error_response, http_exception_handler, unhandled_exception_handler
from .request_context import REQUEST_ID_HEADER, RequestIDMiddleware

__all__ = [
    "ErrorResponse",
    "error_response",
    "http_exception_handler",
    "unhandled_exception_handler",
    "REQUEST_ID_HEADER",
    "RequestIDMiddleware",
]
