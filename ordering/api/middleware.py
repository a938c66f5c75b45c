"""
Request validation errors and error-to-response translation.
"""
import logging

from ariadne import format_error
from django.http import JsonResponse
from graphql import GraphQLError

logger = logging.getLogger(__name__)


class RequestValidationError(GraphQLError):
    """Malformed or incomplete request input."""
    def __init__(self, message: str, code: str = "VALIDATION_ERROR", details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message, extensions={"code": code, "details": self.details})


def format_graphql_error(error: GraphQLError, debug: bool = False) -> dict:
    """
    Format a GraphQL error and make sure it carries an ``extensions.code``.

    Errors without an explicit code come either from query validation and
    input coercion (``VALIDATION_ERROR``) or from a failing resolver, whose
    message is replaced so internals never reach the client.
    """
    formatted = format_error(error, debug)
    extensions = formatted.setdefault("extensions", {})
    if "code" in extensions:
        return formatted

    original = error.original_error
    if original is None or isinstance(original, (ValueError, TypeError)):
        extensions["code"] = "VALIDATION_ERROR"
    else:
        logger.error(
            "unexpected_error",
            extra={"error": f"{type(original).__name__}: {original}"},
            exc_info=(type(original), original, original.__traceback__),
        )
        formatted["message"] = "An internal error occurred"
        extensions["code"] = "INTERNAL_ERROR"
    return formatted


class ErrorHandler:
    """Error handler for transport-level failures outside GraphQL execution."""

    ERROR_CODES = {
        "VALIDATION_ERROR": 400,
        "DUPLICATE_REQUEST": 409,
        "INTERNAL_ERROR": 500,
    }

    @classmethod
    def error_response(cls, code: str, message: str, details: dict | None = None) -> JsonResponse:
        return JsonResponse(
            {
                "error": {
                    "code": code,
                    "message": message,
                    "details": details or {},
                }
            },
            status=cls.ERROR_CODES.get(code, 400),
        )

    @classmethod
    def handle_error(cls, error: Exception) -> JsonResponse:
        """Handle error and return JSON response."""
        if isinstance(error, RequestValidationError):
            return cls.error_response(error.code, error.message, error.details)

        logger.error(
            "unexpected_error",
            extra={"error": f"{type(error).__name__}: {error}"},
            exc_info=True,
        )
        return cls.error_response("INTERNAL_ERROR", "An internal error occurred")
