"""
Error taxonomy for the reconciliation engine.

API failures carry the HTTP status code and response body of the call that
failed. The dispatcher turns every error into one or more status log
messages via normalize_errors().
"""

import json
from typing import Any, List, Optional


class ControllerError(Exception):
    """Base class for all controller errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ControllerError):
    """Raised when a watch event cannot be recognized."""


class ApiError(ControllerError):
    """Raised when the resource API answers with an unexpected status."""

    status_code: Optional[int] = None

    def __init__(self, status_code: int, body: Any = None, message: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(message or _describe(status_code, body))

    @classmethod
    def from_response(cls, response: Any) -> "ApiError":
        """
        Build the most specific ApiError for a response.

        Args:
            response: Object with status_code and body attributes.

        Returns:
            ConflictError, NotFoundError, UnsupportedMediaTypeError or ApiError.
        """
        error_cls = _BY_STATUS.get(response.status_code, ApiError)
        return error_cls(response.status_code, response.body)

    def to_dict(self):
        return {"statusCode": self.status_code, "body": self.body}


class NotFoundError(ApiError):
    """404 - the resource or a dependency is gone."""

    def __init__(self, status_code: int = 404, body: Any = None, message: str = ""):
        super().__init__(status_code, body, message)


class ConflictError(ApiError):
    """409 - stale resourceVersion or concurrent creation."""

    def __init__(self, status_code: int = 409, body: Any = None, message: str = ""):
        super().__init__(status_code, body, message)


class UnsupportedMediaTypeError(ApiError):
    """415 - the server does not accept the patch type."""

    def __init__(self, status_code: int = 415, body: Any = None, message: str = ""):
        super().__init__(status_code, body, message)


class ReconcileErrors(ControllerError):
    """Several independent failures raised together by a hook."""

    def __init__(self, errors: List[Any]):
        self.errors = list(errors)
        super().__init__(f"{len(self.errors)} errors occurred during reconcile")


_BY_STATUS = {
    404: NotFoundError,
    409: ConflictError,
    415: UnsupportedMediaTypeError,
}


def _describe(status_code: int, body: Any) -> str:
    if isinstance(body, dict) and body.get("message"):
        return f"{status_code}: {body['message']}"
    if body is None or body == "":
        return f"Request failed with status {status_code}"
    return f"{status_code}: {body}"


def error_message(err: Any) -> Any:
    """
    Return the loggable message for a single error value.

    Exceptions give their message, plain mappings are JSON encoded and
    anything else is returned as is.
    """
    if isinstance(err, BaseException):
        return getattr(err, "message", None) or str(err) or type(err).__name__
    if isinstance(err, (dict, list)):
        try:
            return json.dumps(err, sort_keys=True, default=str)
        except (TypeError, ValueError):
            return str(err)
    return err


def normalize_errors(err: Any) -> List[Any]:
    """Flatten an error (or group of errors) into a list of messages."""
    if isinstance(err, ReconcileErrors):
        errors = err.errors
    elif isinstance(err, BaseExceptionGroup):
        errors = list(err.exceptions)
    elif isinstance(err, (list, tuple)):
        errors = list(err)
    else:
        errors = [err]
    return [error_message(e) for e in errors]
