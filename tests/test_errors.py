"""Unit tests for errors.py - the error taxonomy."""

import pytest

from errors import (
    ApiError,
    ConflictError,
    ControllerError,
    NotFoundError,
    ReconcileErrors,
    UnsupportedMediaTypeError,
    error_message,
    normalize_errors,
)
from kube import ApiResponse


class TestApiError:
    """Tests for ApiError and its subclasses."""

    @pytest.mark.parametrize(
        "status_code,error_cls",
        [
            (404, NotFoundError),
            (409, ConflictError),
            (415, UnsupportedMediaTypeError),
            (500, ApiError),
            (422, ApiError),
        ],
    )
    def test_from_response(self, status_code, error_cls):
        err = ApiError.from_response(ApiResponse(status_code, {"message": "x"}))
        assert type(err) is error_cls
        assert err.status_code == status_code
        assert isinstance(err, ControllerError)

    def test_message_from_body(self):
        err = ApiError(403, {"message": "forbidden", "code": 403})
        assert str(err) == "403: forbidden"

    def test_message_without_body(self):
        assert str(ApiError(503)) == "Request failed with status 503"

    def test_message_from_text_body(self):
        assert str(ApiError(500, "upstream down")) == "500: upstream down"

    def test_explicit_message(self):
        err = NotFoundError(message="key 'a' not found")
        assert err.status_code == 404
        assert err.message == "key 'a' not found"

    def test_to_dict(self):
        err = ConflictError(body={"reason": "Conflict"})
        assert err.to_dict() == {"statusCode": 409, "body": {"reason": "Conflict"}}


class TestErrorMessage:
    def test_exception(self):
        assert error_message(ControllerError("bad manifest")) == "bad manifest"

    def test_plain_exception(self):
        assert error_message(KeyError("spec")) == "'spec'"

    def test_exception_without_text(self):
        assert error_message(RuntimeError()) == "RuntimeError"

    def test_mapping_is_json(self):
        assert error_message({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'

    def test_string_passthrough(self):
        assert error_message("plain") == "plain"


class TestNormalizeErrors:
    """Tests for flattening errors into log messages."""

    def test_single(self):
        assert normalize_errors(ApiError(500, {"message": "boom"})) == ["500: boom"]

    def test_reconcile_errors(self):
        err = ReconcileErrors([ControllerError("one"), "two"])
        assert normalize_errors(err) == ["one", "two"]
        assert "2 errors" in str(err)

    def test_exception_group(self):
        group = ExceptionGroup("children", [ValueError("a"), ControllerError("b")])
        assert normalize_errors(group) == ["a", "b"]

    def test_list(self):
        assert normalize_errors(["x", {"k": "v"}]) == ["x", '{"k": "v"}']
