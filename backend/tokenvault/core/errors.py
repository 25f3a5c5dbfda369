"""Centralized JSON (RFC 7807) error handling for token errors in a Flask host."""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from flask import Flask, Response, has_request_context, jsonify, request

from tokenvault.core.logger import ensure_request_id
from tokenvault.services._shared.errors import (
    AlreadyHasChildError,
    ConfigurationError,
    ExpiredTokenError,
    InfrastructureError,
    InvalidTokenError,
    LogicError,
    OperationTimeoutError,
    RefreshLimitError,
    ReservedFieldError,
    SignatureError,
    TokenError,
    TokenMismatchError,
    ValidationError,
)

log = logging.getLogger(__name__)

# Most specific class first; the first match wins.
_STATUS_MAP: tuple[tuple[type[TokenError], int, str, str], ...] = (
    (ReservedFieldError, 422, "reserved_field", "Field name is reserved"),
    (ValidationError, 422, "validation_error", "Validation failed"),
    (ExpiredTokenError, 401, "token_expired", "Token expired"),
    (SignatureError, 401, "invalid_token", "Invalid token"),
    (InvalidTokenError, 401, "invalid_token", "Invalid token"),
    (TokenMismatchError, 401, "token_mismatch", "Token mismatch"),
    (RefreshLimitError, 403, "refresh_limit_reached", "Refresh not allowed"),
    (AlreadyHasChildError, 409, "already_has_child", "Token already has a child"),
    (ConfigurationError, 500, "configuration_error", "Service misconfigured"),
    (OperationTimeoutError, 504, "store_timeout", "Token store timed out"),
    (InfrastructureError, 503, "service_unavailable", "Service temporarily unavailable"),
)

def classify(err: TokenError) -> tuple[int, str, str]:
    """
    Map a token error to ``(status, code, client message)``.

    Client messages are generic: they never reveal whether a token never
    existed, expired or was revoked.
    """
    for cls, status, code, message in _STATUS_MAP:
        if isinstance(err, cls):
            return status, code, message
    if isinstance(err, LogicError):
        return 400, "bad_request", "Bad request"
    return 500, "internal_server_error", "Unexpected error"


def _as_problem(*, status: int, code: str, message: str) -> dict[str, Any]:
    """
    Build an RFC 7807 Problem Details dict.

    :param status: HTTP status code.
    :param code: Stable machine-consumable error code.
    :param message: Human-readable error summary (safe for clients).
    :returns: Problem+JSON dictionary.
    :rtype: dict
    """
    return {
        "type": "about:blank",
        "title": HTTPStatus(status).phrase,
        "status": status,
        "detail": message,
        "instance": request.path if has_request_context() else None,
        "code": code,
        "request_id": ensure_request_id(),
    }


def _problem_response(problem: dict[str, Any]) -> Response:
    """Return a Flask response with ``application/problem+json`` media type."""
    resp = jsonify(problem)
    resp.mimetype = "application/problem+json"
    return resp


def init_app(app: Flask) -> None:
    """
    Attach JSON error handlers for :class:`TokenError` to the Flask app.

    Notes
    -----
    - Logic errors become 4xx and are logged as warnings without traceback.
    - Infrastructure errors become 503/504 and are logged with ``exc_info``.
    """

    @app.errorhandler(TokenError)
    def handle_token_error(err: TokenError):
        status, code, message = classify(err)
        problem = _as_problem(status=status, code=code, message=message)
        if status >= 500:
            log.error(
                "TokenError: code=%s status=%s request_id=%s",
                code,
                status,
                problem["request_id"],
                exc_info=err,
            )
        else:
            log.warning(
                "TokenError: code=%s status=%s msg=%s request_id=%s",
                code,
                status,
                err,
                problem["request_id"],
            )
        return _problem_response(problem), status


__all__ = ["classify", "init_app"]
