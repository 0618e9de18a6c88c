from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from config import domain_exceptions as domain

logger = logging.getLogger(__name__)

_DRF_STATUS: tuple[tuple[type[Exception], str], ...] = (
    (drf_exceptions.ValidationError, "validation_error"),
    (drf_exceptions.NotAuthenticated, "unauthorized"),
    (drf_exceptions.AuthenticationFailed, "unauthorized"),
    (drf_exceptions.PermissionDenied, "forbidden"),
    (drf_exceptions.NotFound, "not_found"),
    (drf_exceptions.MethodNotAllowed, "method_not_allowed"),
    (drf_exceptions.Throttled, "rate_limited"),
)

_DOMAIN_STATUS: tuple[tuple[type[domain.DomainError], str, int], ...] = (
    (domain.ValidationError, "validation_error", status.HTTP_400_BAD_REQUEST),
    (domain.NotFoundError, "not_found", status.HTTP_404_NOT_FOUND),
    (domain.ConflictError, "conflict", status.HTTP_409_CONFLICT),
)


def _error_response(*, error_status: str, message: str, http_status: int, **extra: Any) -> Response:
    error: dict[str, Any] = {"status": error_status, "message": message}
    error.update({key: value for key, value in extra.items() if value})
    return Response({"error": error}, status=http_status)


def _flatten_details(data: Any, prefix: str = "") -> dict[str, list[str]]:
    """Collapse nested serializer errors into dotted field paths."""
    if isinstance(data, Mapping):
        out: dict[str, list[str]] = {}
        for key, value in data.items():
            out.update(_flatten_details(value, f"{prefix}.{key}" if prefix else str(key)))
        return out
    if isinstance(data, list):
        if all(isinstance(item, str) for item in data):
            return {prefix or "non_field_errors": [str(item) for item in data]}
        out = {}
        for index, item in enumerate(data):
            out.update(_flatten_details(item, f"{prefix}.{index}" if prefix else str(index)))
        return out
    return {prefix or "non_field_errors": [str(data)]}


def _wrap_drf_error(exc: Exception, response: Response) -> Response:
    error_status = next((name for cls, name in _DRF_STATUS if isinstance(exc, cls)), None)
    if error_status is None:
        error_status = "server_error" if response.status_code >= 500 else "bad_request"

    if isinstance(exc, drf_exceptions.ValidationError):
        details = _flatten_details(response.data)
        if len(details) == 1:
            message = next(iter(details.values()))[0]
        else:
            message = "One or more fields failed validation."
        return _error_response(
            error_status=error_status, message=message, http_status=response.status_code, details=details
        )

    detail = response.data.get("detail") if isinstance(response.data, Mapping) else response.data
    return _error_response(
        error_status=error_status,
        message=str(detail) if detail else "Request failed.",
        http_status=response.status_code,
    )


def _gateway_response(exc: domain.GatewayError) -> Response:
    unavailable = exc.not_configured or exc.not_reachable
    logger.warning(
        "%s %s: %s",
        exc.gateway_name or "Gateway",
        "unavailable" if unavailable else "error",
        exc,
    )
    return _error_response(
        error_status="service_unavailable" if unavailable else "gateway_error",
        message=str(exc),
        http_status=status.HTTP_503_SERVICE_UNAVAILABLE if unavailable else status.HTTP_502_BAD_GATEWAY,
        gateway=exc.gateway_name,
        operation=exc.operation,
        error=getattr(exc, "error", None),
    )


def custom_exception_handler(exc: Exception, context):
    """
    Turn DRF and domain exceptions into the `{"error": {...}}` envelope.

    Use cases raise `config.domain_exceptions` subclasses (mission errors and
    AMR controller failures included) and views let them propagate here.
    """

    response = drf_exception_handler(exc, context)
    if response is not None:
        return _wrap_drf_error(exc, response)

    if isinstance(exc, domain.GatewayError):
        return _gateway_response(exc)

    for cls, error_status, http_status in _DOMAIN_STATUS:
        if isinstance(exc, cls):
            return _error_response(error_status=error_status, message=str(exc), http_status=http_status)

    if isinstance(exc, domain.DomainError):
        return _error_response(error_status="bad_request", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)

    view = context.get("view")
    logger.exception("Unhandled exception in %s", view.__class__.__name__ if view else "API view", exc_info=exc)
    return None
