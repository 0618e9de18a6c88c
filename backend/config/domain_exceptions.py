from __future__ import annotations


class DomainError(Exception):
    """
    Base class for predictable errors raised by use cases.

    Views never catch these; `config.exception_handler` turns them into
    the API error envelope.
    """


class ValidationError(DomainError):
    """Malformed request rejected at a use-case boundary."""


class NotFoundError(DomainError):
    pass


class ConflictError(DomainError):
    """The request is well-formed but collides with current persisted state."""


class GatewayError(DomainError):
    """
    Base exception for failures talking to an external system.

    `gateway_name` identifies the system in API error bodies; `operation`
    optionally names the remote call that failed. Unconfigured or unreachable
    gateways answer 503, anything else the remote side did answers 502.
    """

    gateway_name: str | None = None
    operation: str | None = None
    not_configured: bool = False
    not_reachable: bool = False
