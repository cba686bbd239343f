"""Routing error taxonomy.

Authentication and validation errors are raised by the callable adapter;
precondition errors are raised inside the engine. Both are converted to a
tagged ``RouteSignalResult`` at the boundary that raised them. Delivery
failures are not exceptions: the delivery client reports them as a
``DeliveryResult``. Anything else is an internal error: the caller only
ever sees a generic message.
"""

from __future__ import annotations

from crisisroute.models.routing import ErrorKind


class RoutingError(RuntimeError):
    """Base class for every error the routing engine raises."""

    kind: ErrorKind = ErrorKind.INTERNAL


class ValidationError(RoutingError):
    """Malformed routing input; rejected before any record is created."""

    kind = ErrorKind.VALIDATION


class AuthenticationRequiredError(RoutingError):
    """No authenticated principal was supplied by the caller."""

    kind = ErrorKind.UNAUTHENTICATED


class PreconditionError(RoutingError):
    """Child age unresolvable, no partner available, or payload rejected."""

    kind = ErrorKind.PRECONDITION


class InternalError(RoutingError):
    """Unexpected failure. Never surfaced with detail."""

    kind = ErrorKind.INTERNAL


class InvalidTransitionError(InternalError):
    """Raised when a requested routing status transition is not valid."""


class EncryptionError(InternalError):
    """Raised when a payload cannot be encrypted for a partner key."""


class ConfigurationError(RuntimeError):
    """Raised at startup when routing settings violate a hard constraint.

    Must not be caught and ignored; the process should exit.
    """
