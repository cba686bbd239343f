"""Thin callable adapter: ``route(raw_input, principal)``.

Hosts (an RPC handler, a queue consumer, the CLI) pass the raw request
mapping and whatever principal their auth layer produced. Authentication
and input validation are checked here, before any routing record exists;
everything else is delegated to the orchestrator.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import pydantic

from crisisroute.core.errors import AuthenticationRequiredError, ValidationError
from crisisroute.core.orchestrator import RoutingOrchestrator
from crisisroute.models.routing import (
    AuthenticatedPrincipal,
    RouteSignalInput,
    RouteSignalResult,
)

logger = logging.getLogger(__name__)


def _describe(exc: pydantic.ValidationError) -> str:
    fields = sorted({".".join(str(p) for p in err["loc"]) or "input" for err in exc.errors()})
    return "Invalid routing input: " + ", ".join(fields)


def _authenticate(
    principal: AuthenticatedPrincipal | Mapping[str, Any] | None,
) -> AuthenticatedPrincipal:
    if principal is None:
        raise AuthenticationRequiredError("Authentication required")
    if isinstance(principal, AuthenticatedPrincipal):
        return principal
    try:
        return AuthenticatedPrincipal.model_validate(principal)
    except pydantic.ValidationError as exc:
        raise AuthenticationRequiredError("Authentication required") from exc


def _parse(raw_input: Mapping[str, Any] | RouteSignalInput) -> RouteSignalInput:
    if isinstance(raw_input, RouteSignalInput):
        return raw_input
    try:
        return RouteSignalInput.model_validate(raw_input)
    except pydantic.ValidationError as exc:
        logger.info("Rejected routing request: %d validation error(s)", exc.error_count())
        raise ValidationError(_describe(exc)) from exc


def route(
    raw_input: Mapping[str, Any] | RouteSignalInput,
    principal: AuthenticatedPrincipal | Mapping[str, Any] | None,
    *,
    orchestrator: RoutingOrchestrator,
) -> RouteSignalResult:
    """Validate *raw_input* and route the signal it describes.

    Parameters
    ----------
    raw_input:
        ``{"signalId", "childId", "triggeredAt", "deviceType", "jurisdiction"?}``
        or an already-built ``RouteSignalInput``.
    principal:
        The authenticated caller, or ``None`` when the request is anonymous.
    orchestrator:
        The assembled routing engine.
    """
    try:
        principal = _authenticate(principal)
        request = _parse(raw_input)
    except (AuthenticationRequiredError, ValidationError) as exc:
        return RouteSignalResult(success=False, error=str(exc), error_kind=exc.kind)

    return orchestrator.route(request, principal)
