"""Adversarial tests — misbehaving or hostile partner endpoints.

A partner webhook is outside our control. Whatever it answers, routing must
end in a terminal record with a bounded number of attempts, and a success
must only be reported when the partner explicitly confirmed receipt.
"""

from __future__ import annotations

import httpx
import pytest

from crisisroute.core.orchestrator import GENERIC_FAILURE_MESSAGE
from crisisroute.models.routing import ErrorKind, RoutingStatus


class TestAmbiguousSuccessIsNotSuccess:
    """2xx responses without an explicit boolean ``received`` are retried."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"json": {"received": "true"}},
            {"json": {"received": 1}},
            {"json": [{"received": True}]},
            {"json": {"ok": True}},
            {"content": b"<html>Thanks!</html>"},
            {"content": b""},
        ],
    )
    def test_never_reported_as_delivered(
        self, orchestrator, make_request, principal, webhook, kwargs
    ):
        webhook.respond(200, **kwargs)
        result = orchestrator.route(make_request(), principal)
        assert result.success is False
        assert result.error_kind is ErrorKind.DELIVERY
        assert len(webhook.posts) == 3
        record = orchestrator.store.get_record(result.routing_id)
        assert record.status is RoutingStatus.FAILED
        assert record.last_error.startswith("Max retries exceeded")
        assert orchestrator.store.get_blackout("child-1", "signal-001") is None


class TestRedirectsAndOddStatuses:
    def test_redirect_is_not_followed(self, orchestrator, make_request, principal, webhook):
        webhook.respond(302, headers={"Location": "https://attacker.example.net/"})
        result = orchestrator.route(make_request(), principal)
        assert result.error_kind is ErrorKind.DELIVERY
        assert result.error == "Partner rejected: HTTP 302"
        assert [str(r.url.host) for r in webhook.requests] == ["ca-crisis-line.example.org"]

    @pytest.mark.parametrize("status", [401, 403, 404, 409, 429])
    def test_client_errors_are_not_retried(
        self, orchestrator, make_request, principal, webhook, status
    ):
        webhook.respond(status)
        result = orchestrator.route(make_request(), principal)
        assert result.error == f"Partner rejected: HTTP {status}"
        assert len(webhook.posts) == 1


class TestTransportFailures:
    def test_connection_drops_are_bounded(
        self, orchestrator, make_request, principal, webhook, sleeps
    ):
        webhook.fail_with(httpx.RemoteProtocolError("peer closed connection"))
        result = orchestrator.route(make_request(), principal)
        assert result.error_kind is ErrorKind.DELIVERY
        assert result.error == "Max retries exceeded: Network error: RemoteProtocolError"
        assert len(webhook.requests) == 3
        assert len(sleeps) == 2

    def test_slow_partner_times_out_then_recovers(
        self, orchestrator, make_request, principal, webhook
    ):
        webhook.fail_with(httpx.ReadTimeout("too slow")).respond(200)
        result = orchestrator.route(make_request(), principal)
        assert result.success is True
        assert orchestrator.store.get_record(result.routing_id).attempts == 2

    def test_unexpected_transport_error_is_internal(
        self, orchestrator, make_request, principal, webhook
    ):
        webhook.fail_with(RuntimeError("transport exploded"))
        result = orchestrator.route(make_request(), principal)
        assert result.error_kind is ErrorKind.INTERNAL
        assert result.error == GENERIC_FAILURE_MESSAGE
        assert orchestrator.store.get_record(result.routing_id).status is RoutingStatus.FAILED


class TestRejectionText:
    def test_rejection_error_is_stringified(
        self, orchestrator, make_request, principal, webhook
    ):
        webhook.respond(200, {"received": False, "error": {"code": "KEY_ROTATED"}})
        result = orchestrator.route(make_request(), principal)
        assert result.error_kind is ErrorKind.DELIVERY
        assert "KEY_ROTATED" in result.error
        assert len(webhook.posts) == 1

    def test_numeric_reference_is_kept_as_text(
        self, orchestrator, make_request, principal, webhook
    ):
        webhook.respond(200, {"received": True, "reference": 90210})
        result = orchestrator.route(make_request(), principal)
        assert orchestrator.store.get_record(result.routing_id).partner_reference == "90210"
