"""Routing orchestrator — the central coordinator for one signal routing.

The RoutingOrchestrator wires together the routing store, state machine,
child-context provider, partner selector, payload builder, encryption,
delivery client, blackout manager and audit sink into a single workflow:

    create record (pending) -> child context -> select partner
    -> build + validate payload -> encrypting -> encrypt -> sending
    -> deliver -> sent + blackout | failed -> audit -> result

Expected failures come back as a tagged ``RouteSignalResult``; nothing the
caller sees ever carries internal detail.
"""

from __future__ import annotations

import logging
import traceback
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import httpx
import pydantic

from crisisroute.bridge.audit_sink import (
    ACTION_ACKNOWLEDGED,
    ACTION_DELIVERY_FAILED,
    ACTION_PRECONDITION_FAILED,
    ACTION_ROUTED,
    ACTION_ROUTING_FAILED,
    ACTION_STALE_RECONCILED,
    AuditSink,
    LedgerAuditSink,
    record_audit_event,
)
from crisisroute.bridge.delivery import DeliveryClient
from crisisroute.bridge.encryption import encrypt_payload_for_partner
from crisisroute.config import RoutingSettings
from crisisroute.core.audit_ledger import AuditLedger
from crisisroute.core.blackout import BlackoutManager
from crisisroute.core.collaborators import ChildContextProvider, ChildContextUnavailable
from crisisroute.core.errors import (
    AuthenticationRequiredError,
    InvalidTransitionError,
    PreconditionError,
    RoutingError,
)
from crisisroute.core.guard import enforce_routing_constraints
from crisisroute.core.payload import build_external_payload, validate_payload_exclusions
from crisisroute.core.selector import select_partner
from crisisroute.core.state_machine import RoutingStateMachine
from crisisroute.core.store import RecordNotFoundError, RoutingStore, SqliteRoutingStore
from crisisroute.models.base import utcnow
from crisisroute.models.routing import (
    AuthenticatedPrincipal,
    ErrorKind,
    RouteSignalInput,
    RouteSignalResult,
    RoutingRecord,
    RoutingStatus,
)

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Signal routing failed"
STALE_RECORD_ERROR = "Routing deadline exceeded"

_NON_TERMINAL = [RoutingStatus.PENDING, RoutingStatus.ENCRYPTING, RoutingStatus.SENDING]


def new_routing_id() -> str:
    """Fresh, unguessable routing id."""
    return f"routing_{uuid.uuid4().hex}"


class RoutingOrchestrator:
    """Routes triggered signals to external crisis partners.

    Every collaborator is injected; the orchestrator never reads module-level
    settings. Use :meth:`from_settings` to assemble the default SQLite-backed
    engine.

    Parameters
    ----------
    store:
        Isolated routing store (records, blackouts, partners, registry).
    children:
        Source of the child's age and custody status.
    delivery:
        Webhook delivery client.
    settings:
        Routing settings (default jurisdiction, dedupe, stale threshold).
    audit_sink:
        Optional append-only admin audit destination.
    blackouts:
        Blackout manager. Built over *store* when omitted.
    clock:
        Returns the current UTC time.
    encrypt:
        Payload encryption function, ``encrypt_payload_for_partner`` by default.
    """

    def __init__(
        self,
        store: RoutingStore,
        children: ChildContextProvider,
        delivery: DeliveryClient,
        settings: RoutingSettings,
        *,
        audit_sink: AuditSink | None = None,
        blackouts: BlackoutManager | None = None,
        clock: Callable[[], datetime] = utcnow,
        encrypt: Callable = encrypt_payload_for_partner,
    ) -> None:
        self.store = store
        self.children = children
        self.delivery = delivery
        self.settings = settings
        self.audit_sink = audit_sink
        self.blackouts = blackouts or BlackoutManager(store, clock=clock)
        self.state_machine = RoutingStateMachine(store)
        self._clock = clock
        self._encrypt = encrypt

    @classmethod
    def from_settings(
        cls,
        settings: RoutingSettings,
        children: ChildContextProvider,
        *,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> RoutingOrchestrator:
        """Assemble the SQLite-backed engine after running the startup guard."""
        enforce_routing_constraints(settings)
        store = SqliteRoutingStore(settings.routing_db_path)
        delivery_kwargs: dict[str, Any] = {"http_client": http_client, "clock": clock}
        if sleep is not None:
            delivery_kwargs["sleep"] = sleep
        return cls(
            store,
            children,
            DeliveryClient(settings, **delivery_kwargs),
            settings,
            audit_sink=LedgerAuditSink(AuditLedger(settings.audit_db_path)),
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route(
        self,
        request: RouteSignalInput,
        principal: AuthenticatedPrincipal | None,
    ) -> RouteSignalResult:
        """Route one signal end to end. Never raises.

        Returns
        -------
        RouteSignalResult
            ``success=True`` with the routing id and partner when delivery
            was confirmed; otherwise ``success=False`` with an error kind.
        """
        if principal is None:
            exc = AuthenticationRequiredError("Authentication required")
            return RouteSignalResult(success=False, error=str(exc), error_kind=exc.kind)

        routing_id = new_routing_id()
        try:
            record = self.state_machine.create(
                RoutingRecord(
                    id=routing_id,
                    signal_id=request.signal_id,
                    jurisdiction=request.jurisdiction or self.settings.default_jurisdiction,
                    started_at=self._clock(),
                )
            )
            logger.info("Routing %s started", routing_id)
            return self._run(record, request)
        except RoutingError as exc:
            if exc.kind is ErrorKind.INTERNAL:
                return self._internal_failure(routing_id, exc)
            return self._expected_failure(routing_id, exc)
        except Exception as exc:
            return self._internal_failure(routing_id, exc)

    def _run(self, record: RoutingRecord, request: RouteSignalInput) -> RouteSignalResult:
        child_age = self._child_age(request.child_id)
        shared_custody = self._shared_custody(request.child_id)

        selection = select_partner(
            record.jurisdiction,
            self.store.get_registry(),
            self.store.list_partners(),
            now=self._clock(),
        )
        partner = selection.partner

        if self.settings.deduplicate_deliveries and self.store.find_records(
            signal_id=record.signal_id,
            partner_id=partner.partner_id,
            statuses=[RoutingStatus.SENT],
            limit=1,
        ):
            raise PreconditionError("Signal already delivered to this partner")

        try:
            payload = build_external_payload(
                signal_id=request.signal_id,
                child_age=child_age,
                has_shared_custody=shared_custody,
                signal_timestamp=request.triggered_at,
                jurisdiction=record.jurisdiction,
                device_platform=request.device_type,
            )
        except pydantic.ValidationError as exc:
            raise PreconditionError("Could not build partner payload") from exc

        exclusions = validate_payload_exclusions(payload)
        if not exclusions.valid:
            raise PreconditionError(
                "Payload contains forbidden fields: "
                + ", ".join(exclusions.forbidden_fields_found)
            )

        record = self.state_machine.transition(
            record,
            RoutingStatus.ENCRYPTING,
            partner_id=partner.partner_id,
            used_fallback=selection.used_fallback,
        )
        package = self._encrypt(payload, partner)
        record = self.state_machine.transition(record, RoutingStatus.SENDING)

        outcome = self.delivery.deliver(package, partner, record.id)

        if not outcome.success:
            record = self.state_machine.fail(
                record,
                outcome.error or "Delivery failed",
                attempts=outcome.attempts,
                response_time_ms=outcome.response_time_ms,
            )
            record_audit_event(
                self.audit_sink,
                ACTION_DELIVERY_FAILED,
                record.id,
                {
                    "partnerId": partner.partner_id,
                    "usedFallback": selection.used_fallback,
                    "attempts": outcome.attempts,
                    "statusCode": outcome.status_code,
                    "error": outcome.error,
                },
            )
            logger.warning(
                "Routing %s failed after %d attempt(s)", record.id, outcome.attempts
            )
            return RouteSignalResult(
                success=False,
                routing_id=record.id,
                partner_id=partner.partner_id,
                used_fallback=selection.used_fallback,
                error=outcome.error or "Delivery failed",
                error_kind=ErrorKind.DELIVERY,
            )

        record = self.state_machine.transition(
            record,
            RoutingStatus.SENT,
            sent_at=self._clock(),
            attempts=outcome.attempts,
            partner_reference=outcome.reference,
            response_time_ms=outcome.response_time_ms,
        )
        self._open_blackout(record, request.child_id)
        record_audit_event(
            self.audit_sink,
            ACTION_ROUTED,
            record.id,
            {
                "partnerId": partner.partner_id,
                "usedFallback": selection.used_fallback,
                "jurisdiction": record.jurisdiction,
                "attempts": outcome.attempts,
                "responseTimeMs": outcome.response_time_ms,
            },
        )
        logger.info(
            "Routing %s sent to %s (fallback=%s)",
            record.id,
            partner.partner_id,
            selection.used_fallback,
        )
        return RouteSignalResult(
            success=True,
            routing_id=record.id,
            partner_id=partner.partner_id,
            used_fallback=selection.used_fallback,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _child_age(self, child_id: str) -> int:
        try:
            age = self.children.get_child_age(child_id)
        except ChildContextUnavailable as exc:
            raise PreconditionError("Could not determine child age") from exc
        if age is None:
            raise PreconditionError("Could not determine child age")
        return age

    def _shared_custody(self, child_id: str) -> bool:
        try:
            return self.children.has_shared_custody(child_id)
        except ChildContextUnavailable:
            logger.warning("Custody lookup unavailable; assuming no shared custody")
            return False

    def _open_blackout(self, record: RoutingRecord, child_id: str) -> None:
        # The signal is already with the partner, so a blackout failure is
        # reported to the admin trail but does not change the outcome.
        try:
            self.blackouts.start_blackout(child_id, record.signal_id)
        except Exception as exc:
            logger.exception("Routing %s: could not open notification blackout", record.id)
            record_audit_event(
                self.audit_sink,
                ACTION_ROUTING_FAILED,
                record.id,
                {
                    "stage": "blackout",
                    "errorType": type(exc).__name__,
                    "error": str(exc),
                    "traceback": traceback.format_exc(),
                },
            )

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _mark_failed(self, routing_id: str, reason: str) -> RoutingRecord | None:
        """Best-effort move of a non-terminal record to FAILED."""
        try:
            current = self.store.get_record(routing_id)
            if current is None or current.is_terminal:
                return current
            return self.state_machine.fail(current, reason)
        except Exception:
            logger.exception("Routing %s: could not mark record failed", routing_id)
            return None

    def _expected_failure(self, routing_id: str, exc: RoutingError) -> RouteSignalResult:
        record = self._mark_failed(routing_id, str(exc))
        action = (
            ACTION_PRECONDITION_FAILED
            if exc.kind is ErrorKind.PRECONDITION
            else ACTION_ROUTING_FAILED
        )
        record_audit_event(
            self.audit_sink,
            action,
            routing_id,
            {"errorKind": exc.kind.value, "error": str(exc)},
        )
        logger.warning("Routing %s failed (%s): %s", routing_id, exc.kind.value, exc)
        return RouteSignalResult(
            success=False,
            routing_id=routing_id if record is not None else None,
            partner_id=(record.partner_id or None) if record is not None else None,
            used_fallback=record.used_fallback if record is not None else False,
            error=str(exc),
            error_kind=exc.kind,
        )

    def _internal_failure(self, routing_id: str, exc: BaseException) -> RouteSignalResult:
        logger.exception("Routing %s: unexpected error", routing_id)
        record = self._mark_failed(routing_id, f"{type(exc).__name__}: {exc}")
        record_audit_event(
            self.audit_sink,
            ACTION_ROUTING_FAILED,
            routing_id,
            {
                "errorKind": ErrorKind.INTERNAL.value,
                "errorType": type(exc).__name__,
                "error": str(exc),
                "traceback": "".join(
                    traceback.format_exception(type(exc), exc, exc.__traceback__)
                ),
            },
        )
        return RouteSignalResult(
            success=False,
            routing_id=routing_id if record is not None else None,
            error=GENERIC_FAILURE_MESSAGE,
            error_kind=ErrorKind.INTERNAL,
        )

    # ------------------------------------------------------------------
    # Follow-up operations
    # ------------------------------------------------------------------

    def acknowledge(
        self, routing_id: str, partner_reference: str | None = None
    ) -> RoutingRecord:
        """Record the partner's acknowledgement on a sent routing.

        Raises
        ------
        RecordNotFoundError
            If no record has this id.
        InvalidTransitionError
            If the record is not ``sent``.
        """
        record = self.store.get_record(routing_id)
        if record is None:
            raise RecordNotFoundError(routing_id)
        if record.status != RoutingStatus.SENT:
            raise InvalidTransitionError(
                f"Routing {routing_id} is {record.status.value}; only sent routings "
                "can be acknowledged"
            )
        changes: dict[str, Any] = {"acknowledged_at": self._clock()}
        if partner_reference is not None:
            changes["partner_reference"] = partner_reference
        record = self.state_machine.annotate(record, **changes)
        record_audit_event(
            self.audit_sink,
            ACTION_ACKNOWLEDGED,
            routing_id,
            {"partnerId": record.partner_id},
        )
        return record

    def reconcile_stale_records(self, now: datetime | None = None) -> list[RoutingRecord]:
        """Fail every record still non-terminal past ``stale_record_seconds``.

        Recovers records left behind when an invocation was killed before
        reaching a terminal state.
        """
        now = now or self._clock()
        cutoff = now - timedelta(seconds=self.settings.stale_record_seconds)
        reconciled: list[RoutingRecord] = []
        for record in self.store.find_records(
            statuses=_NON_TERMINAL, started_before=cutoff, limit=1000
        ):
            try:
                failed = self.state_machine.fail(record, STALE_RECORD_ERROR)
            except InvalidTransitionError:
                logger.info("Routing %s moved on before the sweep; skipped", record.id)
                continue
            record_audit_event(
                self.audit_sink,
                ACTION_STALE_RECONCILED,
                record.id,
                {"previousStatus": record.status.value, "partnerId": record.partner_id},
            )
            reconciled.append(failed)
        if reconciled:
            logger.warning("Reconciled %d stale routing record(s)", len(reconciled))
        return reconciled
