"""Unit tests for the CLI — Typer command registration and basic behavior.

Exercises command registration, partner import, read-side commands, key
generation and package decryption via typer.testing.CliRunner.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import timedelta

import pytest
from typer.testing import CliRunner

from crisisroute.bridge.encryption import encrypt_payload_for_partner
from crisisroute.bridge.signing import key_fingerprint
from crisisroute.cli.app import app
from crisisroute.core.audit_ledger import AuditLedger
from crisisroute.core.blackout import BlackoutManager
from crisisroute.core.payload import build_external_payload
from crisisroute.core.store import SqliteRoutingStore
from crisisroute.models.audit import AuditEntry
from crisisroute.models.base import utcnow
from crisisroute.models.routing import RoutingRecord, RoutingStatus

# Wide terminal so Rich tables keep identifiers on one line.
runner = CliRunner(env={"COLUMNS": "200"})


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point the CLI at temp databases and away from any local .env file."""
    monkeypatch.chdir(tmp_path)
    routing_db = tmp_path / "routing.db"
    audit_db = tmp_path / "audit.db"
    monkeypatch.setenv("CRISISROUTE_ROUTING_DB_PATH", str(routing_db))
    monkeypatch.setenv("CRISISROUTE_AUDIT_DB_PATH", str(audit_db))
    monkeypatch.delenv("CRISISROUTE_ENVIRONMENT", raising=False)
    return {"routing_db": routing_db, "audit_db": audit_db, "dir": tmp_path}


@pytest.fixture
def partner_file(cli_env, partners, registry):
    path = cli_env["dir"] / "partners.json"
    path.write_text(
        json.dumps(
            {
                "partners": [p.to_wire() for p in partners],
                "registry": registry.to_wire(),
            }
        )
    )
    return path


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("route", "import-partners", "partners", "records", "sweep", "keygen"):
            assert command in result.output

    @pytest.mark.parametrize(
        "command",
        ["route", "import-partners", "partners", "health", "records", "blackout",
         "sweep", "verify-audit", "keygen", "decrypt"],
    )
    def test_command_registered(self, command):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0


# ---------------------------------------------------------------------------
# Test: partner import and listing
# ---------------------------------------------------------------------------


class TestPartnerCommands:
    def test_import_then_list(self, cli_env, partner_file):
        result = runner.invoke(app, ["import-partners", str(partner_file)])
        assert result.exit_code == 0, result.output
        assert "Imported 3 partner(s)" in result.output

        store = SqliteRoutingStore(cli_env["routing_db"])
        assert len(store.list_partners()) == 3
        assert store.get_registry().jurisdiction_map["US-CA"] == [
            "ca-backup-line",
            "ca-crisis-line",
        ]

        result = runner.invoke(app, ["partners"])
        assert result.exit_code == 0
        assert "ca-crisis-line" in result.output
        assert "ca-backup-line" in result.output

    def test_import_rejects_invalid_partner(self, cli_env):
        path = cli_env["dir"] / "bad.json"
        path.write_text(json.dumps({"partners": [{"partnerId": "x"}]}))
        result = runner.invoke(app, ["import-partners", str(path)])
        assert result.exit_code == 1
        assert "Invalid partner configuration" in result.output

    def test_import_missing_file(self, cli_env):
        result = runner.invoke(app, ["import-partners", "nope.json"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_partners_without_database(self, cli_env):
        result = runner.invoke(app, ["partners"])
        assert result.exit_code == 1

    def test_health_unknown_partner(self, cli_env, partner_file):
        runner.invoke(app, ["import-partners", str(partner_file)])
        result = runner.invoke(app, ["health", "ghost"])
        assert result.exit_code == 1
        assert "Partner not found" in result.output


# ---------------------------------------------------------------------------
# Test: routing from the command line
# ---------------------------------------------------------------------------


class TestRouteCommand:
    def _write_inputs(self, directory, child_id="nobody"):
        request = directory / "request.json"
        request.write_text(
            json.dumps(
                {
                    "signalId": "signal-cli",
                    "childId": child_id,
                    "triggeredAt": utcnow().isoformat(),
                    "deviceType": "ios",
                    "jurisdiction": "US-CA",
                }
            )
        )
        children = directory / "children.json"
        children.write_text(json.dumps({"child-1": {"birthDate": "2012-05-01"}}))
        return request, children

    def test_unknown_child_fails_without_network(self, cli_env, partner_file):
        runner.invoke(app, ["import-partners", str(partner_file)])
        request, children = self._write_inputs(cli_env["dir"])
        result = runner.invoke(app, ["route", str(request), "--children", str(children)])
        assert result.exit_code == 1
        assert "Routing failed" in result.output
        assert "precondition" in result.output

        [record] = SqliteRoutingStore(cli_env["routing_db"]).find_records()
        assert record.status is RoutingStatus.FAILED
        assert AuditLedger(cli_env["audit_db"]).count() == 1

    def test_invalid_request_is_validation_error(self, cli_env, partner_file):
        runner.invoke(app, ["import-partners", str(partner_file)])
        request, children = self._write_inputs(cli_env["dir"])
        request.write_text(json.dumps({"signalId": "s"}))
        result = runner.invoke(app, ["route", str(request), "--children", str(children)])
        assert result.exit_code == 1
        assert "validation" in result.output

    def test_guard_failure_exits_2(self, cli_env, partner_file, monkeypatch):
        monkeypatch.setenv("CRISISROUTE_ENVIRONMENT", "production")
        request, children = self._write_inputs(cli_env["dir"])
        result = runner.invoke(app, ["route", str(request), "--children", str(children)])
        assert result.exit_code == 2
        assert "Configuration error" in result.output

    def test_child_directory_must_be_an_object(self, cli_env, partner_file):
        runner.invoke(app, ["import-partners", str(partner_file)])
        request, children = self._write_inputs(cli_env["dir"])
        children.write_text(json.dumps([{"birthDate": "2012-05-01"}]))
        result = runner.invoke(app, ["route", str(request), "--children", str(children)])
        assert result.exit_code == 1
        assert result.exception is None or isinstance(result.exception, SystemExit)
        assert "Child directory error" in result.output
        assert SqliteRoutingStore(cli_env["routing_db"]).find_records() == []

    def test_missing_child_directory(self, cli_env, partner_file):
        request, _ = self._write_inputs(cli_env["dir"])
        result = runner.invoke(app, ["route", str(request), "--children", "absent.json"])
        assert result.exit_code == 1
        assert "Child directory error" in result.output


# ---------------------------------------------------------------------------
# Test: records, blackout, sweep, verify-audit
# ---------------------------------------------------------------------------


class TestRecordCommands:
    def test_records_lists_and_filters(self, cli_env):
        store = SqliteRoutingStore(cli_env["routing_db"])
        now = utcnow()
        store.create_record(
            RoutingRecord(id="routing_a", signal_id="sig-a", jurisdiction="US-CA", started_at=now)
        )
        store.create_record(
            RoutingRecord(
                id="routing_b",
                signal_id="sig-b",
                jurisdiction="US-CA",
                status=RoutingStatus.FAILED,
                started_at=now,
            )
        )
        result = runner.invoke(app, ["records", "--status", "failed"])
        assert result.exit_code == 0
        assert "routing_b" in result.output
        assert "routing_a" not in result.output

    def test_records_rejects_unknown_status(self, cli_env):
        SqliteRoutingStore(cli_env["routing_db"])
        result = runner.invoke(app, ["records", "--status", "lost"])
        assert result.exit_code == 1
        assert "Unknown status" in result.output

    def test_blackout_reports_active(self, cli_env):
        BlackoutManager(SqliteRoutingStore(cli_env["routing_db"])).start_blackout(
            "child-1", "signal-1"
        )
        result = runner.invoke(app, ["blackout", "child-1"])
        assert result.exit_code == 0
        assert "Blackout active" in result.output

        result = runner.invoke(app, ["blackout", "child-2"])
        assert "No active blackout" in result.output

    def test_sweep_fails_stale_records(self, cli_env):
        store = SqliteRoutingStore(cli_env["routing_db"])
        store.create_record(
            RoutingRecord(
                id="routing_stuck",
                signal_id="sig",
                jurisdiction="US-CA",
                status=RoutingStatus.SENDING,
                started_at=utcnow() - timedelta(hours=1),
            )
        )
        result = runner.invoke(app, ["sweep"])
        assert result.exit_code == 0
        assert "Reconciled 1 stale record(s)" in result.output
        assert store.get_record("routing_stuck").status is RoutingStatus.FAILED

        result = runner.invoke(app, ["sweep"])
        assert "No stale routing records" in result.output

    def test_verify_audit_intact_and_broken(self, cli_env):
        ledger = AuditLedger(cli_env["audit_db"])
        ledger.append(AuditEntry(action="a", resource_type="t", resource_id="r1"))
        ledger.append(AuditEntry(action="b", resource_type="t", resource_id="r2"))

        result = runner.invoke(app, ["verify-audit"])
        assert result.exit_code == 0
        assert "Audit chain intact" in result.output

        conn = sqlite3.connect(str(cli_env["audit_db"]))
        conn.execute("UPDATE audit_log SET action = 'forged' WHERE resource_id = 'r1'")
        conn.commit()
        conn.close()

        result = runner.invoke(app, ["verify-audit"])
        assert result.exit_code == 1
        assert "BROKEN" in result.output


# ---------------------------------------------------------------------------
# Test: key generation and decryption
# ---------------------------------------------------------------------------


class TestKeyCommands:
    def test_keygen_signing(self, tmp_path):
        result = runner.invoke(app, ["keygen", "signing", "--out", str(tmp_path)])
        assert result.exit_code == 0
        public_hex = (tmp_path / "instance_signing.pub").read_text()
        assert len((tmp_path / "instance_signing.key").read_text()) == 64
        assert key_fingerprint(public_hex) in result.output

    def test_keygen_partner(self, tmp_path):
        result = runner.invoke(app, ["keygen", "partner", "-o", str(tmp_path)])
        assert result.exit_code == 0
        assert "BEGIN PUBLIC KEY" in (tmp_path / "partner_public.pem").read_text()
        assert "PRIVATE KEY" in (tmp_path / "partner_private.pem").read_text()

    def test_keygen_unknown_kind(self, tmp_path):
        result = runner.invoke(app, ["keygen", "symmetric", "-o", str(tmp_path)])
        assert result.exit_code == 1

    def test_decrypt_envelope(self, tmp_path, partner_keys, make_partner):
        payload = build_external_payload(
            signal_id="signal-xyz",
            child_age=15,
            has_shared_custody=False,
            signal_timestamp=utcnow(),
            jurisdiction="US-CA",
            device_platform="chrome",
        )
        package = encrypt_payload_for_partner(payload, make_partner())
        envelope = tmp_path / "envelope.json"
        envelope.write_text(json.dumps({"version": "1.0", "package": package.to_wire()}))
        key_file = tmp_path / "partner_private.pem"
        key_file.write_text(partner_keys[0])

        result = runner.invoke(app, ["decrypt", str(envelope), "--key", str(key_file)])
        assert result.exit_code == 0, result.output
        assert "signal-xyz" in result.output

    def test_decrypt_with_wrong_key(self, tmp_path, other_partner_keys, make_partner):
        payload = build_external_payload(
            signal_id="signal-xyz",
            child_age=15,
            has_shared_custody=False,
            signal_timestamp=utcnow(),
            jurisdiction="US-CA",
            device_platform="chrome",
        )
        package_file = tmp_path / "package.json"
        package_file.write_text(
            json.dumps(encrypt_payload_for_partner(payload, make_partner()).to_wire())
        )
        key_file = tmp_path / "wrong.pem"
        key_file.write_text(other_partner_keys[0])

        result = runner.invoke(app, ["decrypt", str(package_file), "-k", str(key_file)])
        assert result.exit_code == 1
        assert "Decryption failed" in result.output
