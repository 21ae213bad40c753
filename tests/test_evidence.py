"""Tests for evidence holds, law-enforcement cases and the agency gateway."""

import json
import tempfile
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from modguard.errors import ConflictError, DependencyUnavailable, ValidationError
from modguard.evidence.cases import can_transition
from modguard.evidence.gateway import HttpAgencyGateway
from modguard.models.cases import CaseStatus, HoldStatus
from modguard.models.flags import EscalationTarget
from modguard.models.messaging import Message

from engine_support import make_engine, seed_conversation, seed_message, seed_user

T0 = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _gateway(handler) -> HttpAgencyGateway:
    return HttpAgencyGateway(
        {"fbi": "https://agency.example/fbi", "default": "https://agency.example/intake"},
        token="secret-token",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def _flagged(tmpdir: str, gateway=None):
    engine = make_engine(tmpdir, {"the shipment lands friday": 0.75}, gateway=gateway)
    seed_conversation(engine)
    seed_user(engine, "alice")
    seed_message(engine, "m1", "the shipment lands friday")
    return engine, engine.submit_content("m1")


# --- Hold Tests ---


def test_hold_expiry_comes_from_retention_class():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir)
        expected = {"standard": 90, "law_enforcement": 180, "legal": 365, "emergency": 30}
        for retention_class, days in expected.items():
            hold = engine.holds.create_hold(
                "legal", "court_order", retention_class, {"user_ids": ["alice"]}, now=T0
            )
            assert hold.expires_at == (T0 + timedelta(days=days)).isoformat()

        camel = engine.holds.create_hold("legal", "court_order", "lawEnforcement", {"user_ids": ["a"]}, now=T0)
        assert camel.retention_class == "law_enforcement"


def test_hold_validation():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir)
        with pytest.raises(ValidationError):
            engine.holds.create_hold("legal", "court_order", "forever", {"user_ids": ["a"]})
        with pytest.raises(ValidationError):
            engine.holds.create_hold("legal", "court_order", "standard", {})
        with pytest.raises(ValidationError):
            engine.holds.create_hold("legal", "gut_feeling", "standard", {"user_ids": ["a"]})


def test_is_held_respects_scope_and_date_range():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir)
        engine.holds.create_hold(
            "legal",
            "court_order",
            "legal",
            {
                "conversation_ids": ["c1"],
                "start": "2026-02-01T00:00:00+00:00",
                "end": "2026-02-28T00:00:00+00:00",
            },
            now=T0,
        )
        inside = Message(id="a", conversation_id="c1", sender_id="x", content="", sent_at="2026-02-10T00:00:00+00:00")
        before = Message(id="b", conversation_id="c1", sender_id="x", content="", sent_at="2026-01-10T00:00:00+00:00")
        elsewhere = Message(id="c", conversation_id="c2", sender_id="x", content="", sent_at="2026-02-10T00:00:00+00:00")

        now = T0 + timedelta(days=1)
        assert engine.holds.is_held(inside, now)
        assert not engine.holds.is_held(before, now)
        assert not engine.holds.is_held(elsewhere, now)
        # Expired holds no longer protect anything
        assert not engine.holds.is_held(inside, T0 + timedelta(days=400))


def test_extend_and_release():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir)
        hold = engine.holds.create_hold("legal", "court_order", "standard", {"user_ids": ["alice"]}, now=T0)

        extended = engine.holds.extend_hold(hold.id, "legal", days=10, now=T0)
        assert extended.status == HoldStatus.EXTENDED
        assert extended.extension_count == 1
        assert extended.expires_at == (T0 + timedelta(days=100)).isoformat()

        released = engine.holds.release_hold(hold.id, "legal", "case closed")
        assert released.status == HoldStatus.RELEASED
        with pytest.raises(ConflictError):
            engine.holds.extend_hold(hold.id, "legal")


def test_expire_holds():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = make_engine(tmpdir)
        hold = engine.holds.create_hold("ops", "emergency", "emergency", {"user_ids": ["alice"]}, now=T0)
        assert engine.holds.expire_holds(T0 + timedelta(days=10)) == []
        expired = engine.holds.expire_holds(T0 + timedelta(days=31))
        assert [h.id for h in expired] == [hold.id]
        assert engine.holds.get(hold.id).status == HoldStatus.EXPIRED


# --- Case Tests ---


def test_report_snapshot_is_frozen_at_filing():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, flag = _flagged(tmpdir)

        report = engine.report_to_authorities(flag.id, "dea", "urgent", actor="lead", additional_info="repeat")

        engine.store.messages.update("m1", lambda m: setattr(m, "content", "edited later"))
        engine.store.users.update("alice", lambda u: setattr(u, "email", "new@example.com"))

        stored = engine.cases.get_by_case(report.case_id)
        assert stored.report_data.message_content == "the shipment lands friday"
        assert stored.report_data.user_info.email == "alice@example.com"
        assert stored.report_data.risk_score == 0.75
        assert stored.report_data.additional_info == "repeat"
        assert stored.threat_categories == ["violence"]


def test_report_escalates_flag_and_preserves_evidence():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, flag = _flagged(tmpdir)

        report = engine.report_to_authorities(flag.id, "dea", actor="lead")

        assert report.status == CaseStatus.DRAFT
        assert report.case_id.startswith("CASE_")
        escalated = engine.flags.get_flag(flag.id)
        assert escalated.escalated
        assert escalated.escalated_to == EscalationTarget.LAW_ENFORCEMENT

        hold = engine.holds.get(report.preservation_notice.hold_id)
        assert hold.retention_class == "law_enforcement"
        assert hold.case_id == report.case_id
        assert engine.holds.is_held(engine.store.messages.get("m1"))

        critical = engine.alerts.list_alerts(severity="critical")
        assert len(critical) == 1
        assert engine.notifier.of_category("case_filed")


def test_submit_without_gateway_is_unavailable():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, flag = _flagged(tmpdir)
        report = engine.report_to_authorities(flag.id, actor="lead")
        with pytest.raises(DependencyUnavailable):
            engine.cases.submit_report(report.id, "lead")
        assert engine.cases.get(report.id).status == CaseStatus.DRAFT


def test_gateway_submission_success():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"confirmation_number": "FBI-1234", "message": "received"})

    with tempfile.TemporaryDirectory() as tmpdir:
        engine, flag = _flagged(tmpdir, gateway=_gateway(handler))

        report = engine.report_to_authorities(flag.id, "fbi", "emergency", actor="lead")

        assert report.status == CaseStatus.SUBMITTED
        assert report.submission_result.confirmation_number == "FBI-1234"
        assert report.submitted_at
        assert str(seen[0].url) == "https://agency.example/fbi"
        assert seen[0].headers["Authorization"] == "Bearer secret-token"
        body = json.loads(seen[0].content)
        assert body["case_id"] == report.case_id
        assert body["report_data"]["message_content"] == "the shipment lands friday"


def test_gateway_rejection_marks_case_failed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, text="missing jurisdiction")

    with tempfile.TemporaryDirectory() as tmpdir:
        engine, flag = _flagged(tmpdir, gateway=_gateway(handler))
        report = engine.report_to_authorities(flag.id, "ice", actor="lead")

        assert report.status == CaseStatus.FAILED
        assert report.submission_result.response_code == "422"
        failed = engine.audit.get_events(action="submit_case", success=False)
        assert failed[0].outcome.error_message == "missing jurisdiction"


def test_gateway_outage_leaves_case_in_draft():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    with tempfile.TemporaryDirectory() as tmpdir:
        engine, flag = _flagged(tmpdir, gateway=_gateway(handler))
        report = engine.report_to_authorities(flag.id, "fbi", actor="lead")
        assert report.status == CaseStatus.DRAFT


def test_agency_responses_move_case_forward_only():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"confirmation_number": "X"})

    with tempfile.TemporaryDirectory() as tmpdir:
        engine, flag = _flagged(tmpdir, gateway=_gateway(handler))
        report = engine.report_to_authorities(flag.id, "fbi", actor="lead")

        updated = engine.cases.record_agency_response(
            report.case_id, "investigating", external_case_id="EXT-9", investigator_contact="agent@fbi.example"
        )
        assert updated.status == CaseStatus.INVESTIGATING
        assert updated.agency_response.external_case_id == "EXT-9"

        updated = engine.cases.record_agency_response(report.case_id, "additional_info_requested")
        updated = engine.cases.record_agency_response(report.case_id, "investigating")
        assert updated.status == CaseStatus.INVESTIGATING

        with pytest.raises(ConflictError):
            engine.cases.record_agency_response(report.case_id, "acknowledged")
        with pytest.raises(ValidationError):
            engine.cases.record_agency_response(report.case_id, "submitted")

        closed = engine.cases.record_agency_response(report.case_id, "closed")
        assert closed.status == CaseStatus.CLOSED
        assert len(closed.status_history) == 6


def test_agency_response_on_draft_is_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        engine, flag = _flagged(tmpdir)
        report = engine.report_to_authorities(flag.id, actor="lead")
        with pytest.raises(ConflictError):
            engine.cases.record_agency_response(report.case_id, "acknowledged")


def test_case_transition_table():
    assert can_transition(CaseStatus.DRAFT, CaseStatus.SUBMITTED)
    assert can_transition(CaseStatus.SUBMITTED, CaseStatus.REJECTED)
    assert not can_transition(CaseStatus.CLOSED, CaseStatus.FAILED)
    assert not can_transition(CaseStatus.INVESTIGATING, CaseStatus.SUBMITTED)
