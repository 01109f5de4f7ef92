"""
Unit tests for the case state machine, interaction compliance and the audit trail.
Run: pytest tests/test_lifecycle.py -v
"""

from datetime import datetime, timezone

import pytest

from dca_engine.errors import CaseNotFound, DataIntegrityError, InvalidTransition
from dca_engine.models import (
    CaseStatus,
    DocumentType,
    InteractionResult,
    InteractionType,
    ResolutionType,
    RiskTier,
)
from dca_engine.services import allocation_engine, case_lifecycle, sla_scheduler
from dca_engine.services.case_lifecycle import can_transition, within_contact_hours
from tests.helpers import T0, critical_case, low_case, make_agent


def _actions(case):
    return [entry.action for entry in case.audit_trail]


class TestStateMachine:
    def test_resolved_is_terminal(self):
        assert all(not can_transition(CaseStatus.RESOLVED, s) for s in CaseStatus)

    def test_escalated_can_resume_or_resolve(self):
        assert can_transition(CaseStatus.ESCALATED, CaseStatus.IN_PROGRESS)
        assert can_transition(CaseStatus.ESCALATED, CaseStatus.RESOLVED)

    def test_no_skipping_prioritization(self):
        assert not can_transition(CaseStatus.RECEIVED, CaseStatus.ALLOCATED)
        assert not can_transition(CaseStatus.RECEIVED, CaseStatus.IN_PROGRESS)

    def test_intake_trail(self, engine):
        case = engine.ingest(critical_case(), actor_id="fedex@company.com").case
        assert case.status == CaseStatus.ALLOCATED
        assert _actions(case) == ["CASE_CREATED", "CASE_PRIORITIZED", "CASE_ALLOCATED"]
        assert case.audit_trail[0].actor == "fedex@company.com"
        assert case.audit_trail[2].actor == "SYSTEM"
        assert case.audit_trail[2].details.startswith("Allocated to DCA-001 with score ")

    def test_case_ids_are_sequential(self, engine):
        ids = [engine.ingest(low_case()).case.case_id for _ in range(3)]
        assert ids == ["FDX-1001", "FDX-1002", "FDX-1003"]


class TestContactHours:
    @pytest.mark.parametrize("hour,minute,allowed", [
        (8, 59, False),
        (9, 0, True),
        (11, 0, True),
        (18, 0, True),
        (18, 1, False),
        (18, 30, False),
        (20, 0, False),
    ])
    def test_window(self, hour, minute, allowed):
        now = datetime(2026, 3, 2, hour, minute, tzinfo=timezone.utc)
        assert within_contact_hours(now) is allowed


class TestInteractions:
    def test_evening_call_is_flagged_but_recorded(self, engine, clock):
        case = engine.ingest(critical_case()).case
        clock.set(datetime(2026, 3, 2, 20, 0, tzinfo=timezone.utc))
        case = engine.log_interaction(case.case_id, InteractionType.CALL, "left voicemail",
                                      InteractionResult.NO_ANSWER, "DCA-001")
        assert _actions(case)[-2:] == ["SOP_VIOLATION", "INTERACTION_LOGGED"]
        assert case.status == CaseStatus.IN_PROGRESS
        assert len(case.interactions) == 1
        assert case.interactions[0].agent_id == "DCA-001"

    def test_daytime_call_only_logged(self, engine):
        case = engine.ingest(critical_case()).case
        case = engine.log_interaction(case.case_id, InteractionType.CALL, "spoke to AP",
                                      InteractionResult.CALLBACK, "DCA-001")
        assert _actions(case)[-1] == "INTERACTION_LOGGED"
        assert "SOP_VIOLATION" not in _actions(case)
        assert case.audit_trail[-1].details == "CALL interaction: CALLBACK"

    def test_evening_email_is_not_a_violation(self, engine, clock):
        case = engine.ingest(critical_case()).case
        clock.set(datetime(2026, 3, 2, 22, 30, tzinfo=timezone.utc))
        case = engine.log_interaction(case.case_id, InteractionType.EMAIL, "statement sent",
                                      InteractionResult.SUCCESS, "DCA-001")
        assert "SOP_VIOLATION" not in _actions(case)

    def test_dispute_opens_pending_record(self, engine):
        case = engine.ingest(critical_case()).case
        case = engine.log_interaction(case.case_id, InteractionType.CALL, "invoice never received",
                                      InteractionResult.DISPUTE, "DCA-001")
        assert len(case.disputes) == 1
        assert case.disputes[0].status == "PENDING"
        assert case.disputes[0].reason == "invoice never received"

    def test_unallocated_case_rejects_interaction(self, make_engine):
        engine = make_engine(make_agent("A", capacity=1, case_ids=["X"]))
        case = engine.ingest(low_case()).case
        with pytest.raises(InvalidTransition):
            engine.log_interaction(case.case_id, InteractionType.EMAIL, "", InteractionResult.SUCCESS, "A")
        assert engine.get_case(case.case_id).interactions == []

    def test_violation_note_survives_rejection(self, engine, clock):
        case = engine.ingest(critical_case()).case
        engine.resolve(case.case_id, ResolutionType.WRITTEN_OFF, 0, "", "admin")
        clock.set(datetime(2026, 3, 2, 21, 0, tzinfo=timezone.utc))
        with pytest.raises(InvalidTransition):
            engine.log_interaction(case.case_id, InteractionType.CALL, "", InteractionResult.NO_ANSWER, "DCA-001")
        assert _actions(engine.get_case(case.case_id))[-1] == "SOP_VIOLATION"


class TestEscalationAndResolution:
    def test_escalate_then_resume(self, engine):
        case = engine.ingest(critical_case()).case
        case = engine.escalate(case.case_id, "debtor threatened legal action", "LEGAL", "DCA-001")
        assert case.status == CaseStatus.ESCALATED
        assert case.audit_trail[-1].details == "Escalated to LEGAL: debtor threatened legal action"
        case = engine.log_interaction(case.case_id, InteractionType.VISIT, "site visit",
                                      InteractionResult.SUCCESS, "DCA-001")
        assert case.status == CaseStatus.IN_PROGRESS

    def test_recovered_credits_agent(self, engine):
        case = engine.ingest(critical_case()).case
        before = engine.get_agent("DCA-001").recovered_amount
        case = engine.resolve(case.case_id, ResolutionType.RECOVERED, 5000, "paid in full", "DCA-001")
        assert case.status == CaseStatus.RESOLVED
        assert case.recovered_amount == 5000
        assert case.resolution_type == ResolutionType.RECOVERED
        assert engine.get_agent("DCA-001").recovered_amount == before + 5000
        assert engine.get_agent("DCA-001").historical_recovery_rate == 0.82

    def test_zero_recovery_leaves_agent_alone(self, engine):
        case = engine.ingest(critical_case()).case
        before = engine.get_agent("DCA-001").recovered_amount
        engine.resolve(case.case_id, ResolutionType.WRITTEN_OFF, 0, "", "admin")
        assert engine.get_agent("DCA-001").recovered_amount == before

    def test_negative_recovery_rejected(self, engine):
        case = engine.ingest(critical_case()).case
        with pytest.raises(ValueError):
            engine.resolve(case.case_id, ResolutionType.SETTLED, -1, "", "admin")

    def test_everything_after_resolution_is_invalid(self, engine):
        case_id = engine.ingest(critical_case()).case.case_id
        engine.resolve(case_id, ResolutionType.SETTLED, 1200, "", "admin")
        trail_len = len(engine.get_case(case_id).audit_trail)
        with pytest.raises(InvalidTransition):
            engine.log_interaction(case_id, InteractionType.EMAIL, "", InteractionResult.SUCCESS, "DCA-001")
        with pytest.raises(InvalidTransition):
            engine.log_document(case_id, "late.pdf", DocumentType.NOTE, "x", "DCA-001")
        with pytest.raises(InvalidTransition):
            engine.escalate(case_id, "r", "MANAGER", "admin")
        with pytest.raises(InvalidTransition):
            engine.resolve(case_id, ResolutionType.RECOVERED, 10, "", "admin")
        with pytest.raises(InvalidTransition):
            engine.manual_reallocate(case_id, "DCA-002", "admin")
        assert len(engine.get_case(case_id).audit_trail) == trail_len

    def test_resolved_case_keeps_agent_capacity(self, engine):
        case = engine.ingest(critical_case()).case
        engine.resolve(case.case_id, ResolutionType.RECOVERED, 10, "", "admin")
        assert engine.get_agent("DCA-001").case_ids == [case.case_id]


class TestDocuments:
    def test_document_recorded_with_preview(self, engine):
        case = engine.ingest(critical_case()).case
        content = "x" * 500
        case = engine.log_document(case.case_id, "receipt.pdf", DocumentType.PAYMENT_PROOF, content, "DCA-001")
        doc = case.documents[0]
        assert doc.content_preview == "x" * 200
        assert len(doc.doc_id) == 16
        assert doc.uploaded_by == "DCA-001"
        assert case.status == CaseStatus.ALLOCATED
        assert case.audit_trail[-1].action == "DOCUMENT_UPLOADED"
        assert case.audit_trail[-1].details == "Document: receipt.pdf"


class TestAuditTrail:
    def test_append_only(self, engine):
        case_id = engine.ingest(critical_case()).case.case_id
        snapshots = [engine.get_audit_trail(case_id)]
        engine.log_interaction(case_id, InteractionType.SMS, "", InteractionResult.NO_ANSWER, "DCA-001")
        snapshots.append(engine.get_audit_trail(case_id))
        engine.escalate(case_id, "no response", "MANAGER", "DCA-001")
        snapshots.append(engine.get_audit_trail(case_id))
        engine.resolve(case_id, ResolutionType.WRITTEN_OFF, 0, "", "admin")
        snapshots.append(engine.get_audit_trail(case_id))
        for shorter, longer in zip(snapshots, snapshots[1:]):
            assert longer[:len(shorter)] == shorter
            assert len(longer) == len(shorter) + 1

    def test_returned_case_is_a_snapshot(self, engine):
        case = engine.ingest(critical_case()).case
        case.status = CaseStatus.RESOLVED
        case.audit_trail.clear()
        stored = engine.get_case(case.case_id)
        assert stored.status == CaseStatus.ALLOCATED
        assert len(stored.audit_trail) == 3

    def test_unknown_case(self, engine):
        with pytest.raises(CaseNotFound):
            engine.get_case("FDX-9999")
        with pytest.raises(CaseNotFound):
            engine.escalate("FDX-9999", "r", "MANAGER", "admin")


class TestListing:
    def test_filter_by_agent(self, engine):
        crit = engine.ingest(critical_case()).case
        low = engine.ingest(low_case()).case
        assert [c.case_id for c in engine.list_cases()] == [crit.case_id, low.case_id]
        assert [c.case_id for c in engine.list_cases(agent_id="DCA-001")] == [crit.case_id]
        assert [c.case_id for c in engine.list_cases(agent_id="DCA-003")] == [low.case_id]
        assert engine.list_cases(agent_id="DCA-002") == []


class TestDataIntegrity:
    def _dangling_case(self, engine):
        case = case_lifecycle.create_case("FDX-7777", critical_case(), "SYSTEM", T0)
        case_lifecycle.mark_prioritized(case, RiskTier.CRITICAL, 0.6, T0)
        engine.store.add(case)
        engine.registry.register(make_agent("GHOST"))
        allocation_engine.manual_reallocate(case, "GHOST", engine.registry, "admin", T0)
        # Registry swapped for one that never heard of GHOST
        engine.registry = type(engine.registry)([make_agent("DCA-001")])
        return case

    def test_resolve_with_dangling_agent(self, engine):
        case = self._dangling_case(engine)
        with pytest.raises(DataIntegrityError):
            engine.resolve(case.case_id, ResolutionType.RECOVERED, 100, "", "admin")
        assert engine.get_case(case.case_id).status == CaseStatus.ALLOCATED

    def test_reallocate_away_from_dangling_agent(self, engine):
        case = self._dangling_case(engine)
        trail_len = len(case.audit_trail)
        with pytest.raises(DataIntegrityError):
            engine.manual_reallocate(case.case_id, "DCA-001", "admin")
        stored = engine.get_case(case.case_id)
        assert stored.allocated_agent == "GHOST"
        assert len(stored.audit_trail) == trail_len
        assert engine.get_agent("DCA-001").case_ids == []

    def test_breach_with_dangling_agent(self, engine):
        case = self._dangling_case(engine)
        later = case.sla_deadlines.resolution.replace(year=2027)
        with pytest.raises(DataIntegrityError):
            sla_scheduler.evaluate(case, later, engine.registry)


class TestPortfolioMetrics:
    def test_empty_portfolio(self, engine):
        metrics = engine.portfolio_metrics()
        assert metrics.total_cases == 0
        assert metrics.recovery_prediction_mae == 0.0
        assert len(metrics.per_agent) == 4

    def test_prediction_error_over_resolved_cases(self, engine):
        recovered = engine.ingest(critical_case()).case
        written_off = engine.ingest(low_case()).case
        engine.ingest(low_case(debtor="open"))
        engine.resolve(recovered.case_id, ResolutionType.RECOVERED, 5000, "", "DCA-001")
        engine.resolve(written_off.case_id, ResolutionType.WRITTEN_OFF, 0, "", "admin")

        errors = [recovered.recovery_probability - 1.0, written_off.recovery_probability]
        metrics = engine.portfolio_metrics()
        assert metrics.total_cases == 3
        assert metrics.resolved_cases == 2
        assert metrics.critical_cases == 1
        assert metrics.recovery_prediction_mae == pytest.approx(
            round(sum(abs(e) for e in errors) / 2, 4))
        assert metrics.recovery_prediction_rmse == pytest.approx(
            round((sum(e * e for e in errors) / 2) ** 0.5, 4))
        assert metrics.allocation_success_rate == 0.5
        assert metrics.avg_allocation_score == pytest.approx(
            round((recovered.allocation_score + written_off.allocation_score) / 2, 6))

    def test_open_cases_excluded_from_average_score(self, engine):
        engine.ingest(critical_case())
        assert engine.portfolio_metrics().avg_allocation_score == 0.0
