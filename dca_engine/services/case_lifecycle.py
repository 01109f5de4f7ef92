"""
Case lifecycle state machine and audit trail.

RECEIVED -> PRIORITIZED -> ALLOCATED -> IN_PROGRESS -> {ESCALATED, RESOLVED}
ESCALATED may return to IN_PROGRESS or proceed to RESOLVED. RESOLVED is terminal.
Any non-terminal state may escalate or resolve.

Every transition appends exactly one audit entry. The trail is append-only:
entries are never removed, reordered or rewritten, and entries appended before
a transition is rejected stay in place.
"""

import logging
import secrets
from datetime import datetime, time
from typing import Optional

from dca_engine.config import CONTACT_HOURS_END, CONTACT_HOURS_START, DOCUMENT_PREVIEW_CHARS
from dca_engine.errors import InvalidTransition
from dca_engine.models import (
    AllocationMode,
    AuditEntry,
    CandidateScore,
    Case,
    CaseAttributes,
    CaseStatus,
    Dispute,
    Document,
    DocumentType,
    Interaction,
    InteractionResult,
    InteractionType,
    ResolutionType,
    RiskTier,
    SLADeadlines,
)

logger = logging.getLogger(__name__)

_NON_TERMINAL = {
    CaseStatus.RECEIVED,
    CaseStatus.PRIORITIZED,
    CaseStatus.ALLOCATED,
    CaseStatus.IN_PROGRESS,
    CaseStatus.ESCALATED,
}

# from_status -> statuses reachable from it
ALLOWED_TRANSITIONS = {
    CaseStatus.RECEIVED: {CaseStatus.PRIORITIZED, CaseStatus.ESCALATED, CaseStatus.RESOLVED},
    CaseStatus.PRIORITIZED: {CaseStatus.ALLOCATED, CaseStatus.ESCALATED, CaseStatus.RESOLVED},
    CaseStatus.ALLOCATED: {
        CaseStatus.ALLOCATED,  # manual reallocation
        CaseStatus.IN_PROGRESS,
        CaseStatus.ESCALATED,
        CaseStatus.RESOLVED,
    },
    CaseStatus.IN_PROGRESS: {
        CaseStatus.ALLOCATED,
        CaseStatus.IN_PROGRESS,
        CaseStatus.ESCALATED,
        CaseStatus.RESOLVED,
    },
    CaseStatus.ESCALATED: {
        CaseStatus.ALLOCATED,
        CaseStatus.IN_PROGRESS,
        CaseStatus.ESCALATED,
        CaseStatus.RESOLVED,
    },
    CaseStatus.RESOLVED: set(),
}


def can_transition(from_status: CaseStatus, to_status: CaseStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def require_transition(case: Case, to_status: CaseStatus, action: str) -> None:
    """Raise InvalidTransition unless case may move to to_status."""
    if not can_transition(case.status, to_status):
        raise InvalidTransition(case.case_id, case.status.value, action)


def require_open(case: Case, action: str) -> None:
    """Raise InvalidTransition if the case is terminal."""
    if case.status not in _NON_TERMINAL:
        raise InvalidTransition(case.case_id, case.status.value, action)


def append_audit(case: Case, action: str, actor: str, details: str, now: datetime) -> AuditEntry:
    entry = AuditEntry(action=action, actor=actor, timestamp=now, details=details)
    case.audit_trail.append(entry)
    return entry


def within_contact_hours(
    now: datetime,
    start_hour: int = CONTACT_HOURS_START,
    end_hour: int = CONTACT_HOURS_END,
) -> bool:
    """True if now's local wall-clock time lies in [start_hour:00, end_hour:00]."""
    return time(start_hour, 0) <= now.time() <= time(end_hour, 0)


# --- Transitions ---


def create_case(case_id: str, attrs: CaseAttributes, actor: str, now: datetime) -> Case:
    """New case in RECEIVED with its CASE_CREATED entry."""
    case = Case(case_id=case_id, created_at=now, **attrs.model_dump())
    append_audit(case, "CASE_CREATED", actor, "Case received for collection", now)
    return case


def mark_prioritized(case: Case, tier: RiskTier, probability: float, now: datetime) -> None:
    require_transition(case, CaseStatus.PRIORITIZED, "prioritize")
    case.tier = tier
    case.recovery_probability = probability
    case.prioritized_at = now
    case.status = CaseStatus.PRIORITIZED
    append_audit(
        case,
        "CASE_PRIORITIZED",
        "SYSTEM",
        f"Tier {tier.value}, recovery probability {probability:.4f}",
        now,
    )


def mark_allocated(
    case: Case,
    agent_id: str,
    deadlines: SLADeadlines,
    mode: AllocationMode,
    actor: str,
    details: str,
    now: datetime,
    score: Optional[float] = None,
    candidates: Optional[list[CandidateScore]] = None,
) -> None:
    """
    Record an allocation. SLA deadlines are attached only on the first
    allocation; a reallocation keeps the deadlines already on the case.
    """
    action = "CASE_ALLOCATED" if mode == AllocationMode.ENGINE else "MANUAL_REALLOCATION"
    require_transition(case, CaseStatus.ALLOCATED, "allocate")
    case.allocated_agent = agent_id
    case.allocation_mode = mode
    case.allocation_score = score
    case.allocation_candidates = list(candidates or [])
    case.allocated_at = now
    if case.sla_deadlines is None:
        case.sla_deadlines = deadlines
    case.status = CaseStatus.ALLOCATED
    append_audit(case, action, actor, details, now)


def record_interaction(
    case: Case,
    interaction_type: InteractionType,
    details: str,
    result: InteractionResult,
    agent_id: Optional[str],
    actor: str,
    now: datetime,
) -> bool:
    """
    Log a contact attempt and move the case to IN_PROGRESS.
    A CALL outside contact hours appends SOP_VIOLATION first; that entry stays
    even if the transition is then rejected. A DISPUTE result opens a PENDING
    dispute. Returns True if an SOP violation was recorded.
    """
    violation = interaction_type == InteractionType.CALL and not within_contact_hours(now)
    if violation:
        append_audit(case, "SOP_VIOLATION", actor, "Contact outside permitted hours", now)
        logger.warning("SOP violation on case %s: CALL at %s.", case.case_id, now.time().isoformat("minutes"))

    require_transition(case, CaseStatus.IN_PROGRESS, "log interaction on")

    case.interactions.append(
        Interaction(type=interaction_type, details=details, result=result, timestamp=now, agent_id=agent_id)
    )
    if result == InteractionResult.DISPUTE:
        case.disputes.append(Dispute(reason=details, created_at=now))
    case.status = CaseStatus.IN_PROGRESS
    append_audit(
        case,
        "INTERACTION_LOGGED",
        actor,
        f"{interaction_type.value} interaction: {result.value}",
        now,
    )
    return violation


def record_document(
    case: Case,
    file_name: str,
    doc_type: DocumentType,
    content: str,
    actor: str,
    now: datetime,
) -> Document:
    """Attach a document to an open case. Not a status transition."""
    require_open(case, "upload document to")
    document = Document(
        doc_id=secrets.token_hex(8),
        file_name=file_name,
        type=doc_type,
        uploaded_by=actor,
        uploaded_at=now,
        content_preview=(content or "")[:DOCUMENT_PREVIEW_CHARS],
    )
    case.documents.append(document)
    append_audit(case, "DOCUMENT_UPLOADED", actor, f"Document: {file_name}", now)
    return document


def escalate(case: Case, reason: str, target_role: str, actor: str, now: datetime) -> None:
    require_transition(case, CaseStatus.ESCALATED, "escalate")
    case.status = CaseStatus.ESCALATED
    append_audit(case, "ESCALATION", actor, f"Escalated to {target_role}: {reason}", now)


def resolve(
    case: Case,
    resolution_type: ResolutionType,
    recovered_amount: float,
    notes: str,
    actor: str,
    now: datetime,
) -> None:
    require_transition(case, CaseStatus.RESOLVED, "resolve")
    case.status = CaseStatus.RESOLVED
    case.resolution_type = resolution_type
    case.recovered_amount = recovered_amount
    case.resolution_notes = notes
    case.resolved_at = now
    append_audit(
        case,
        "CASE_RESOLVED",
        actor,
        f"{resolution_type.value}: ${recovered_amount:,.2f} recovered. {notes}".strip(),
        now,
    )
