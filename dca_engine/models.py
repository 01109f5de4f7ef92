"""Data models for the DCA allocation and SLA engine."""

from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field


class RiskTier(str, Enum):
    """Risk tier derived from debt amount and age."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class CaseStatus(str, Enum):
    """Case lifecycle states. RESOLVED is terminal."""

    RECEIVED = "RECEIVED"
    PRIORITIZED = "PRIORITIZED"
    ALLOCATED = "ALLOCATED"
    IN_PROGRESS = "IN_PROGRESS"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"


class InteractionType(str, Enum):
    CALL = "CALL"
    EMAIL = "EMAIL"
    SMS = "SMS"
    VISIT = "VISIT"


class InteractionResult(str, Enum):
    SUCCESS = "SUCCESS"
    CALLBACK = "CALLBACK"
    DISPUTE = "DISPUTE"
    NO_ANSWER = "NO_ANSWER"


class DocumentType(str, Enum):
    PAYMENT_PROOF = "PAYMENT_PROOF"
    NOTE = "NOTE"
    LEGAL = "LEGAL"
    OTHER = "OTHER"


class ResolutionType(str, Enum):
    RECOVERED = "RECOVERED"
    WRITTEN_OFF = "WRITTEN_OFF"
    SETTLED = "SETTLED"


class AllocationMode(str, Enum):
    """How the current agent was chosen."""

    ENGINE = "ENGINE"
    MANUAL = "MANUAL"


# --- Agents ---


class Agent(BaseModel):
    """A collection agent (DCA) with finite concurrent case capacity."""

    agent_id: str = Field(..., description="Unique agent identifier")
    display_name: str = Field(default="", description="Display name")
    capacity: int = Field(default=5, ge=1, description="Max concurrent cases")
    current_load: int = Field(default=0, ge=0)
    historical_recovery_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    specialization: list[str] = Field(default_factory=list, description="Specialization tags, e.g. High-Value")
    region: str = Field(default="Unknown", description="Home geographic region")
    compliance_score: float = Field(default=1.0, ge=0.0, le=1.0)
    sla_breaches: int = Field(default=0, ge=0, description="Cumulative SLA breaches")
    recovered_amount: float = Field(default=0.0, ge=0.0, description="Cumulative recovered amount")
    average_resolution_days: Optional[float] = None
    case_ids: list[str] = Field(default_factory=list, description="Currently assigned case ids")

    @computed_field
    @property
    def utilization(self) -> float:
        """current_load / capacity in [0, 1]."""
        return round(self.current_load / self.capacity, 4)


# --- Case sub-records ---


class AuditEntry(BaseModel):
    """Immutable audit record. Order in the trail is insertion order."""

    model_config = ConfigDict(frozen=True)

    action: str
    actor: str
    timestamp: datetime
    details: str = ""


class SLADeadlines(BaseModel):
    """Absolute deadlines fixed at first allocation."""

    model_config = ConfigDict(frozen=True)

    first_action: datetime
    follow_up: datetime
    resolution: datetime


class Interaction(BaseModel):
    type: InteractionType
    details: str = ""
    result: InteractionResult
    timestamp: datetime
    agent_id: Optional[str] = None


class Document(BaseModel):
    doc_id: str
    file_name: str
    type: DocumentType
    uploaded_by: str
    uploaded_at: datetime
    content_preview: str = ""


class Dispute(BaseModel):
    reason: str = ""
    created_at: datetime
    status: str = Field(default="PENDING", description="PENDING on creation")


class CandidateScore(BaseModel):
    """Intermediate values for one agent considered during allocation."""

    agent_id: str
    score: float = Field(..., description="Weighted suitability score")
    priority_factor: float
    final_score: float = Field(..., description="recovery_probability * score * priority_factor")


# --- Cases ---


class CaseAttributes(BaseModel):
    """Payload for an incoming case."""

    debtor: str = Field(..., description="Debtor reference")
    amount: float = Field(..., ge=0.0, description="Outstanding amount")
    age_days: int = Field(..., ge=0, description="Debt age in days")
    tracking_number: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: str = ""
    region: str = Field(default="Unknown", description="Geographic region")


class Case(BaseModel):
    """A debt-recovery work item and everything recorded against it."""

    case_id: str
    debtor: str
    amount: float
    age_days: int
    tracking_number: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: str = ""
    region: str = "Unknown"

    status: CaseStatus = CaseStatus.RECEIVED
    tier: Optional[RiskTier] = None
    recovery_probability: Optional[float] = Field(None, ge=0.2, le=1.0)

    allocated_agent: Optional[str] = None
    allocation_score: Optional[float] = None
    allocation_candidates: list[CandidateScore] = Field(default_factory=list)
    allocation_mode: Optional[AllocationMode] = None

    sla_deadlines: Optional[SLADeadlines] = None
    sla_breached: bool = False
    breach_counted: bool = Field(default=False, description="Agent penalty already applied for this breach")

    interactions: list[Interaction] = Field(default_factory=list)
    documents: list[Document] = Field(default_factory=list)
    disputes: list[Dispute] = Field(default_factory=list)
    audit_trail: list[AuditEntry] = Field(default_factory=list)

    created_at: datetime
    prioritized_at: Optional[datetime] = None
    allocated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_type: Optional[ResolutionType] = None
    recovered_amount: float = 0.0
    resolution_notes: str = ""


# --- Engine outcomes ---


class AllocationResult(BaseModel):
    """Successful allocation of a case to an agent."""

    case_id: str
    agent_id: str
    final_score: float
    candidates: list[CandidateScore] = Field(default_factory=list)


class NoCapacity(BaseModel):
    """Every agent is saturated. A valid outcome of an allocation attempt, not an error."""

    case_id: str
    reason: str = "All agents at capacity"


class IngestResult(BaseModel):
    """Case snapshot after intake plus the outcome of the single allocation attempt."""

    case: Case
    allocation: Union[AllocationResult, NoCapacity]


class SLAStatus(BaseModel):
    case_id: str
    breached: bool
    hours_remaining: float = Field(..., ge=0.0, description="Hours until resolution deadline, 0 once passed")
    tier: Optional[RiskTier] = None
    allocated_agent: Optional[str] = None
    resolution_deadline: Optional[datetime] = None


class AgentPerformance(BaseModel):
    agent_id: str
    display_name: str
    current_load: int
    sla_breaches: int
    recovered_amount: float
    historical_recovery_rate: float


class PortfolioMetrics(BaseModel):
    """Outcome statistics over the case collection."""

    total_cases: int
    resolved_cases: int
    critical_cases: int
    breached_cases: int
    pending_cases: int
    recovery_prediction_mae: float
    recovery_prediction_rmse: float
    allocation_success_rate: float
    avg_allocation_score: float
    per_agent: list[AgentPerformance] = Field(default_factory=list)
