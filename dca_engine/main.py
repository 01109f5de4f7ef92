"""REST shell for the DCA allocation engine."""

import logging
import threading
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dca_engine.config import LOG_LEVEL, SLA_POLL_INTERVAL_SECONDS
from dca_engine.engine import RecoveryEngine
from dca_engine.errors import CapacityExceeded, DataIntegrityError, InvalidTransition, NotFound
from dca_engine.models import (
    Agent,
    AllocationResult,
    AuditEntry,
    Case,
    CaseAttributes,
    DocumentType,
    IngestResult,
    InteractionResult,
    InteractionType,
    PortfolioMetrics,
    ResolutionType,
    SLAStatus,
)

logger = logging.getLogger(__name__)

_engine: Optional[RecoveryEngine] = None
_poller_stop: Optional[threading.Event] = None


def _sla_poller(stop: threading.Event, interval: float) -> None:
    """Daemon loop: evaluate SLAs and retry queued allocations every interval seconds."""
    while not stop.wait(interval):
        engine = _engine
        if engine is None:
            continue
        try:
            statuses = engine.evaluate_sla()
            allocated = engine.allocate_pending()
            logger.debug("SLA poll: %d tracked, %d breached, %d pending allocated.",
                         len(statuses), sum(s.breached for s in statuses), len(allocated))
        except Exception:
            logger.exception("SLA poll failed")


def start_sla_poller(interval: float = SLA_POLL_INTERVAL_SECONDS) -> threading.Event:
    """Start the background poller thread; set the returned event to stop it."""
    stop = threading.Event()
    t = threading.Thread(target=_sla_poller, args=(stop, interval), daemon=True)
    t.start()
    logger.info("SLA poller started (every %ss).", interval)
    return stop


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _engine, _poller_stop
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    _engine = RecoveryEngine()
    _poller_stop = start_sla_poller()
    try:
        yield
    finally:
        _poller_stop.set()
        _poller_stop = None
        _engine = None


app = FastAPI(
    title="DCA Allocation Engine",
    description="Case intake, DCA allocation, SLA tracking and audit trail.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["Content-Type", "Authorization"],
)


def get_engine() -> RecoveryEngine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="Engine not ready")
    return _engine


@app.exception_handler(NotFound)
async def _not_found(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidTransition)
async def _invalid_transition(request: Request, exc: InvalidTransition) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(CapacityExceeded)
async def _capacity_exceeded(request: Request, exc: CapacityExceeded) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(DataIntegrityError)
async def _data_integrity(request: Request, exc: DataIntegrityError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# --- Request bodies ---


class InteractionRequest(BaseModel):
    type: InteractionType
    details: str = ""
    result: InteractionResult
    actor_agent_id: str = Field(..., description="Agent logging the contact")


class DocumentRequest(BaseModel):
    file_name: str
    type: DocumentType = DocumentType.OTHER
    content: str = ""
    actor_id: str


class EscalationRequest(BaseModel):
    reason: str
    target_role: str
    actor_id: str


class ResolutionRequest(BaseModel):
    resolution_type: ResolutionType
    recovered_amount: float = Field(default=0.0, ge=0.0)
    notes: str = ""
    actor_id: str


class ReallocationRequest(BaseModel):
    agent_id: str = Field(..., description="Target agent")
    actor_id: str


class PendingAllocated(BaseModel):
    allocated: list[AllocationResult]


# --- Cases ---


@app.post("/cases", status_code=201, response_model=IngestResult)
def ingest_case(payload: CaseAttributes, actor_id: str = "SYSTEM",
                engine: RecoveryEngine = Depends(get_engine)) -> IngestResult:
    """Create, classify and attempt to allocate a case. allocation is NoCapacity if every DCA is full."""
    return engine.ingest(payload, actor_id=actor_id)


@app.get("/cases", response_model=list[Case])
def list_cases(agent_id: Optional[str] = None, engine: RecoveryEngine = Depends(get_engine)) -> list[Case]:
    """List cases; agent_id restricts to cases owned by that DCA."""
    return engine.list_cases(agent_id=agent_id)


@app.get("/cases/pending", response_model=list[Case])
def list_pending(engine: RecoveryEngine = Depends(get_engine)) -> list[Case]:
    """Cases waiting for capacity, in allocation order."""
    return engine.list_pending()


@app.post("/cases/pending/allocate", response_model=PendingAllocated)
def allocate_pending(engine: RecoveryEngine = Depends(get_engine)) -> PendingAllocated:
    return PendingAllocated(allocated=engine.allocate_pending())


@app.get("/cases/{case_id}", response_model=Case)
def get_case(case_id: str, engine: RecoveryEngine = Depends(get_engine)) -> Case:
    return engine.get_case(case_id)


@app.get("/cases/{case_id}/audit", response_model=list[AuditEntry])
def get_audit_trail(case_id: str, engine: RecoveryEngine = Depends(get_engine)) -> list[AuditEntry]:
    return engine.get_audit_trail(case_id)


@app.post("/cases/{case_id}/interactions", response_model=Case)
def log_interaction(case_id: str, payload: InteractionRequest,
                    engine: RecoveryEngine = Depends(get_engine)) -> Case:
    return engine.log_interaction(case_id, payload.type, payload.details, payload.result, payload.actor_agent_id)


@app.post("/cases/{case_id}/documents", response_model=Case)
def log_document(case_id: str, payload: DocumentRequest, engine: RecoveryEngine = Depends(get_engine)) -> Case:
    return engine.log_document(case_id, payload.file_name, payload.type, payload.content, payload.actor_id)


@app.post("/cases/{case_id}/escalate", response_model=Case)
def escalate(case_id: str, payload: EscalationRequest, engine: RecoveryEngine = Depends(get_engine)) -> Case:
    return engine.escalate(case_id, payload.reason, payload.target_role, payload.actor_id)


@app.post("/cases/{case_id}/resolve", response_model=Case)
def resolve(case_id: str, payload: ResolutionRequest, engine: RecoveryEngine = Depends(get_engine)) -> Case:
    return engine.resolve(
        case_id, payload.resolution_type, payload.recovered_amount, payload.notes, payload.actor_id
    )


@app.post("/cases/{case_id}/reallocate", response_model=Case)
def manual_reallocate(case_id: str, payload: ReallocationRequest,
                      engine: RecoveryEngine = Depends(get_engine)) -> Case:
    """Privileged override: assign to an explicit DCA, bypassing scoring."""
    return engine.manual_reallocate(case_id, payload.agent_id, payload.actor_id)


# --- SLA ---


@app.get("/sla/status", response_model=list[SLAStatus])
def sla_status(now: Optional[datetime] = None, engine: RecoveryEngine = Depends(get_engine)) -> list[SLAStatus]:
    """Evaluate SLA breach status for all open allocated cases (applies penalties once)."""
    return engine.evaluate_sla(now)


# --- Agents ---


@app.get("/agents", response_model=list[Agent])
def list_agents(engine: RecoveryEngine = Depends(get_engine)) -> list[Agent]:
    return engine.list_agents()


@app.get("/agents/{agent_id}", response_model=Agent)
def get_agent(agent_id: str, engine: RecoveryEngine = Depends(get_engine)) -> Agent:
    return engine.get_agent(agent_id)


@app.get("/agents/{agent_id}/cases", response_model=list[Case])
def get_agent_cases(agent_id: str, engine: RecoveryEngine = Depends(get_engine)) -> list[Case]:
    """Cases currently owned by this DCA."""
    engine.get_agent(agent_id)
    return engine.list_cases(agent_id=agent_id)


@app.get("/metrics", response_model=PortfolioMetrics)
def metrics(engine: RecoveryEngine = Depends(get_engine)) -> PortfolioMetrics:
    return engine.portfolio_metrics()


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "engine_ready": _engine is not None}
