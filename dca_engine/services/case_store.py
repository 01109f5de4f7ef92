"""
Case storage: id generation, the case collection and the pending-allocation queue.

Cases are never deleted. The pending queue holds ids of PRIORITIZED cases whose
allocation attempt returned NoCapacity, ordered by tier (CRITICAL first) then
arrival.
"""

import heapq
import itertools
import threading
from typing import List, Optional

from dca_engine.config import CASE_ID_PREFIX, CASE_ID_START
from dca_engine.errors import CaseNotFound
from dca_engine.models import Case, RiskTier

# Lower rank pops first
TIER_RANK = {
    RiskTier.CRITICAL: 0,
    RiskTier.HIGH: 1,
    RiskTier.MEDIUM: 2,
    RiskTier.LOW: 3,
}


class CaseIdGenerator:
    """Issues FDX-1001, FDX-1002, ... Thread-safe."""

    def __init__(self, prefix: str = CASE_ID_PREFIX, start: int = CASE_ID_START):
        self._prefix = prefix
        self._counter = itertools.count(start + 1)
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            return f"{self._prefix}-{next(self._counter)}"


class InMemoryCaseStore:
    """Insertion-ordered case collection. Returns live records; the engine snapshots them."""

    def __init__(self):
        self._cases: dict[str, Case] = {}

    def add(self, case: Case) -> None:
        self._cases[case.case_id] = case

    def get(self, case_id: str) -> Case:
        case = self._cases.get(case_id)
        if case is None:
            raise CaseNotFound(case_id)
        return case

    def list(self, agent_id: Optional[str] = None) -> List[Case]:
        """All cases, or only those currently allocated to agent_id."""
        if agent_id is None:
            return list(self._cases.values())
        return [c for c in self._cases.values() if c.allocated_agent == agent_id]

    def __len__(self) -> int:
        return len(self._cases)


class PendingQueue:
    """Priority queue of case ids awaiting capacity (heapq)."""

    def __init__(self):
        # Heap entries: (tier_rank, insertion_order, case_id)
        self._heap: List[tuple] = []
        self._order = itertools.count()

    def push(self, case_id: str, tier: RiskTier) -> None:
        heapq.heappush(self._heap, (TIER_RANK[tier], next(self._order), case_id))

    def pop(self) -> Optional[str]:
        """Remove and return the next case id. None if empty."""
        if not self._heap:
            return None
        _rank, _order, case_id = heapq.heappop(self._heap)
        return case_id

    def peek(self) -> Optional[str]:
        if not self._heap:
            return None
        return self._heap[0][2]

    def remove(self, case_id: str) -> bool:
        """Drop a case id from anywhere in the queue. Returns True if it was queued."""
        kept = [entry for entry in self._heap if entry[2] != case_id]
        if len(kept) == len(self._heap):
            return False
        heapq.heapify(kept)
        self._heap = kept
        return True

    def snapshot(self) -> List[str]:
        """Case ids in pop order (read-only)."""
        return [entry[2] for entry in sorted(self._heap)]

    def size(self) -> int:
        return len(self._heap)

    def clear(self) -> None:
        self._heap = []
