"""Exception types raised by the allocation engine.

NoCapacity is not an exception: an allocation attempt with every agent
saturated returns a NoCapacity value (see models.py) instead of raising.
"""


class EngineError(Exception):
    """Base class for engine errors."""


class NotFound(EngineError):
    """A case or agent id is unknown."""


class CaseNotFound(NotFound):
    def __init__(self, case_id: str):
        super().__init__(f"Case not found: {case_id}")
        self.case_id = case_id


class AgentNotFound(NotFound):
    def __init__(self, agent_id: str):
        super().__init__(f"Agent not found: {agent_id}")
        self.agent_id = agent_id


class InvalidTransition(EngineError):
    """Lifecycle violation, e.g. mutating a RESOLVED case."""

    def __init__(self, case_id: str, from_status: str, action: str):
        super().__init__(f"Cannot {action} case {case_id} in status {from_status}")
        self.case_id = case_id
        self.from_status = from_status
        self.action = action


class CapacityExceeded(EngineError):
    """A reservation would push an agent past its capacity."""

    def __init__(self, agent_id: str, capacity: int):
        super().__init__(f"Agent {agent_id} is at capacity ({capacity})")
        self.agent_id = agent_id
        self.capacity = capacity


class DataIntegrityError(EngineError):
    """A stored allocated-agent reference has no matching agent record."""
