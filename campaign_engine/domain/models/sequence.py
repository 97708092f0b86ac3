"""
Sequence Domain Models
Multi-channel touch cadences (call -> wait -> sms -> wait -> email)
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from campaign_engine.core.exceptions import InvalidTransitionError


class StepType(str, Enum):
    CALL = "call"
    SMS = "sms"
    EMAIL = "email"
    WAIT = "wait"


class ProgressStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    def transition(self, target: "ProgressStatus") -> "ProgressStatus":
        """Return target if the move is legal, raise otherwise."""
        target = ProgressStatus(target)
        if target not in _PROGRESS_TRANSITIONS[self]:
            raise InvalidTransitionError("sequence_progress", self.value, target.value)
        return target


_PROGRESS_TRANSITIONS = {
    # ACTIVE -> ACTIVE is a step advance
    ProgressStatus.ACTIVE: {
        ProgressStatus.ACTIVE,
        ProgressStatus.PAUSED,
        ProgressStatus.COMPLETED,
        ProgressStatus.FAILED,
    },
    # Reactivation is external
    ProgressStatus.PAUSED: {ProgressStatus.ACTIVE},
    ProgressStatus.COMPLETED: set(),
    ProgressStatus.FAILED: set(),
}


class SequenceStep(BaseModel):
    """One step of a sequence. `config` carries the channel payload."""
    id: str
    sequence_id: str
    step_order: int
    step_type: StepType
    config: Dict[str, Any] = Field(default_factory=dict)


class Sequence(BaseModel):
    id: str
    campaign_id: Optional[str] = None
    organization_id: str
    is_active: bool = True
    steps: List[SequenceStep] = Field(default_factory=list)

    def ordered_steps(self) -> List[SequenceStep]:
        return sorted(self.steps, key=lambda step: step.step_order)


class SequenceProgress(BaseModel):
    """Position of one contact inside one sequence"""
    id: str
    sequence_id: str
    contact_id: str
    current_step_id: Optional[str] = None
    status: ProgressStatus = ProgressStatus.ACTIVE
    next_action_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
