"""
AI Scorer Interface
Opaque, possibly slow, possibly failing transcript analysis
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from campaign_engine.core.exceptions import ScoringError
from campaign_engine.domain.models.call import AnalysisResult, CallAttempt


class AIScorer(ABC):

    @abstractmethod
    async def analyze(
        self,
        call: CallAttempt,
        campaign_context: Optional[Dict[str, Any]] = None
    ) -> AnalysisResult:
        """
        Analyze a completed call transcript.

        Raises:
            ScoringError: If analysis fails
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        pass


class UnavailableScorer(AIScorer):
    """Used when no scoring backend is configured; every analysis fails."""

    def __init__(self, reason: str = "AI scoring not configured"):
        self._reason = reason

    async def analyze(
        self,
        call: CallAttempt,
        campaign_context: Optional[Dict[str, Any]] = None
    ) -> AnalysisResult:
        raise ScoringError(self._reason, {"call_id": call.id})

    @property
    def name(self) -> str:
        return "unavailable"
