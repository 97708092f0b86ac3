"""
Groq Transcript Scorer
Call transcript analysis using Groq chat completions in JSON mode
"""
import json
import logging
from typing import Any, Dict, Optional

from groq import AsyncGroq

from campaign_engine.core.exceptions import ConfigurationError, ScoringError
from campaign_engine.domain.interfaces.ai_scorer import AIScorer
from campaign_engine.domain.models.call import AnalysisResult, CallAttempt

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You analyze transcripts of outbound sales calls.
Respond with a single JSON object with these keys:
- "outcome": short label such as "interested", "not_interested", "appointment_booked", "callback_requested", "voicemail", "wrong_number"
- "sentiment": one of "positive", "neutral", "negative"
- "summary": two or three sentences describing the call
- "interest_level": integer 0-100
- "next_steps": short list of follow-up actions
Respond with JSON only."""

MAX_TRANSCRIPT_CHARS = 12000


class GroqTranscriptScorer(AIScorer):

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "llama-3.3-70b-versatile",
        temperature: float = 0.2,
        max_tokens: int = 600,
        client: Optional[AsyncGroq] = None
    ):
        if client is None and not api_key:
            raise ConfigurationError("Groq API key not configured")
        self._client = client or AsyncGroq(api_key=api_key)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def name(self) -> str:
        return "groq"

    def _build_user_prompt(self, call: CallAttempt, campaign_context: Optional[Dict[str, Any]]) -> str:
        parts = []
        if campaign_context:
            parts.append(f"Campaign: {campaign_context.get('name') or 'unknown'}")
        parts.append(f"Call duration: {int(call.duration)}s")
        if call.end_reason:
            parts.append(f"Ended because: {call.end_reason}")
        parts.append("Transcript:")
        parts.append((call.transcript or "")[:MAX_TRANSCRIPT_CHARS])
        return "\n".join(parts)

    async def analyze(
        self,
        call: CallAttempt,
        campaign_context: Optional[Dict[str, Any]] = None
    ) -> AnalysisResult:
        if not call.transcript:
            raise ScoringError("Call has no transcript", {"call_id": call.id})

        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": self._build_user_prompt(call, campaign_context)},
                ],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            raise ScoringError(f"Groq analysis failed: {e}", {"call_id": call.id}, e)

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise ScoringError("Groq returned an empty analysis", {"call_id": call.id})

        try:
            data = json.loads(content)
        except ValueError as e:
            raise ScoringError("Groq returned invalid JSON", {"call_id": call.id}, e)
        if not isinstance(data, dict):
            raise ScoringError("Groq analysis is not a JSON object", {"call_id": call.id})

        logger.debug(f"Call {call.id} analyzed: outcome={data.get('outcome')}")
        return AnalysisResult(
            outcome=data.get("outcome"),
            sentiment=data.get("sentiment"),
            summary=data.get("summary"),
            structured_data={
                k: v for k, v in data.items() if k not in ("outcome", "sentiment", "summary")
            },
        )
