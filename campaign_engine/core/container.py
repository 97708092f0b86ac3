"""
Engine Container
Builds the store, adapters and services once from Settings.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from campaign_engine.core.config import Settings, get_settings
from campaign_engine.domain.interfaces.ai_scorer import AIScorer, UnavailableScorer
from campaign_engine.domain.interfaces.campaign_store import CampaignStore
from campaign_engine.domain.interfaces.rate_limit_state import RateLimitState
from campaign_engine.domain.interfaces.voice_provider import VoiceProviderClient
from campaign_engine.domain.services.call_dispatcher import CallDispatcher
from campaign_engine.domain.services.call_result_handler import CallResultHandler
from campaign_engine.domain.services.campaign_scheduler import CampaignScheduler
from campaign_engine.domain.services.processing_queue import ProcessingQueue
from campaign_engine.domain.services.provider_health_monitor import ProviderHealthMonitor
from campaign_engine.domain.services.rate_limiter import InMemoryRateLimitState, RateLimiter
from campaign_engine.domain.services.retry_policy import RetryPolicy
from campaign_engine.domain.services.sequence_engine import SequenceEngine
from campaign_engine.infrastructure.cache import RedisRateLimitState
from campaign_engine.infrastructure.connectors.internal_http import InternalApiChannels
from campaign_engine.infrastructure.llm.groq_scorer import GroqTranscriptScorer
from campaign_engine.infrastructure.storage.memory_store import InMemoryCampaignStore
from campaign_engine.infrastructure.storage.supabase_store import SupabaseCampaignStore
from campaign_engine.infrastructure.telephony.vapi_client import VapiClient

logger = logging.getLogger(__name__)


@dataclass
class EngineContainer:
    settings: Settings
    store: CampaignStore
    rate_limiter: RateLimiter
    voice_client: VoiceProviderClient
    channels: InternalApiChannels
    scorer: AIScorer
    dispatcher: CallDispatcher
    retry_policy: RetryPolicy
    scheduler: CampaignScheduler
    sequence_engine: SequenceEngine
    processing_queue: ProcessingQueue
    health_monitor: ProviderHealthMonitor
    call_result_handler: CallResultHandler

    async def close(self) -> None:
        await self.voice_client.cleanup()
        await self.channels.close()
        await self.rate_limiter.state.close()
        logger.info("Engine container closed")


async def _build_store(settings: Settings) -> CampaignStore:
    if settings.supabase_url and settings.supabase_service_key:
        return await SupabaseCampaignStore.create(
            settings.supabase_url,
            settings.supabase_service_key,
            timeout_seconds=settings.store_timeout_seconds,
        )
    logger.warning("Supabase not configured - using in-memory campaign store")
    return InMemoryCampaignStore()


def _build_rate_limit_state(settings: Settings) -> RateLimitState:
    if settings.redis_url:
        return RedisRateLimitState.from_url(settings.redis_url)
    logger.info("REDIS_URL not set - rate limiter state is process-local")
    return InMemoryRateLimitState()


def _build_scorer(settings: Settings) -> AIScorer:
    if settings.groq_api_key:
        return GroqTranscriptScorer(api_key=settings.groq_api_key, model=settings.groq_model)
    logger.warning("GROQ_API_KEY not set - AI processing items will fail until configured")
    return UnavailableScorer("GROQ_API_KEY not configured")


async def build_container(
    settings: Optional[Settings] = None,
    store: Optional[CampaignStore] = None,
    voice_client: Optional[VoiceProviderClient] = None,
    rate_limit_state: Optional[RateLimitState] = None,
    scorer: Optional[AIScorer] = None,
    channels: Optional[InternalApiChannels] = None
) -> EngineContainer:
    """Wire every component. Explicit arguments replace the configured adapters."""
    settings = settings or get_settings()

    store = store or await _build_store(settings)
    voice_client = voice_client or VapiClient(settings.vapi_api_key, settings.vapi_base_url)
    channels = channels or InternalApiChannels(settings.internal_api_base_url)
    scorer = scorer or _build_scorer(settings)

    rate_limiter = RateLimiter(
        state=rate_limit_state or _build_rate_limit_state(settings),
        settlement_seconds=settings.settlement_seconds,
    )
    dispatcher = CallDispatcher(
        store,
        voice_client,
        rate_limiter,
        default_country_code=settings.default_country_code,
    )
    retry_policy = RetryPolicy(store)
    scheduler = CampaignScheduler(
        store,
        rate_limiter,
        dispatcher,
        retry_policy,
        provider=voice_client.name,
    )
    sequence_engine = SequenceEngine(
        store,
        sms_sender=channels,
        email_sender=channels,
        call_trigger=channels,
        event_dispatcher=channels,
        batch_size=settings.sequence_batch_size,
        inter_step_delay_seconds=settings.inter_step_delay_seconds,
        default_wait_hours=settings.default_wait_hours,
    )
    processing_queue = ProcessingQueue(
        store,
        scorer,
        batch_size=settings.queue_batch_size,
        max_attempts=settings.queue_max_attempts,
        retry_backoff_minutes=settings.queue_retry_backoff_minutes,
        high_priority_threshold=settings.high_priority_threshold,
    )
    health_monitor = ProviderHealthMonitor(
        store,
        voice_client,
        timeout_seconds=settings.health_timeout_seconds,
        degraded_threshold_ms=settings.degraded_threshold_ms,
        down_after_failures=settings.down_after_failures,
    )
    call_result_handler = CallResultHandler(
        store,
        rate_limiter,
        processing_queue,
        min_duration_for_analysis=settings.min_duration_for_analysis,
    )

    logger.info(
        f"Engine container ready (store={type(store).__name__}, "
        f"rate_limit_state={type(rate_limiter.state).__name__}, provider={voice_client.name})"
    )
    return EngineContainer(
        settings=settings,
        store=store,
        rate_limiter=rate_limiter,
        voice_client=voice_client,
        channels=channels,
        scorer=scorer,
        dispatcher=dispatcher,
        retry_policy=retry_policy,
        scheduler=scheduler,
        sequence_engine=sequence_engine,
        processing_queue=processing_queue,
        health_monitor=health_monitor,
        call_result_handler=call_result_handler,
    )
