"""
Orchestrator loop.

Responsibilities:
- Classify the request (advisory only; never gates capabilities)
- Offer the model the tools supported in the tenant's market plus every skill
- Alternate model turns and capability dispatch until the model stops
  requesting capabilities or the round cap is hit
- Report usage: capabilities attempted, tokens, model, rounds, elapsed time

Failure policy:
- Classification and capability failures are absorbed
- ModelBackendError (after the client's own fallback) propagates
- A deadline expiry raises OrchestrationCancelledError; task cancellation
  propagates unchanged. Neither returns a partial result.
"""
import asyncio
import time
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from dependify.core.config import Settings, get_settings
from dependify.core.logging import bind_request_context, get_logger
from dependify.core.metrics import record_orchestrator_request
from dependify.core.tracing import StatusCode, get_tracer, record_exception
from dependify.services.ai.agents.intent import IntentClassifier
from dependify.services.ai.capabilities import register_builtin_capabilities
from dependify.services.ai.dispatch import CapabilityDispatcher
from dependify.services.ai.errors import ModelBackendError, OrchestrationCancelledError
from dependify.services.ai.llm_client import LocalModelClient, ModelClient
from dependify.services.ai.registry import CapabilityRegistry
from dependify.services.ai.schema import (
    ClassifiedIntent,
    ConversationMessage,
    ModelCallOptions,
    ModelTier,
    ModelTurn,
    OrchestratorResult,
    TenantContext,
)

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are Dependify AI, an intelligent business assistant for small and medium enterprises.

You have access to a comprehensive set of tools that help businesses:
- Manage contacts, leads, and deals (CRM)
- Create and publish content (blogs, social media, emails)
- Track SEO performance and keywords
- Send invoices and track payments
- Run voice call campaigns
- Generate professional proposals
- Analyze business metrics and generate reports

Your role is to:
1. Understand what the business owner needs
2. Select and use the right tools to accomplish their goal
3. Provide clear, actionable results
4. Always think in terms of business outcomes, not just task completion

Be proactive: if you see an opportunity to add value beyond what was asked, mention it (but don't do it without permission).
Be concise: business owners are busy. Get to the point.
Be specific: use actual data from the tools, not generic advice."""

NO_COMMENTARY_RESPONSE = "I completed the task but had no additional commentary."
STEP_LIMIT_RESPONSE = (
    "I reached the step limit for this request before finishing. "
    "Ask me to continue and I will pick up where I left off."
)

HistoryItem = Union[ConversationMessage, Mapping[str, Any]]


class OrchestratorState(str, Enum):
    CLASSIFY = "classify"
    FILTER_CAPABILITIES = "filter_capabilities"
    MODEL_TURN = "model_turn"
    TOOL_DISPATCH = "tool_dispatch"
    FINALIZE = "finalize"


class Orchestrator:
    """
    Drives one request through classification, model turns and capability dispatch.

    The registry and model client are injected; an Orchestrator holds no
    per-request state, so one instance serves concurrent process() calls.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        model_client: ModelClient,
        classifier: Optional[IntentClassifier] = None,
        system_prompt: str = SYSTEM_PROMPT,
        max_rounds: int = 8,
        max_tokens: int = 4096,
        tier: ModelTier = ModelTier.CAPABLE,
        timeout_seconds: Optional[float] = None,
    ):
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.registry = registry
        self.model_client = model_client
        self.classifier = classifier
        self.system_prompt = system_prompt
        self.max_rounds = max_rounds
        self.max_tokens = max_tokens
        self.tier = ModelTier(tier)
        self.timeout_seconds = timeout_seconds
        self.dispatcher = CapabilityDispatcher(registry)

    async def process(
        self,
        message: str,
        context: TenantContext,
        conversation_history: Optional[Sequence[HistoryItem]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> OrchestratorResult:
        """
        Turn a user message into a final answer.

        Args:
            message: Free-text request from the user
            context: Tenant identity and market
            conversation_history: Prior messages, oldest first
            timeout_seconds: Deadline for the whole call (overrides the
                instance default; None means no deadline)

        Raises:
            ModelBackendError: the model backend failed on both tiers
            OrchestrationCancelledError: the deadline expired
        """
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds

        with bind_request_context(tenant_id=context.tenant_id, user_id=context.user_id) as request_id:
            with get_tracer().start_as_current_span("orchestrator.process") as span:
                span.set_attribute("request.id", request_id)
                span.set_attribute("tenant.id", context.tenant_id)
                span.set_attribute("tenant.market", context.market.value)

                logger.info(
                    "orchestrator_request_started",
                    market=context.market.value,
                    history_length=len(conversation_history or []),
                    timeout_seconds=timeout,
                )

                try:
                    run = self._run(message, context, conversation_history or [])
                    if timeout is None:
                        result = await run
                    else:
                        result = await asyncio.wait_for(run, timeout)
                except asyncio.TimeoutError as exc:
                    record_orchestrator_request("cancelled")
                    span.set_status(StatusCode.ERROR, "deadline exceeded")
                    logger.warning("orchestrator_deadline_exceeded", timeout_seconds=timeout)
                    raise OrchestrationCancelledError(
                        f"Request did not complete within {timeout} seconds"
                    ) from exc
                except asyncio.CancelledError:
                    record_orchestrator_request("cancelled")
                    logger.info("orchestrator_request_cancelled")
                    raise
                except ModelBackendError as exc:
                    record_orchestrator_request("failed")
                    record_exception(exc)
                    logger.error(
                        "orchestrator_model_backend_failed",
                        error=str(exc),
                        tier=exc.tier,
                        status_code=exc.status_code,
                    )
                    raise

                span.set_attribute("orchestrator.rounds", result.rounds)
                span.set_attribute("orchestrator.tokens_used", result.tokens_used)
                span.set_attribute("orchestrator.stopped_early", result.stopped_early)

        return result

    async def _run(
        self,
        message: str,
        context: TenantContext,
        conversation_history: Sequence[HistoryItem],
    ) -> OrchestratorResult:
        start = time.time()

        self._enter_state(OrchestratorState.CLASSIFY, 0)
        intent = await self._classify(message)

        self._enter_state(OrchestratorState.FILTER_CAPABILITIES, 0)
        offered_tools = self.registry.list_for_market(context.market)
        callable_schema = self.registry.to_model_callable_schema(context.market)
        logger.debug(
            "orchestrator_capabilities_offered",
            tools=[t.id for t in offered_tools],
            total=len(callable_schema),
        )

        options = ModelCallOptions(
            tier=self.tier,
            system_prompt=self.system_prompt,
            max_tokens=self.max_tokens,
            callable_schema=callable_schema or None,
            agent="orchestrator",
        )

        transcript: List[Dict[str, Any]] = [
            self._history_entry(item) for item in conversation_history
        ]
        transcript.append({"role": "user", "content": message})

        tools_used: List[str] = []
        input_tokens = 0
        output_tokens = 0
        rounds = 0
        stopped_early = False

        while True:
            self._enter_state(OrchestratorState.MODEL_TURN, rounds + 1)
            turn = await self._model_turn(transcript, options, rounds + 1)
            rounds += 1
            input_tokens += turn.usage.input_tokens
            output_tokens += turn.usage.output_tokens

            requests = turn.tool_uses()
            if not turn.requests_capabilities or not requests:
                break

            if rounds >= self.max_rounds:
                stopped_early = True
                logger.warning(
                    "orchestrator_round_cap_reached",
                    max_rounds=self.max_rounds,
                    pending_capabilities=[r.name for r in requests],
                )
                break

            self._enter_state(OrchestratorState.TOOL_DISPATCH, rounds)
            invocations = await self.dispatcher.dispatch_all(requests, context)
            tools_used.extend(inv.capability_id for inv in invocations)

            transcript.append(turn.to_transcript())
            transcript.append({
                "role": "user",
                "content": [inv.to_tool_result() for inv in invocations],
            })

        self._enter_state(OrchestratorState.FINALIZE, rounds)
        text = turn.first_text()
        if text is None:
            text = STEP_LIMIT_RESPONSE if stopped_early else NO_COMMENTARY_RESPONSE

        result = OrchestratorResult(
            response=text,
            tools_used=tools_used,
            tokens_used=input_tokens + output_tokens,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            model=turn.model,
            tier=turn.tier,
            execution_time_ms=int((time.time() - start) * 1000),
            rounds=rounds,
            stopped_early=stopped_early,
            intent=intent,
        )

        record_orchestrator_request("stopped_early" if stopped_early else "completed", rounds)
        logger.info(
            "orchestrator_request_completed",
            rounds=rounds,
            tools_used=tools_used,
            tokens_used=result.tokens_used,
            model=result.model,
            tier=result.tier.value,
            stopped_early=stopped_early,
            execution_time_ms=result.execution_time_ms,
        )
        return result

    @staticmethod
    def _enter_state(state: OrchestratorState, round_number: int) -> None:
        logger.debug("orchestrator_state_entered", state=state.value, round=round_number)

    async def _classify(self, message: str) -> Optional[ClassifiedIntent]:
        if self.classifier is None:
            return None
        try:
            intent = await self.classifier.classify(message)
        except Exception as exc:
            logger.warning(
                "orchestrator_intent_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return ClassifiedIntent.default()
        return intent

    async def _model_turn(
        self,
        transcript: List[Dict[str, Any]],
        options: ModelCallOptions,
        round_number: int,
    ) -> ModelTurn:
        with get_tracer().start_as_current_span("orchestrator.model_turn") as span:
            span.set_attribute("orchestrator.round", round_number)
            # Snapshot: the transcript keeps growing after this call returns
            turn = await self.model_client.call(list(transcript), options)
            span.set_attribute("llm.model", turn.model)
            span.set_attribute("llm.tier", turn.tier.value)
            span.set_attribute("llm.stop_reason", turn.stop_reason or "")

        logger.debug(
            "orchestrator_model_turn",
            round=round_number,
            stop_reason=turn.stop_reason,
            tier=turn.tier.value,
            input_tokens=turn.usage.input_tokens,
            output_tokens=turn.usage.output_tokens,
        )
        return turn

    @staticmethod
    def _history_entry(item: HistoryItem) -> Dict[str, Any]:
        if not isinstance(item, ConversationMessage):
            item = ConversationMessage.model_validate(item)
        return item.to_transcript()


def create_orchestrator(
    settings: Optional[Settings] = None,
    registry: Optional[CapabilityRegistry] = None,
    model_client: Optional[ModelClient] = None,
    local_client: Optional[LocalModelClient] = None,
) -> Orchestrator:
    """
    Wire an Orchestrator from settings.

    A registry passed in is used as-is; otherwise a new one is created with
    the built-in capabilities registered against ``model_client``.
    """
    settings = settings or get_settings()
    model_client = model_client or ModelClient.from_settings(settings)

    if registry is None:
        registry = CapabilityRegistry()
        register_builtin_capabilities(
            registry,
            model_client,
            local_client or LocalModelClient.from_settings(settings),
        )

    return Orchestrator(
        registry=registry,
        model_client=model_client,
        classifier=IntentClassifier(model_client),
        max_rounds=settings.max_rounds,
        max_tokens=settings.max_tokens,
        timeout_seconds=settings.request_timeout_seconds,
    )
