"""
Intent classification agent (cheap tier).

Responsibilities:
- Map a free-text business request to a ClassifiedIntent
- Enforce JSON-only schema via pydantic validation
- Never fail: any backend, parse or schema error yields the neutral intent

The result is advisory metadata; the orchestrator does not gate capabilities on it.
"""
from dependify.core.logging import get_logger
from dependify.core.metrics import record_llm_schema_validation_failure
from dependify.services.ai.errors import ModelBackendError
from dependify.services.ai.llm_client import ModelClient
from dependify.services.ai.schema import (
    ClassifiedIntent,
    ModelTier,
    SchemaValidationError,
    parse_json_output,
    validate_intent_payload,
)

logger = get_logger(__name__)

INTENT_CLASSIFIER_PROMPT = """You are an intent classifier for Dependify, a business operating system.
Classify the user's message into a structured intent object.

Available intent categories:
- crm: Contact management, leads, deals, pipeline
- content_creation: Blog posts, social captions, emails, content repurposing
- social_media: Social account management, posting, analytics
- seo: Keyword research, rankings, content optimization
- finance: Invoices, payments, transactions, accounting
- voice: Phone calls, voice agents, call campaigns
- proposals: Proposals, quotes, contracts
- analytics: Reports, insights, dashboard data
- general: General business questions, help, other

Respond with JSON only:
{
  "category": "<category>",
  "action": "<specific action like 'create_contact', 'generate_blog_post', etc>",
  "entities": { "<entity_name>": "<entity_value>" },
  "confidence": <0-1 float>,
  "suggestedTools": ["<tool_id_1>", "<tool_id_2>"]
}"""


class IntentClassifier:
    """Single-shot classifier backed by the cheap model tier."""

    def __init__(self, model_client: ModelClient, max_tokens: int = 512):
        self._model_client = model_client
        self.max_tokens = max_tokens

    async def classify(self, message: str) -> ClassifiedIntent:
        """
        Classify a user message.

        Returns:
            The parsed intent, or ClassifiedIntent.default() on any failure.
        """
        if not message or not message.strip():
            return ClassifiedIntent.default()

        try:
            text = await self._model_client.generate_text(
                message,
                system_prompt=INTENT_CLASSIFIER_PROMPT,
                tier=ModelTier.CHEAP,
                max_tokens=self.max_tokens,
                agent="intent",
            )
        except ModelBackendError as exc:
            logger.warning(
                "intent_llm_unavailable",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return ClassifiedIntent.default()

        try:
            payload = parse_json_output(text)
        except ValueError as exc:
            record_llm_schema_validation_failure("intent")
            logger.warning(
                "intent_llm_invalid_json",
                error=str(exc),
                raw=text[:200],
            )
            return ClassifiedIntent.default()

        try:
            intent = validate_intent_payload(payload)
        except SchemaValidationError as exc:
            record_llm_schema_validation_failure("intent")
            logger.warning(
                "intent_llm_schema_invalid",
                error=str(exc),
                raw_payload=payload,
            )
            return ClassifiedIntent.default()

        logger.info(
            "intent_classified",
            category=intent.category.value,
            action=intent.action,
            confidence=intent.confidence,
        )
        return intent
