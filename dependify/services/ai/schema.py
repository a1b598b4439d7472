"""
Pydantic models shared across the orchestration core.

- Request inputs: TenantContext, ConversationMessage
- Model backend turns: TextBlock, ToolUseBlock, TokenUsage, ModelTurn
- Outputs: ClassifiedIntent, OrchestratorResult
"""
import json
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from dependify.services.ai.markets import MarketCode

TOOL_USE_STOP_REASON = "tool_use"


class ToolCategory(str, Enum):
    CRM = "crm"
    CONTENT = "content"
    SOCIAL = "social"
    FINANCE = "finance"
    VOICE = "voice"
    SEO = "seo"
    WEBSITE = "website"
    COMMUNICATION = "communication"
    STORAGE = "storage"
    ENRICHMENT = "enrichment"


class IntentCategory(str, Enum):
    CRM = "crm"
    CONTENT_CREATION = "content_creation"
    SOCIAL_MEDIA = "social_media"
    SEO = "seo"
    FINANCE = "finance"
    VOICE = "voice"
    PROPOSALS = "proposals"
    ANALYTICS = "analytics"
    GENERAL = "general"


class CostProfile(str, Enum):
    FREE = "free"
    PAID = "paid"
    METERED = "metered"


class ModelTier(str, Enum):
    """Cost/capability level of the model backend."""
    CAPABLE = "capable"
    CHEAP = "cheap"
    LOCAL = "local"


# ============================================================================
# REQUEST INPUTS
# ============================================================================

class TenantContext(BaseModel):
    """Per-request tenant identity, read-only for the orchestration core."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    user_id: str
    market: MarketCode
    plan: str
    settings: Dict[str, Any] = Field(default_factory=dict)


class ConversationMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_transcript(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}


# ============================================================================
# MODEL BACKEND TURNS
# ============================================================================

class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """A capability-invocation request; ``id`` must be echoed with the result."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


ContentBlock = Annotated[Union[TextBlock, ToolUseBlock], Field(discriminator="type")]


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


class ModelTurn(BaseModel):
    """One response from the model backend."""

    content: List[ContentBlock] = Field(default_factory=list)
    stop_reason: Optional[str] = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str = ""
    tier: ModelTier = ModelTier.CAPABLE

    @property
    def requests_capabilities(self) -> bool:
        return self.stop_reason == TOOL_USE_STOP_REASON

    def tool_uses(self) -> List[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    def first_text(self) -> Optional[str]:
        for block in self.content:
            if isinstance(block, TextBlock):
                return block.text
        return None

    def to_transcript(self) -> Dict[str, Any]:
        """Render this turn as the assistant message echoed back to the backend."""
        return {
            "role": "assistant",
            "content": [block.model_dump() for block in self.content],
        }


class ModelCallOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: ModelTier = ModelTier.CAPABLE
    system_prompt: Optional[str] = None
    max_tokens: int = Field(4096, ge=1)
    callable_schema: Optional[List[Dict[str, Any]]] = None
    agent: str = "orchestrator"


# ============================================================================
# OUTPUTS
# ============================================================================

class ClassifiedIntent(BaseModel):
    """
    Structured output of the intent classifier.

    Schema:
    {
      "category": "<IntentCategory>",
      "action": "generate_blog_post",
      "entities": {"topic": "solar panels"},
      "confidence": 0.0-1.0,
      "suggestedTools": ["content.blog.generate"]
    }
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    category: IntentCategory = IntentCategory.GENERAL
    action: str = "unknown"
    entities: Dict[str, str] = Field(default_factory=dict)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    suggested_tools: List[str] = Field(default_factory=list, alias="suggestedTools")

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.lower().strip()
        return value

    @field_validator("entities", mode="before")
    @classmethod
    def stringify_entities(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): v if isinstance(v, str) else str(v) for k, v in value.items()}
        return value

    @classmethod
    def default(cls) -> "ClassifiedIntent":
        """Neutral intent used whenever classification fails."""
        return cls()


class OrchestratorResult(BaseModel):
    """Final result of one Orchestrator.process() call."""

    model_config = ConfigDict(frozen=True)

    response: str
    tools_used: List[str] = Field(default_factory=list)
    tokens_used: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    model: str
    tier: ModelTier
    execution_time_ms: int = 0
    rounds: int = 0
    stopped_early: bool = False
    intent: Optional[ClassifiedIntent] = None


class SchemaValidationError(Exception):
    """Raised when LLM output fails schema validation."""

    def __init__(self, agent: str, message: str, raw_output: Optional[str] = None):
        super().__init__(message)
        self.agent = agent
        self.raw_output = raw_output


def validate_intent_payload(payload: Any) -> ClassifiedIntent:
    """
    Validate a parsed JSON payload as a ClassifiedIntent.

    Raises:
        SchemaValidationError if validation fails.
    """
    if not isinstance(payload, dict):
        raise SchemaValidationError(
            agent="intent",
            message=f"Intent payload must be an object, got {type(payload).__name__}",
        )
    try:
        return ClassifiedIntent.model_validate(payload)
    except ValidationError as exc:
        raise SchemaValidationError(
            agent="intent",
            message=f"Invalid intent payload: {exc}",
        ) from exc


_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_json_output(text: str) -> Any:
    """
    Parse model output as JSON, tolerating a surrounding markdown code fence.

    Raises:
        ValueError: if the text is not valid JSON
    """
    stripped = text.strip()
    match = _CODE_FENCE.match(stripped)
    if match:
        stripped = match.group(1)
    return json.loads(stripped)
