"""
In-memory stand-ins for the model backends and turn builders used across tests.

No real HTTP calls are made; turns emulate Anthropic Messages API responses.
"""
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from dependify.services.ai.errors import ModelBackendError
from dependify.services.ai.markets import ALL_MARKETS
from dependify.services.ai.registry import SkillDefinition, ToolDefinition
from dependify.services.ai.schema import (
    ModelCallOptions,
    ModelTier,
    ModelTurn,
    TextBlock,
    TokenUsage,
    ToolCategory,
    ToolUseBlock,
)

CAPABLE_MODEL = "claude-sonnet-4-5"
CHEAP_MODEL = "claude-haiku-4-5"


def text_turn(
    text: Optional[str] = "Done.",
    model: str = CAPABLE_MODEL,
    tier: ModelTier = ModelTier.CAPABLE,
    input_tokens: int = 10,
    output_tokens: int = 5,
    stop_reason: str = "end_turn",
) -> ModelTurn:
    content = [TextBlock(text=text)] if text is not None else []
    return ModelTurn(
        content=content,
        stop_reason=stop_reason,
        usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens),
        model=model,
        tier=tier,
    )


def tool_turn(
    *calls: Tuple[str, str, Dict[str, Any]],
    text: Optional[str] = None,
    model: str = CAPABLE_MODEL,
    tier: ModelTier = ModelTier.CAPABLE,
    input_tokens: int = 20,
    output_tokens: int = 10,
) -> ModelTurn:
    """A turn requesting capabilities; each call is (call_id, model_name, input)."""
    content: List[Any] = [TextBlock(text=text)] if text is not None else []
    content += [ToolUseBlock(id=call_id, name=name, input=input) for call_id, name, input in calls]
    return ModelTurn(
        content=content,
        stop_reason="tool_use",
        usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens),
        model=model,
        tier=tier,
    )


class DummyModelClient:
    """
    Scripted ModelClient: call() returns queued turns and generate_text()
    returns queued strings, in order. Queued exceptions are raised instead.
    """

    def __init__(self, turns: Iterable[Any] = (), texts: Iterable[Any] = ()):
        self.turns = list(turns)
        self.texts = list(texts)
        self.calls: List[Tuple[List[Dict[str, Any]], ModelCallOptions]] = []
        self.text_calls: List[Dict[str, Any]] = []

    async def call(self, transcript, options=None):
        self.calls.append((transcript, options))
        if not self.turns:
            raise AssertionError("unexpected model call")
        item = self.turns.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def generate_text(
        self,
        prompt,
        system_prompt=None,
        tier=ModelTier.CHEAP,
        max_tokens=2048,
        agent="generate_text",
    ):
        self.text_calls.append({
            "prompt": prompt,
            "system_prompt": system_prompt,
            "tier": tier,
            "max_tokens": max_tokens,
            "agent": agent,
        })
        if not self.texts:
            raise ModelBackendError("no scripted text", tier=ModelTier(tier).value)
        item = self.texts.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class DummyLocalClient:
    """Stand-in for LocalModelClient."""

    def __init__(self, response: Any):
        self.response = response
        self.prompts: List[Tuple[str, Optional[str]]] = []

    async def generate(self, prompt, system_prompt=None):
        self.prompts.append((prompt, system_prompt))
        if isinstance(self.response, BaseException):
            raise self.response
        return self.response


Handler = Callable[[Dict[str, Any], Any], Awaitable[Any]]


async def echo_handler(input, context):
    return {"echo": input, "market": context.market.value}


def make_tool(
    capability_id: str,
    handler: Handler = echo_handler,
    markets=ALL_MARKETS,
    category: ToolCategory = ToolCategory.CRM,
) -> ToolDefinition:
    return ToolDefinition(
        id=capability_id,
        name=capability_id.rsplit(".", 1)[-1].title(),
        description=f"Test tool {capability_id}",
        category=category,
        handler=handler,
        input_schema={"properties": {"value": {"type": "string"}}},
        market_support=frozenset(markets),
    )


def make_skill(
    capability_id: str,
    handler: Handler = echo_handler,
    category: ToolCategory = ToolCategory.CONTENT,
) -> SkillDefinition:
    return SkillDefinition(
        id=capability_id,
        name=capability_id.rsplit(".", 1)[-1].title(),
        description=f"Test skill {capability_id}",
        category=category,
        handler=handler,
        input_schema={"properties": {"topic": {"type": "string"}}},
    )
