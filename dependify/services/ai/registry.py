"""
Capability registry: the store of tools and skills the model may invoke.

Two capability kinds share one invocation contract:
- Tools: deterministic or side-effecting integrations, gated by market
- Skills: model-backed sub-routines, offered in every market

Capability ids are dotted namespaces (``content.blog.generate``). The model
backend's function-name format forbids ``.``, so ids are offered to the model
with ``.`` replaced by ``__`` and decoded back on dispatch. Ids therefore must
not contain ``__`` themselves; registration rejects them.

Registration takes a lock and publishes a new mapping; lookups read the
current mapping without locking.
"""
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Union

from dependify.core.logging import get_logger
from dependify.core.metrics import update_registered_capabilities
from dependify.services.ai.errors import CapabilityRegistrationError
from dependify.services.ai.markets import ALL_MARKETS, MarketCode
from dependify.services.ai.schema import CostProfile, ModelTier, TenantContext, ToolCategory

logger = get_logger(__name__)

NAMESPACE_SEPARATOR = "."
MODEL_SAFE_SEPARATOR = "__"

_CAPABILITY_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+(\.[A-Za-z0-9_-]+)*$")
_MODEL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

CapabilityHandler = Callable[[Dict[str, Any], TenantContext], Awaitable[Any]]


def to_model_name(capability_id: str) -> str:
    """Encode a capability id into a model-safe function name."""
    return capability_id.replace(NAMESPACE_SEPARATOR, MODEL_SAFE_SEPARATOR)


def from_model_name(name: str) -> str:
    """Decode a model-safe function name back into a capability id."""
    return name.replace(MODEL_SAFE_SEPARATOR, NAMESPACE_SEPARATOR)


class CapabilityKind(str, Enum):
    TOOL = "tool"
    SKILL = "skill"


@dataclass(frozen=True)
class Capability(ABC):
    """
    Common contract for everything the model can invoke.

    Attributes:
        id: Globally unique (per kind) dotted identifier
        name: Human-readable display name
        description: What the capability does, shown to the model
        category: Tool category tag
        handler: ``async (input, tenant_context) -> result``
        input_schema: JSON-schema-like description of the input object
    """

    id: str
    name: str
    description: str
    category: ToolCategory
    handler: CapabilityHandler = field(repr=False, compare=False)
    input_schema: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    @abstractmethod
    def kind(self) -> CapabilityKind:
        """Tool or skill; fixed by each concrete definition class."""

    def __post_init__(self):
        if not _CAPABILITY_ID_PATTERN.match(self.id):
            raise CapabilityRegistrationError(f"Invalid capability id {self.id!r}")
        if MODEL_SAFE_SEPARATOR in self.id:
            raise CapabilityRegistrationError(
                f"Capability id {self.id!r} contains {MODEL_SAFE_SEPARATOR!r}, "
                "which would not survive model-name encoding"
            )
        if not _MODEL_NAME_PATTERN.match(self.model_name):
            raise CapabilityRegistrationError(
                f"Capability id {self.id!r} encodes to an invalid model name {self.model_name!r}"
            )
        object.__setattr__(self, "category", ToolCategory(self.category))

    @property
    def model_name(self) -> str:
        return to_model_name(self.id)

    async def execute(self, input: Dict[str, Any], context: TenantContext) -> Any:
        return await self.handler(input, context)

    def _model_description(self) -> str:
        return f"{self.name}: {self.description}"

    def to_model_schema(self) -> Dict[str, Any]:
        """Name/description/input-schema triple for the model's tool list."""
        return {
            "name": self.model_name,
            "description": self._model_description(),
            "input_schema": {"type": "object", **self.input_schema},
        }


@dataclass(frozen=True)
class ToolDefinition(Capability):
    """An integration-side capability, available only in the markets it supports."""

    market_support: FrozenSet[MarketCode] = ALL_MARKETS
    output_schema: Dict[str, Any] = field(default_factory=dict, compare=False)
    cost_profile: CostProfile = CostProfile.FREE

    kind = CapabilityKind.TOOL

    def __post_init__(self):
        super().__post_init__()
        markets = frozenset(MarketCode(m) for m in self.market_support)
        if not markets:
            raise CapabilityRegistrationError(f"Tool {self.id!r} must support at least one market")
        object.__setattr__(self, "market_support", markets)
        object.__setattr__(self, "cost_profile", CostProfile(self.cost_profile))

    def supports(self, market: MarketCode) -> bool:
        return MarketCode(market) in self.market_support


@dataclass(frozen=True)
class SkillDefinition(Capability):
    """A model-backed capability with its own prompt and model tier hint."""

    model_tier: ModelTier = ModelTier.CHEAP
    system_prompt: str = ""

    kind = CapabilityKind.SKILL

    def _model_description(self) -> str:
        return f"[AI Skill] {self.name}: {self.description}"


AnyCapability = Union[ToolDefinition, SkillDefinition]


class CapabilityRegistry:
    """
    Store of tools and skills keyed by id, in registration order.

    Overwriting an id replaces the definition in place and logs a warning.
    """

    def __init__(self):
        self._lock = Lock()
        self._tools: Dict[str, ToolDefinition] = {}
        self._skills: Dict[str, SkillDefinition] = {}

    def _publish(self, current: Dict[str, Any], capability: Capability) -> Dict[str, Any]:
        updated = dict(current)
        if capability.id in updated:
            logger.warning(
                "capability_overwritten",
                capability_id=capability.id,
                kind=capability.kind.value,
            )
        updated[capability.id] = capability
        logger.info("capability_registered", capability_id=capability.id, kind=capability.kind.value)
        update_registered_capabilities(capability.kind.value, len(updated))
        return updated

    def register(self, tool: ToolDefinition) -> None:
        """Insert or overwrite a tool by id."""
        if not isinstance(tool, ToolDefinition):
            raise CapabilityRegistrationError(f"register() expects a ToolDefinition, got {type(tool).__name__}")
        with self._lock:
            self._tools = self._publish(self._tools, tool)

    def register_skill(self, skill: SkillDefinition) -> None:
        """Insert or overwrite a skill by id."""
        if not isinstance(skill, SkillDefinition):
            raise CapabilityRegistrationError(
                f"register_skill() expects a SkillDefinition, got {type(skill).__name__}"
            )
        with self._lock:
            self._skills = self._publish(self._skills, skill)

    def register_all(self, capabilities: Iterable[AnyCapability]) -> None:
        for capability in capabilities:
            if isinstance(capability, SkillDefinition):
                self.register_skill(capability)
            else:
                self.register(capability)

    def get_tool(self, capability_id: str) -> Optional[ToolDefinition]:
        return self._tools.get(capability_id)

    def get_skill(self, capability_id: str) -> Optional[SkillDefinition]:
        return self._skills.get(capability_id)

    def get(self, kind: CapabilityKind, capability_id: str) -> Optional[AnyCapability]:
        if CapabilityKind(kind) == CapabilityKind.TOOL:
            return self.get_tool(capability_id)
        return self.get_skill(capability_id)

    def resolve(self, capability_id: str) -> Optional[AnyCapability]:
        """Look up an id as a tool first, then as a skill."""
        return self.get_tool(capability_id) or self.get_skill(capability_id)

    def list(
        self,
        kind: CapabilityKind,
        category: Optional[ToolCategory] = None,
    ) -> List[AnyCapability]:
        """All definitions of one kind in registration order, optionally by category."""
        source = self._tools if CapabilityKind(kind) == CapabilityKind.TOOL else self._skills
        items = list(source.values())
        if category is None:
            return items
        category = ToolCategory(category)
        return [c for c in items if c.category == category]

    def list_tools(self, category: Optional[ToolCategory] = None) -> List[ToolDefinition]:
        return self.list(CapabilityKind.TOOL, category)

    def list_skills(self, category: Optional[ToolCategory] = None) -> List[SkillDefinition]:
        return self.list(CapabilityKind.SKILL, category)

    def list_for_market(self, market: MarketCode) -> List[ToolDefinition]:
        """Tools whose market-support set contains ``market``."""
        market = MarketCode(market)
        return [tool for tool in self._tools.values() if tool.supports(market)]

    def to_model_callable_schema(self, market: Optional[MarketCode] = None) -> List[Dict[str, Any]]:
        """
        Tool-calling schema for the model backend: tools first, then skills.

        Args:
            market: When given, only tools supported in this market are offered.
                Skills are always offered.
        """
        tools = self.list_tools() if market is None else self.list_for_market(market)
        skills = self.list_skills()
        return [c.to_model_schema() for c in tools] + [s.to_model_schema() for s in skills]

    @property
    def tool_count(self) -> int:
        return len(self._tools)

    @property
    def skill_count(self) -> int:
        return len(self._skills)
