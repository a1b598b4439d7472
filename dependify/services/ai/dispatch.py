"""
Capability dispatch for model-requested invocations.

Each request becomes a CapabilityInvocation, whatever happens: an unknown id,
a tool not offered in the tenant's market, and an exception raised by the
capability all turn into failed invocations whose payload is
``{"error": message}``. Only task cancellation propagates.
"""
import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from dependify.core.logging import get_logger
from dependify.core.metrics import record_capability_invocation
from dependify.core.tracing import get_tracer, record_exception
from dependify.services.ai.registry import (
    AnyCapability,
    CapabilityKind,
    CapabilityRegistry,
    ToolDefinition,
    from_model_name,
)
from dependify.services.ai.schema import TenantContext, ToolUseBlock

logger = get_logger(__name__)


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def _serialize_output(output: Any) -> str:
    try:
        return json.dumps(_to_jsonable(output), default=str)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Capability output is not JSON serializable: {exc}") from exc


@dataclass(frozen=True)
class CapabilityInvocation:
    """
    Outcome of one requested capability invocation.

    Attributes:
        call_id: Opaque id of the model's request, echoed with the result
        capability_id: Decoded internal capability id
        kind: Resolved capability kind, None if nothing matched
        success: Whether execute() returned normally
        output: Value returned by execute() on success
        error: Error message on failure
        duration_ms: Time spent in execute()
        content: Output serialized for the model, set by the dispatcher
    """

    call_id: str
    capability_id: str
    kind: Optional[CapabilityKind]
    success: bool
    output: Any = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    content: Optional[str] = None

    @property
    def payload(self) -> Any:
        if self.success:
            return _to_jsonable(self.output)
        return {"error": self.error}

    def to_tool_result(self) -> Dict[str, Any]:
        """Render as a ``tool_result`` content block for the next model turn."""
        block: Dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.call_id,
            "content": self.content if self.content is not None else json.dumps(self.payload, default=str),
        }
        if not self.success:
            block["is_error"] = True
        return block


class CapabilityDispatcher:
    """Resolves model-requested names against a registry and executes them."""

    def __init__(self, registry: CapabilityRegistry):
        self.registry = registry

    def resolve(self, capability_id: str) -> Optional[AnyCapability]:
        return self.registry.resolve(capability_id)

    async def dispatch(self, request: ToolUseBlock, context: TenantContext) -> CapabilityInvocation:
        capability_id = from_model_name(request.name)
        capability = self.resolve(capability_id)

        if capability is None:
            logger.warning("capability_not_found", capability_id=capability_id, call_id=request.id)
            record_capability_invocation(capability_id, "unknown", "not_found", 0.0)
            return CapabilityInvocation(
                call_id=request.id,
                capability_id=capability_id,
                kind=None,
                success=False,
                error=f"Capability '{capability_id}' not found in registry",
            )

        kind = capability.kind
        if isinstance(capability, ToolDefinition) and not capability.supports(context.market):
            logger.warning(
                "capability_not_available_in_market",
                capability_id=capability_id,
                market=context.market.value,
            )
            record_capability_invocation(capability_id, kind.value, "unavailable", 0.0)
            return CapabilityInvocation(
                call_id=request.id,
                capability_id=capability_id,
                kind=kind,
                success=False,
                error=f"Capability '{capability_id}' is not available in market {context.market.value}",
            )

        with get_tracer().start_as_current_span("capability.execute") as span:
            span.set_attribute("capability.id", capability_id)
            span.set_attribute("capability.kind", kind.value)

            start = time.time()
            try:
                output = await capability.execute(request.input, context)
                content = _serialize_output(output)
            except Exception as exc:
                duration_ms = (time.time() - start) * 1000.0
                record_exception(exc)
                record_capability_invocation(capability_id, kind.value, "error", duration_ms)
                logger.warning(
                    "capability_execution_failed",
                    capability_id=capability_id,
                    kind=kind.value,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    duration_ms=duration_ms,
                )
                return CapabilityInvocation(
                    call_id=request.id,
                    capability_id=capability_id,
                    kind=kind,
                    success=False,
                    error=str(exc) or type(exc).__name__,
                    duration_ms=duration_ms,
                )

        duration_ms = (time.time() - start) * 1000.0
        record_capability_invocation(capability_id, kind.value, "success", duration_ms)
        logger.info(
            "capability_executed",
            capability_id=capability_id,
            kind=kind.value,
            duration_ms=duration_ms,
        )
        return CapabilityInvocation(
            call_id=request.id,
            capability_id=capability_id,
            kind=kind,
            success=True,
            output=output,
            duration_ms=duration_ms,
            content=content,
        )

    async def dispatch_all(
        self,
        requests: Sequence[ToolUseBlock],
        context: TenantContext,
    ) -> List[CapabilityInvocation]:
        """Dispatch one turn's requests concurrently; results keep request order."""
        if not requests:
            return []
        return list(await asyncio.gather(*(self.dispatch(r, context) for r in requests)))
