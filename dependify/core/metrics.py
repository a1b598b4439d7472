"""
Prometheus metrics collection module.

Metric families for the orchestration core:
- LLM calls: requests, latency, errors, tokens, cost, schema failures, fallbacks
- Capabilities: invocations by outcome and execution latency
- Orchestrator: requests by outcome, rounds per request
- Registry: number of registered capabilities by kind

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
- Gauges: No special suffix
"""
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    REGISTRY,
    CONTENT_TYPE_LATEST,
)

from dependify.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# LLM METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total number of LLM backend requests",
    ["agent", "model", "tier"],
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "LLM backend request latency in seconds",
    ["agent", "tier"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=registry,
)

llm_errors_total = Counter(
    "llm_errors_total",
    "Total number of LLM backend errors",
    ["agent", "error_type"],
    registry=registry,
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total number of LLM tokens consumed",
    ["agent", "model", "direction"],  # direction: "input" | "output"
    registry=registry,
)

llm_cost_usd_total = Counter(
    "llm_cost_usd_total",
    "Estimated LLM spend in USD",
    ["agent", "model"],
    registry=registry,
)

llm_schema_validation_failures_total = Counter(
    "llm_schema_validation_failures_total",
    "Total number of LLM outputs that failed schema validation",
    ["agent"],
    registry=registry,
)

llm_fallbacks_total = Counter(
    "llm_fallbacks_total",
    "Total number of model tier fallbacks",
    ["from_tier", "to_tier"],
    registry=registry,
)

# ============================================================================
# CAPABILITY METRICS
# ============================================================================

capability_invocations_total = Counter(
    "capability_invocations_total",
    "Total number of capability invocations requested by the model",
    ["capability_id", "kind", "status"],  # status: "success" | "error" | "not_found" | "unavailable"
    registry=registry,
)

capability_duration_seconds = Histogram(
    "capability_duration_seconds",
    "Capability execution latency in seconds",
    ["capability_id"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

registered_capabilities = Gauge(
    "registered_capabilities",
    "Number of capabilities currently registered",
    ["kind"],
    registry=registry,
)

# ============================================================================
# ORCHESTRATOR METRICS
# ============================================================================

orchestrator_requests_total = Counter(
    "orchestrator_requests_total",
    "Total number of orchestrator process() calls",
    ["status"],  # "completed" | "stopped_early" | "failed" | "cancelled"
    registry=registry,
)

orchestrator_rounds = Histogram(
    "orchestrator_rounds",
    "Model calls made per orchestrator request",
    buckets=[1, 2, 3, 4, 5, 6, 8, 10, 15, 20],
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def record_llm_request(agent: str, model: str, tier: str, duration_ms: float) -> None:
    """
    Record an LLM request and its latency.

    Args:
        agent: Logical caller ("orchestrator", "intent", skill id, ...)
        model: Concrete model name
        tier: Model tier label
        duration_ms: Request duration in milliseconds
    """
    llm_requests_total.labels(agent=agent, model=model, tier=tier).inc()
    llm_request_duration_seconds.labels(agent=agent, tier=tier).observe(duration_ms / 1000.0)


def record_llm_error(agent: str, error_type: str) -> None:
    """Record an LLM error by coarse type (timeout, http_error, circuit_open, ...)."""
    llm_errors_total.labels(agent=agent, error_type=error_type).inc()


def record_llm_tokens_and_cost(
    agent: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    cost_usd: float = 0.0,
) -> None:
    """
    Record token usage and estimated cost for one LLM call.
    """
    if input_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="input").inc(input_tokens)
    if output_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="output").inc(output_tokens)
    if cost_usd > 0:
        llm_cost_usd_total.labels(agent=agent, model=model).inc(cost_usd)


def record_llm_schema_validation_failure(agent: str) -> None:
    """Record an LLM output that could not be parsed into the expected schema."""
    llm_schema_validation_failures_total.labels(agent=agent).inc()


def record_llm_fallback(from_tier: str, to_tier: str) -> None:
    """Record a fallback from one model tier to another."""
    llm_fallbacks_total.labels(from_tier=from_tier, to_tier=to_tier).inc()


def record_capability_invocation(
    capability_id: str,
    kind: str,
    status: str,
    duration_ms: float,
) -> None:
    """
    Record one capability dispatch.

    Args:
        capability_id: Internal capability id (dotted)
        kind: "tool", "skill" or "unknown"
        status: "success", "error", "not_found" or "unavailable"
        duration_ms: Execution time in milliseconds
    """
    capability_invocations_total.labels(
        capability_id=capability_id,
        kind=kind,
        status=status,
    ).inc()
    if status not in ("not_found", "unavailable"):
        capability_duration_seconds.labels(capability_id=capability_id).observe(duration_ms / 1000.0)


def update_registered_capabilities(kind: str, count: int) -> None:
    """Set the registered capability gauge for one kind."""
    registered_capabilities.labels(kind=kind).set(count)


def record_orchestrator_request(status: str, rounds: int = 0) -> None:
    """
    Record the outcome of an orchestrator request.

    Args:
        status: "completed", "stopped_early", "failed" or "cancelled"
        rounds: Number of model calls made (only observed when > 0)
    """
    orchestrator_requests_total.labels(status=status).inc()
    if rounds > 0:
        orchestrator_rounds.observe(rounds)


def get_metrics() -> bytes:
    """
    Get Prometheus metrics in text format.
    """
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    """
    Get content type for a metrics endpoint.
    """
    return CONTENT_TYPE_LATEST
