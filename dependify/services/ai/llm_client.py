"""
Async model backend client with tiered fallback.

Design constraints:
- Plain HTTP (httpx) against the Anthropic Messages API; no vendor SDK
- Each tier is protected by its own circuit breaker
- Tool-calling path: capable tier first; on any backend failure retry exactly
  once on the cheap tier with identical arguments, then give up
- Text-only path with a local model: try the local model (30s timeout) and
  fall back to the cheap remote tier on any failure

Every failure crossing this module's boundary is a ModelBackendError.
"""
import time
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from dependify.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from dependify.core.config import Settings
from dependify.core.logging import get_logger
from dependify.core.metrics import (
    record_llm_error,
    record_llm_fallback,
    record_llm_request,
    record_llm_tokens_and_cost,
)
from dependify.services.ai.errors import ModelBackendError
from dependify.services.ai.schema import ModelCallOptions, ModelTier, ModelTurn

logger = get_logger(__name__)

_KNOWN_BLOCK_TYPES = {"text", "tool_use"}

FALLBACK_TIERS: Dict[ModelTier, ModelTier] = {
    ModelTier.CAPABLE: ModelTier.CHEAP,
}


class ModelClient:
    """Async HTTP client for remote model tiers."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        models: Dict[ModelTier, str],
        timeout_seconds: float = 60.0,
        api_version: str = "2023-06-01",
        cost_per_1k_tokens: float = 0.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.models = dict(models)
        self.timeout_seconds = timeout_seconds
        self.api_version = api_version
        self.cost_per_1k_tokens = cost_per_1k_tokens
        self._transport = transport

        self.circuit_breakers: Dict[ModelTier, CircuitBreaker] = {
            tier: CircuitBreaker(name=f"llm_{tier.value}")
            for tier in self.models
        }

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "ModelClient":
        return cls(
            api_base=settings.llm_api_base,
            api_key=settings.llm_api_key,
            models={
                ModelTier.CAPABLE: settings.capable_model,
                ModelTier.CHEAP: settings.cheap_model,
            },
            timeout_seconds=settings.llm_timeout_seconds,
            api_version=settings.llm_api_version,
            cost_per_1k_tokens=settings.llm_cost_per_1k_tokens,
            **kwargs,
        )

    def model_for(self, tier: ModelTier) -> str:
        try:
            return self.models[ModelTier(tier)]
        except KeyError:
            raise ModelBackendError(f"No remote model configured for tier {tier}", tier=str(tier))

    async def _post(self, path: str, json_payload: Dict[str, Any]) -> httpx.Response:
        """Low-level POST helper (isolated for circuit breaker)."""
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key or "",
            "anthropic-version": self.api_version,
        }
        url = f"{self.api_base}{path}"
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await client.post(url, headers=headers, json=json_payload)
        # Raise inside the breaker so 429/5xx count as failures
        response.raise_for_status()
        return response

    async def _create(
        self,
        tier: ModelTier,
        transcript: List[Dict[str, Any]],
        options: ModelCallOptions,
    ) -> ModelTurn:
        """One Messages API call against a single tier, no fallback."""
        model = self.model_for(tier)
        agent = options.agent

        if not self.api_key:
            record_llm_error(agent, "missing_api_key")
            raise ModelBackendError("LLM API key not configured", tier=tier.value, model=model)

        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": options.max_tokens,
            "messages": transcript,
        }
        if options.system_prompt:
            payload["system"] = options.system_prompt
        if options.callable_schema:
            payload["tools"] = options.callable_schema

        start = time.time()
        try:
            response = await self.circuit_breakers[tier].call_async(
                self._post,
                "/messages",
                json_payload=payload,
            )
        except CircuitBreakerOpenError as exc:
            record_llm_error(agent, "circuit_open")
            logger.warning("llm_circuit_open", agent=agent, tier=tier.value)
            raise ModelBackendError(str(exc), tier=tier.value, model=model) from exc
        except httpx.TimeoutException as exc:
            record_llm_error(agent, "timeout")
            logger.warning(
                "llm_timeout",
                agent=agent,
                tier=tier.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ModelBackendError(f"Model call timed out: {exc}", tier=tier.value, model=model) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            record_llm_error(agent, "rate_limited" if status == 429 else "http_status")
            logger.warning(
                "llm_http_status_error",
                agent=agent,
                tier=tier.value,
                status_code=status,
            )
            raise ModelBackendError(
                f"Model backend returned HTTP {status}",
                tier=tier.value,
                model=model,
                status_code=status,
            ) from exc
        except httpx.HTTPError as exc:
            record_llm_error(agent, "http_error")
            logger.warning(
                "llm_http_error",
                agent=agent,
                tier=tier.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ModelBackendError(f"Model call failed: {exc}", tier=tier.value, model=model) from exc
        finally:
            duration_ms = (time.time() - start) * 1000.0
            record_llm_request(agent, model, tier.value, duration_ms)

        turn = self._parse_turn(response, tier, model, agent)

        total_tokens = turn.usage.total
        cost_usd = 0.0
        if self.cost_per_1k_tokens > 0 and total_tokens > 0:
            cost_usd = (total_tokens / 1000.0) * self.cost_per_1k_tokens

        record_llm_tokens_and_cost(
            agent=agent,
            model=model,
            input_tokens=turn.usage.input_tokens,
            output_tokens=turn.usage.output_tokens,
            cost_usd=cost_usd,
        )
        return turn

    def _parse_turn(self, response: httpx.Response, tier: ModelTier, model: str, agent: str) -> ModelTurn:
        try:
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError("response body is not a JSON object")
            blocks = data.get("content") or []
            if not isinstance(blocks, list):
                raise ValueError("content is not a list of blocks")
            content = [
                block for block in blocks
                if block.get("type") in _KNOWN_BLOCK_TYPES
            ]
            return ModelTurn.model_validate({
                "content": content,
                "stop_reason": data.get("stop_reason"),
                "usage": {
                    "input_tokens": int((data.get("usage") or {}).get("input_tokens") or 0),
                    "output_tokens": int((data.get("usage") or {}).get("output_tokens") or 0),
                },
                "model": data.get("model") or model,
                "tier": tier,
            })
        except (ValueError, TypeError, AttributeError, ValidationError) as exc:
            record_llm_error(agent, "invalid_response")
            logger.warning(
                "llm_invalid_response",
                agent=agent,
                tier=tier.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ModelBackendError(f"Malformed model response: {exc}", tier=tier.value, model=model) from exc

    async def call(
        self,
        transcript: List[Dict[str, Any]],
        options: Optional[ModelCallOptions] = None,
    ) -> ModelTurn:
        """
        Call the model backend with at most one cheaper-tier fallback.

        Args:
            transcript: Messages API ``messages`` list, sent as-is
            options: Tier, system prompt, max tokens and callable schema

        Returns:
            ModelTurn from whichever tier answered

        Raises:
            ModelBackendError: if the primary tier fails and there is no
                fallback tier, or the fallback tier fails too
        """
        options = options or ModelCallOptions()
        primary = ModelTier(options.tier)

        try:
            return await self._create(primary, transcript, options)
        except ModelBackendError as exc:
            fallback = FALLBACK_TIERS.get(primary)
            if fallback is None or fallback not in self.models:
                raise
            logger.warning(
                "llm_fallback_to_cheap_tier",
                agent=options.agent,
                from_tier=primary.value,
                to_tier=fallback.value,
                error=str(exc),
                status_code=exc.status_code,
            )
            record_llm_fallback(primary.value, fallback.value)

        return await self._create(fallback, transcript, options)

    async def generate_text(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        tier: ModelTier = ModelTier.CHEAP,
        max_tokens: int = 2048,
        agent: str = "generate_text",
    ) -> str:
        """
        Single-prompt text generation (no tool-calling).

        Raises:
            ModelBackendError: on backend failure or when the turn has no text
        """
        turn = await self.call(
            [{"role": "user", "content": prompt}],
            ModelCallOptions(
                tier=tier,
                system_prompt=system_prompt,
                max_tokens=max_tokens,
                agent=agent,
            ),
        )
        text = turn.first_text()
        if text is None:
            raise ModelBackendError("No text content in response", tier=turn.tier.value, model=turn.model)
        return text


class LocalModelClient:
    """Client for a locally hosted Ollama-compatible model."""

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "LocalModelClient":
        return cls(
            base_url=settings.local_model_url,
            model=settings.local_model,
            timeout_seconds=settings.local_timeout_seconds,
            **kwargs,
        )

    async def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """
        Generate text with the local model.

        Raises:
            ModelBackendError: on timeout, HTTP error or malformed response
        """
        body = {
            "model": self.model,
            "prompt": f"{system_prompt}\n\n{prompt}" if system_prompt else prompt,
            "stream": False,
        }

        start = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}/api/generate", json=body)
            response.raise_for_status()
            text = response.json()["response"]
        except httpx.TimeoutException as exc:
            record_llm_error("local", "timeout")
            raise ModelBackendError(f"Local model timed out: {exc}", tier=ModelTier.LOCAL.value, model=self.model) from exc
        except httpx.HTTPStatusError as exc:
            record_llm_error("local", "http_status")
            raise ModelBackendError(
                f"Local model error: {exc.response.status_code}",
                tier=ModelTier.LOCAL.value,
                model=self.model,
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            record_llm_error("local", "http_error")
            raise ModelBackendError(f"Local model unavailable: {exc}", tier=ModelTier.LOCAL.value, model=self.model) from exc
        except (ValueError, KeyError, TypeError) as exc:
            record_llm_error("local", "invalid_response")
            raise ModelBackendError(f"Malformed local model response: {exc}", tier=ModelTier.LOCAL.value, model=self.model) from exc
        finally:
            record_llm_request("local", self.model, ModelTier.LOCAL.value, (time.time() - start) * 1000.0)

        if not isinstance(text, str):
            raise ModelBackendError("Local model returned non-text response", tier=ModelTier.LOCAL.value, model=self.model)
        return text


async def generate_with_local_fallback(
    local_client: Optional[LocalModelClient],
    model_client: ModelClient,
    prompt: str,
    system_prompt: Optional[str] = None,
    agent: str = "generate_text",
) -> str:
    """
    Try the local model first; on any failure use the cheapest remote tier.

    Raises:
        ModelBackendError: only if the remote fallback also fails
    """
    if local_client is not None:
        try:
            return await local_client.generate(prompt, system_prompt)
        except ModelBackendError as exc:
            logger.info(
                "local_model_fallback_to_remote",
                agent=agent,
                error=str(exc),
            )
            record_llm_fallback(ModelTier.LOCAL.value, ModelTier.CHEAP.value)

    return await model_client.generate_text(
        prompt,
        system_prompt=system_prompt,
        tier=ModelTier.CHEAP,
        agent=agent,
    )
