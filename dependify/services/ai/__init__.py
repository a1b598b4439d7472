"""
AI orchestration services package.

- capability registry (tools gated by market, skills offered everywhere)
- model client with capable -> cheap and local -> remote fallback
- intent classifier (advisory)
- orchestrator loop and capability dispatch

Integrations are reached only through the capability contract; this package
holds no vendor-specific HTTP code beyond the model backends.
"""
