"""
Run one orchestrator request from the command line.

Usage:
    python -m dependify.cli "generate a blog post about solar panels" --market NG
"""
import argparse
import asyncio
import os
import sys
from typing import List, Optional

from dependify.core.config import get_settings
from dependify.core.logging import configure_logging
from dependify.core.tracing import configure_tracing, shutdown_tracing
from dependify.services.ai.errors import ModelBackendError, OrchestrationCancelledError
from dependify.services.ai.markets import MarketCode
from dependify.services.ai.orchestration import create_orchestrator
from dependify.services.ai.schema import TenantContext


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Send one request to the Dependify orchestrator")
    parser.add_argument("message", help="Request text")
    parser.add_argument(
        "--market",
        choices=[m.value for m in MarketCode],
        default=MarketCode.US.value,
        help="Tenant market (default: US)",
    )
    parser.add_argument("--tenant", default="local-tenant", help="Tenant id")
    parser.add_argument("--user", default="local-user", help="User id")
    parser.add_argument("--plan", default="starter", help="Tenant plan")
    parser.add_argument("--timeout", type=float, default=None, help="Request deadline in seconds")
    parser.add_argument("--text", action="store_true", help="Print only the response text")
    return parser


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    orchestrator = create_orchestrator(settings)
    context = TenantContext(
        tenant_id=args.tenant,
        user_id=args.user,
        market=MarketCode(args.market),
        plan=args.plan,
    )

    try:
        result = await orchestrator.process(args.message, context, timeout_seconds=args.timeout)
    except OrchestrationCancelledError as exc:
        print(f"Request cancelled: {exc}", file=sys.stderr)
        return 2
    except ModelBackendError as exc:
        print(f"Model backend unavailable: {exc}", file=sys.stderr)
        return 1

    if args.text:
        print(result.response)
    else:
        print(result.model_dump_json(indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    configure_logging(
        log_level=settings.log_level,
        service_name=settings.service_name,
        json_output=settings.log_json,
    )
    if os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
        configure_tracing(service_name=settings.service_name)

    try:
        return asyncio.run(run(args))
    finally:
        shutdown_tracing()


if __name__ == "__main__":
    sys.exit(main())
