"""
Built-in capabilities registered by default with a new orchestrator.
"""
from typing import List, Optional

from dependify.core.logging import get_logger
from dependify.services.ai.llm_client import LocalModelClient, ModelClient
from dependify.services.ai.registry import AnyCapability, CapabilityRegistry

from .content import content_skills
from .crm import crm_skills
from .finance import finance_tools

logger = get_logger(__name__)


def builtin_capabilities(
    model_client: ModelClient,
    local_client: Optional[LocalModelClient] = None,
) -> List[AnyCapability]:
    """Tools first, then content and CRM skills."""
    return [
        *finance_tools(),
        *content_skills(model_client, local_client),
        *crm_skills(model_client),
    ]


def register_builtin_capabilities(
    registry: CapabilityRegistry,
    model_client: ModelClient,
    local_client: Optional[LocalModelClient] = None,
) -> None:
    registry.register_all(builtin_capabilities(model_client, local_client))
    logger.info(
        "builtin_capabilities_registered",
        tools=registry.tool_count,
        skills=registry.skill_count,
    )


__all__ = ["builtin_capabilities", "register_builtin_capabilities"]
