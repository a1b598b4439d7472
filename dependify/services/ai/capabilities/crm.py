"""
CRM skills: lead scoring and follow-up suggestions (cheap tier).
"""
import json
from typing import Any, Dict, List

from dependify.services.ai.capabilities.base import parse_skill_output, require_fields
from dependify.services.ai.llm_client import ModelClient
from dependify.services.ai.registry import SkillDefinition
from dependify.services.ai.schema import ModelTier, TenantContext, ToolCategory

CONTACT_SCORE_ID = "crm.contact.score"
FOLLOWUP_SUGGEST_ID = "crm.followup.suggest"

LEAD_SCORE_SYSTEM_PROMPT = (
    "You are a CRM specialist. Score leads based on fit, engagement, and buying signals. "
    "Return a numeric score and reasoning."
)

FOLLOWUP_SYSTEM_PROMPT = (
    "You are a sales strategist. Suggest specific, timely follow-up actions that move deals forward."
)

# Interactions beyond this many (most recent kept) are not sent to the model
RECENT_INTERACTION_LIMIT = 5


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def contact_score_skill(model_client: ModelClient) -> SkillDefinition:
    async def handler(input: Dict[str, Any], context: TenantContext) -> Any:
        (contact,) = require_fields(input, "contact")
        icp = input.get("idealCustomerProfile")

        parts = [
            "Score this lead from 0-100.",
            "",
            f"Contact: {_dump(contact)}",
        ]
        if icp:
            parts.append(f"Ideal Customer Profile: {_dump(icp)}")
        parts += [
            "",
            "Scoring criteria:",
            "- Company fit (does company size/industry match ICP): 30 points",
            "- Role fit (is the person a decision maker): 20 points",
            "- Engagement (interactions, recency): 25 points",
            "- Stage fit (how far along are they): 25 points",
            "",
            'Return JSON: { "score": 75, "breakdown": { "companyFit": 25, "roleFit": 18, '
            '"engagement": 15, "stageFit": 17 }, "reasoning": "...", "nextBestAction": "..." }',
        ]

        text = await model_client.generate_text(
            "\n".join(parts),
            system_prompt=LEAD_SCORE_SYSTEM_PROMPT,
            tier=ModelTier.CHEAP,
            max_tokens=1024,
            agent=CONTACT_SCORE_ID,
        )
        return parse_skill_output(
            CONTACT_SCORE_ID,
            text,
            lambda raw: {
                "score": 50,
                "reasoning": raw,
                "nextBestAction": "Follow up with more information",
            },
        )

    return SkillDefinition(
        id=CONTACT_SCORE_ID,
        name="Score Lead",
        description=(
            "Calculate a lead score (0-100) for a contact based on their profile, "
            "interactions, and behavior signals."
        ),
        category=ToolCategory.CRM,
        handler=handler,
        input_schema={
            "properties": {
                "contact": {
                    "type": "object",
                    "description": "Contact profile data",
                    "properties": {
                        "name": {"type": "string"},
                        "email": {"type": "string"},
                        "company": {"type": "string"},
                        "jobTitle": {"type": "string"},
                        "source": {"type": "string"},
                        "interactionCount": {"type": "number"},
                        "lastContactedAt": {"type": "string"},
                        "stage": {"type": "string"},
                    },
                },
                "idealCustomerProfile": {"type": "object", "description": "Description of ideal customer"},
            },
            "required": ["contact"],
        },
        model_tier=ModelTier.CHEAP,
        system_prompt=LEAD_SCORE_SYSTEM_PROMPT,
    )


def followup_suggest_skill(model_client: ModelClient) -> SkillDefinition:
    async def handler(input: Dict[str, Any], context: TenantContext) -> Any:
        (contact,) = require_fields(input, "contact")
        interactions = input.get("recentInteractions") or []
        deal_value = input.get("dealValue")

        parts = [
            "Suggest the best follow-up action for this contact.",
            "",
            f"Contact: {_dump(contact)}",
            f"Recent interactions: {_dump(list(interactions)[-RECENT_INTERACTION_LIMIT:])}",
        ]
        if deal_value:
            parts.append(f"Deal value: {deal_value}")
        parts += [
            "",
            "Return JSON: {",
            '  "action": "send_email | schedule_call | send_proposal | close | nurture",',
            '  "priority": "high | medium | low",',
            '  "message": "Specific message to send (if applicable)",',
            '  "reasoning": "Why this action",',
            '  "bestTime": "Suggested timing",',
            '  "subject": "Email subject if applicable"',
            "}",
        ]

        text = await model_client.generate_text(
            "\n".join(parts),
            system_prompt=FOLLOWUP_SYSTEM_PROMPT,
            tier=ModelTier.CHEAP,
            max_tokens=1024,
            agent=FOLLOWUP_SUGGEST_ID,
        )
        return parse_skill_output(
            FOLLOWUP_SUGGEST_ID,
            text,
            lambda raw: {"action": "send_email", "priority": "medium", "reasoning": raw},
        )

    return SkillDefinition(
        id=FOLLOWUP_SUGGEST_ID,
        name="Suggest Follow-up",
        description=(
            "Suggest the next best follow-up action for a contact based on their "
            "interaction history and current stage."
        ),
        category=ToolCategory.CRM,
        handler=handler,
        input_schema={
            "properties": {
                "contact": {"type": "object"},
                "recentInteractions": {"type": "array", "items": {"type": "object"}},
                "dealValue": {"type": "number"},
            },
            "required": ["contact"],
        },
        model_tier=ModelTier.CHEAP,
        system_prompt=FOLLOWUP_SYSTEM_PROMPT,
    )


def crm_skills(model_client: ModelClient) -> List[SkillDefinition]:
    return [contact_score_skill(model_client), followup_suggest_skill(model_client)]
