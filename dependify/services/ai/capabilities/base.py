"""
Helpers shared by the built-in capability handlers.
"""
from typing import Any, Callable, Dict, Mapping, Tuple

from dependify.core.logging import get_logger
from dependify.core.metrics import record_llm_schema_validation_failure
from dependify.services.ai.schema import parse_json_output

logger = get_logger(__name__)


def require_fields(input: Mapping[str, Any], *names: str) -> Tuple[Any, ...]:
    """
    Return the values of required input fields.

    Raises:
        ValueError: naming every missing or empty field
    """
    missing = [name for name in names if input.get(name) in (None, "", [], {})]
    if missing:
        raise ValueError(f"Missing required input: {', '.join(missing)}")
    return tuple(input[name] for name in names)


def parse_skill_output(
    skill_id: str,
    text: str,
    fallback: Callable[[str], Dict[str, Any]],
) -> Any:
    """
    Parse a skill's model output as JSON, degrading to ``fallback(text)``.

    Models occasionally answer in prose despite the JSON instruction; the raw
    text is kept in the fallback shape rather than discarded.
    """
    try:
        return parse_json_output(text)
    except ValueError:
        record_llm_schema_validation_failure(skill_id)
        logger.info("skill_output_not_json", capability_id=skill_id, raw=text[:200])
        return fallback(text)
