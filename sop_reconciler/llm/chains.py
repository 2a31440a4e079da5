"""JSON recovery and schema validation for language model output."""

import json
import re
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from sop_reconciler.errors import SchemaError

if TYPE_CHECKING:
    from sop_reconciler.llm.client import LanguageModel

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_CODE_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_TRAILING_COMMA_PATTERN = re.compile(r",(\s*[}\]])")


def _extract_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` block, ignoring braces inside strings."""
    depth = 0
    start_idx = None
    in_string = False
    escape_next = False

    for i, char in enumerate(text):
        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if char == "{":
            if depth == 0:
                start_idx = i
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start_idx is not None:
                return text[start_idx:i + 1]

    return None


def _clean_json_string(text: str) -> str:
    """Strip BOM/zero-width characters and trailing commas (a common LLM slip)."""
    text = text.strip("\ufeff\u200b\u200c\u200d")
    return _TRAILING_COMMA_PATTERN.sub(r"\1", text)


def parse_json_response(response: str) -> Any:
    """Parse JSON from an LLM response, tolerating preambles and code fences.

    Args:
        response: Raw LLM response string.

    Returns:
        Parsed JSON value.

    Raises:
        SchemaError: If no JSON can be recovered.
    """
    if not response or not response.strip():
        raise SchemaError("Empty response from LLM")

    text = response.strip()

    match = _CODE_BLOCK_PATTERN.search(text)
    if match and match.group(1).strip().startswith("{"):
        text = match.group(1).strip()

    try:
        return json.loads(_clean_json_string(text))
    except json.JSONDecodeError as e:
        logger.debug("direct_parse_failed", error=str(e))

    extracted = _extract_json_object(text)
    if extracted:
        try:
            return json.loads(_clean_json_string(extracted))
        except json.JSONDecodeError as e:
            logger.debug("extracted_parse_failed", error=str(e))

    logger.error("json_parse_error", response_preview=text[:300])
    raise SchemaError(f"Failed to parse LLM JSON response. Response preview: {text[:150]}")


def validate_payload(payload: Any, schema: type[ModelT], context_name: str) -> ModelT:
    """Convert a loosely-typed model payload into a validated pydantic model."""
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        logger.warning(
            f"{context_name}_schema_invalid",
            errors=e.error_count(),
            first_error=e.errors()[0]["msg"] if e.errors() else None,
        )
        raise SchemaError(f"{context_name}: response does not match {schema.__name__}: {e}") from e


def run_structured_call(
    llm: "LanguageModel",
    system_prompt: str,
    user_prompt: str,
    schema: type[ModelT],
    context_name: str,
) -> ModelT:
    """One model call followed immediately by strict schema validation."""
    logger.debug(f"running_{context_name}", prompt_length=len(user_prompt))
    payload = llm.complete_json(system_prompt, user_prompt, context_name=context_name)
    return validate_payload(payload, schema, context_name)
