"""
LLM response post-processing functions for Airflow DAGs.

This module turns a raw model reply into validated item dicts: it pulls the
text out of the completion, strips markdown fences, isolates the
{"items": [...]} envelope and parses it, falling back to the schema-anchored
parser when the reply isn't strict JSON. Kept apart from the DAG definition
to avoid import issues during testing.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Union

from openai.types.chat import ChatCompletion

from digest_functions.schema_json_parser import (
    STRING,
    FieldDef,
    ParseError,
    parse_items_array,
)

# Configure logging
logger = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class ProcessorError(Exception):
    """Raised when a model reply can't be turned into usable items."""

    def __init__(self, message: str, code: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.code = code
        self.cause = cause


def extract_response_text(response: Union[str, ChatCompletion]) -> str:
    """
    Get the reply text from an OpenAI chat completion.

    Args:
        response: A ChatCompletion, or the reply text itself

    Returns:
        str: The reply text

    Raises:
        ProcessorError: If the reply is empty
    """
    if isinstance(response, str):
        text = response
    else:
        choices = getattr(response, "choices", None) or []
        text = choices[0].message.content if choices else None

    if not text or not text.strip():
        logger.error("Empty response from model")
        raise ProcessorError("Empty response from model", "EMPTY_RESPONSE")
    return text


def strip_code_fences(text: str) -> str:
    # Handle markdown code blocks
    text = text.strip()
    match = _CODE_FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text


def extract_items_envelope(text: str) -> str:
    """
    Isolate the {"items": [...]} envelope from a model reply.

    Returns:
        str: Text from the first "{" to the last "}"

    Raises:
        ProcessorError: If no object is present
    """
    body = strip_code_fences(text)
    start = body.find("{")
    end = body.rfind("}")
    if start == -1 or end < start:
        logger.error(f"No JSON object found in response: {body[:200]!r}")
        raise ProcessorError("Response does not contain a JSON object", "MISSING_ENVELOPE")
    return body[start:end + 1]


def parse_llm_items(
    text: str, fields: Sequence[FieldDef], strict_first: bool = True
) -> List[Dict[str, Any]]:
    """
    Parse the items of a model reply against a schema.

    Strict JSON is tried first; replies with unescaped quotes in values fall
    back to the schema-anchored parser.

    Args:
        text: The raw reply text (fences and surrounding prose allowed)
        fields: Ordered field declarations for each item
        strict_first: Try json.loads before the anchored parser

    Returns:
        list: Item dicts with exactly the schema's fields

    Raises:
        ProcessorError: If the reply can't be parsed
    """
    return parse_llm_envelope(extract_items_envelope(text), fields, strict_first=strict_first)


def parse_llm_envelope(
    envelope: str, fields: Sequence[FieldDef], strict_first: bool = True
) -> List[Dict[str, Any]]:
    """
    Parse an already isolated {"items": [...]} envelope against a schema.

    Same as parse_llm_items without the fence and prose stripping, for
    callers that ran extract_items_envelope themselves.
    """
    if strict_first:
        try:
            data = json.loads(envelope)
        except json.JSONDecodeError as e:
            logger.warning(f"Strict JSON parse failed ({e}), using schema-anchored parser")
        else:
            if isinstance(data, dict) and isinstance(data.get("items"), list):
                return [_project_item(item, fields) for item in data["items"]]
            logger.warning("Strict JSON has no 'items' list, using schema-anchored parser")

    try:
        items = parse_items_array(envelope, fields)
    except ParseError as e:
        logger.error(f"Schema-anchored parse failed: {e}")
        logger.error("Near: %r", e.excerpt(envelope))
        raise ProcessorError(
            f"Failed to parse model response: {e}", "PARSE_ERROR", cause=e
        ) from e

    logger.info(f"Parsed {len(items)} items with schema-anchored parser")
    return items


def _project_item(item: Any, fields: Sequence[FieldDef]) -> Dict[str, Any]:
    if not isinstance(item, dict):
        raise ProcessorError(f"Item is not an object: {item!r}", "INVALID_ITEM")

    projected = {}
    for field in fields:
        if field.name not in item:
            raise ProcessorError(f"Item missing {field.name}", "INVALID_ITEM")
        value = item[field.name]
        if field.kind == STRING and not isinstance(value, str):
            raise ProcessorError(f"Item field {field.name} is not a string", "INVALID_ITEM")
        if field.kind != STRING and not (
            isinstance(value, list) and all(isinstance(v, str) for v in value)
        ):
            raise ProcessorError(
                f"Item field {field.name} is not a list of strings", "INVALID_ITEM"
            )
        projected[field.name] = value
    return projected


def validate_items(
    items: List[Dict[str, Any]],
    fields: Sequence[FieldDef],
    valid_categories: Optional[Sequence[str]] = None,
) -> None:
    """
    Check parsed items the way the digest pipeline expects them.

    Scalar fields must be non-empty strings, list fields lists of strings,
    and "category" (when declared) one of valid_categories.

    Raises:
        ProcessorError: On the first invalid item
    """
    for index, item in enumerate(items):
        for field in fields:
            value = item.get(field.name)
            if field.kind == STRING:
                if not value or not isinstance(value, str):
                    raise ProcessorError(f"Item {index} missing {field.name}", "INVALID_ITEM")
            elif not isinstance(value, list):
                raise ProcessorError(
                    f"Item {index} missing {field.name} array", "INVALID_ITEM"
                )
            elif not all(isinstance(v, str) for v in value):
                raise ProcessorError(
                    f"Item {index} field {field.name} is not a list of strings", "INVALID_ITEM"
                )

        category = item.get("category")
        if valid_categories and "category" in item and category not in valid_categories:
            raise ProcessorError(f"Invalid category: {category}", "INVALID_ITEM")


def generate_slug(title: str) -> str:
    slug = title.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug[:50].strip("-")


def count_duplicate_groups(items: List[Dict[str, Any]]) -> int:
    """Number of items the model merged from more than one source."""
    return sum(1 for item in items if len(item.get("source_ids") or []) > 1)
