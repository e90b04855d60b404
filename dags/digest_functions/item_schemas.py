"""
Item schemas for the news digest LLM steps.

The field order here is the order the prompts ask the model to emit and the
order the schema-anchored parser uses to find string boundaries, so the two
must come from the same declarations.
"""

import json
import logging
from typing import Any, Dict, List, Sequence, Union

from digest_functions.schema_json_parser import (
    STRING,
    STRING_LIST,
    FieldDef,
    validate_schema,
)

# Configure logging
logger = logging.getLogger(__name__)

DEDUP_ITEM_SCHEMA = [
    FieldDef("title", STRING),
    FieldDef("url", STRING),
    FieldDef("category", STRING),
    FieldDef("source_ids", STRING_LIST),
]

SUMMARY_ITEM_SCHEMA = [
    FieldDef("id", STRING),
    FieldDef("summary", STRING),
    FieldDef("extended_summary", STRING),
    FieldDef("sentiment", STRING),
]

PRESET_SCHEMAS = {
    "dedup": DEDUP_ITEM_SCHEMA,
    "summary": SUMMARY_ITEM_SCHEMA,
}

VALID_CATEGORIES = [
    "ai-ml",
    "development",
    "infrastructure",
    "career",
    "other",
]


def load_item_schema(value: Union[str, Sequence[Any]]) -> List[FieldDef]:
    """
    Build a validated schema from a preset name or a list of field declarations.

    Args:
        value: A preset name ("dedup", "summary"), a list of
            {"name": ..., "type": ...} dicts as stored in an Airflow Variable,
            or a list of FieldDef

    Returns:
        list: The validated FieldDef list

    Raises:
        ValueError: If the preset is unknown or a declaration is malformed
    """
    if isinstance(value, str):
        if value not in PRESET_SCHEMAS:
            raise ValueError(
                f"Unknown schema preset '{value}', expected one of {sorted(PRESET_SCHEMAS)}"
            )
        fields = list(PRESET_SCHEMAS[value])
    elif isinstance(value, (list, tuple)):
        fields = [_to_field_def(entry) for entry in value]
    else:
        raise ValueError(f"Invalid schema format: {type(value)}")

    validate_schema(fields)
    logger.info(f"Loaded item schema: {[f.name for f in fields]}")
    return fields


def _to_field_def(entry: Any) -> FieldDef:
    if isinstance(entry, FieldDef):
        return entry
    if isinstance(entry, dict) and "name" in entry:
        return FieldDef(name=entry["name"], kind=entry.get("type", STRING))
    raise ValueError(f"Invalid schema field declaration: {entry!r}")


def _decode_json_list(value: Any) -> Any:
    # Variables hold JSON lists as text
    if isinstance(value, str) and value.lstrip().startswith("["):
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON list in configuration: {e}") from e
    return value


def schema_to_dicts(fields: Sequence[FieldDef]) -> List[Dict[str, str]]:
    """Serialise a schema for XCom / dag_run.conf."""
    return [{"name": f.name, "type": f.kind} for f in fields]


def build_parse_config(conf: Dict[str, Any], get_variable) -> Dict[str, Any]:
    """
    Validate a parsing run's configuration from dag_run.conf and Variables.

    Args:
        conf: The dag_run.conf dict; must carry "response_text"
        get_variable: Callable(key, default) -> value, e.g. a wrapper over
            Airflow's Variable.get

    Returns:
        Dict containing validated configuration parameters

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    config = dict(conf or {})

    if not config.get("response_text"):
        raise ValueError("response_text is required in dag_run.conf")

    schema_value = config.get("schema") or get_variable("llm_item_schema", "dedup")
    fields = load_item_schema(_decode_json_list(schema_value))
    config["schema"] = schema_to_dicts(fields)

    if "category" in [f.name for f in fields]:
        categories = _decode_json_list(get_variable("llm_valid_categories", None))
        categories = categories or VALID_CATEGORIES
        if not isinstance(categories, list) or not categories:
            raise ValueError("llm_valid_categories must be a non-empty list")
        config["valid_categories"] = categories
    else:
        config["valid_categories"] = None

    strict_first = config.get("strict_first")
    if strict_first is None:
        strict_first = get_variable("llm_strict_json_first", True)
    if isinstance(strict_first, str):
        strict_first = strict_first.lower() in ("1", "true", "yes")
    config["strict_first"] = bool(strict_first)

    logger.info(
        f"Parse configuration validated: {len(fields)} fields, "
        f"strict_first={config['strict_first']}, "
        f"response length={len(config['response_text'])}"
    )
    return config
