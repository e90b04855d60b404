import logging
import pprint
from datetime import datetime, timedelta

from airflow.sdk import DAG, Variable, get_current_context, task

from digest_functions.item_schemas import build_parse_config, load_item_schema
from digest_functions.response_functions import (
    count_duplicate_groups,
    extract_items_envelope,
    extract_response_text,
    generate_slug,
    parse_llm_envelope,
    validate_items,
)

logger = logging.getLogger(__name__)
# Default arguments for the DAG
default_args = {
    'owner': 'airflow',
    'depends_on_past': False,
    'start_date': datetime(2025, 7, 31),
    'email_on_failure': False,
    'email_on_retry': False,
    'retries': 0,
    'retry_delay': timedelta(minutes=5),
}


def get_variable(key, default=None):
    return Variable.get(key, default)


with DAG(
    "llm_response_parsing_dag",
    default_args=default_args,
    description="parse LLM item envelopes with schema-anchored string boundaries",
    schedule=None,
    catchup=False,
    tags=["llm", "parsing", "digest"],
) as dag:

    @task()
    def validate_inputs():
        context = get_current_context()
        dag_run = context["dag_run"]
        conf = dag_run.conf or {}

        config = build_parse_config(conf, get_variable)
        logger.info("Running Dag with config:\n%s", pprint.pformat(
            {k: v for k, v in config.items() if k != "response_text"}, indent=2))
        return config

    @task()
    def extract_envelope(config):
        """
        Pull the reply text out and isolate the {"items": [...]} envelope.
        """
        text = extract_response_text(config["response_text"])
        config["envelope"] = extract_items_envelope(text)
        logger.info(f"Extracted envelope of {len(config['envelope'])} characters")
        return config

    @task()
    def parse_items(config):
        fields = load_item_schema(config["schema"])
        items = parse_llm_envelope(config["envelope"], fields, strict_first=config["strict_first"])

        config["items"] = items
        config["item_count"] = len(items)
        logger.info(f"Parsed {len(items)} items")
        return config

    @task()
    def validate_parsed_items(config):
        """
        Validate items and add the fields the digest needs downstream.

        Returns:
            config dict with updated keys:
                - "items": items with a "slug" when they carry a "title"
                - "duplicate_groups": merged-source count when "source_ids" is declared
        """
        fields = load_item_schema(config["schema"])
        items = config["items"]
        validate_items(items, fields, valid_categories=config.get("valid_categories"))

        field_names = [f.name for f in fields]
        if "title" in field_names:
            for item in items:
                item["slug"] = generate_slug(item["title"])
        if "source_ids" in field_names:
            config["duplicate_groups"] = count_duplicate_groups(items)

        logger.info("Exiting validate_parsed_items with %s items", len(items))
        return config

    conf = validate_inputs()
    envelope_conf = extract_envelope(conf)
    parsed_conf = parse_items(envelope_conf)
    validated_conf = validate_parsed_items(parsed_conf)
