"""
Test configuration and fixtures for the LLM response parsing tests.

This module provides:
- Item schema fixtures
- Sample model replies, strict and with unescaped quotes
- OpenAI chat completion mocking utilities
- Airflow context mocking utilities
"""

import os
import sys
import pytest
from unittest.mock import Mock

# Add dags to path for imports
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
dags_path = os.path.join(project_root, "dags")
sys.path.insert(0, dags_path)


from digest_functions.schema_json_parser import STRING, STRING_LIST, FieldDef  # noqa: E402


@pytest.fixture(scope="function")
def title_url_schema():
    return [FieldDef("title", STRING), FieldDef("url", STRING)]


@pytest.fixture(scope="function")
def dedup_schema():
    return [
        FieldDef("title", STRING),
        FieldDef("url", STRING),
        FieldDef("category", STRING),
        FieldDef("source_ids", STRING_LIST),
    ]


@pytest.fixture(scope="function")
def dedup_response_with_quotes():
    """
    A dedup reply as models actually produce it: fenced, with unescaped
    quotes inside the first title.
    """
    return (
        "Here are the merged stories:\n"
        "```json\n"
        "{\n"
        '  "items": [\n'
        "    {\n"
        '      "title": "Rust 2.0 ships "async closures" at last",\n'
        '      "url": "https://blog.rust-lang.org/2.0",\n'
        '      "category": "development",\n'
        '      "source_ids": ["hn-1", "reddit-7"]\n'
        "    },\n"
        "    {\n"
        '      "title": "Postgres 18 released",\n'
        '      "url": "https://postgresql.org/18",\n'
        '      "category": "infrastructure",\n'
        '      "source_ids": ["lobsters-3"]\n'
        "    }\n"
        "  ]\n"
        "}\n"
        "```"
    )


@pytest.fixture(scope="function")
def mock_chat_completion():
    """
    Mock OpenAI chat completion for testing.

    Call the fixture with the reply text to get a completion-like object
    exposing choices[0].message.content.

    Returns:
        callable: Factory building configured completion mocks
    """

    def build(content):
        completion = Mock()
        completion.choices = [Mock()]
        completion.choices[0].message.content = content
        return completion

    return build


@pytest.fixture(scope="function")
def mock_variables():
    """
    In-memory stand-in for Airflow Variables.

    Returns:
        tuple: (values dict, getter) - tests mutate the dict to set Variables
    """
    values = {}

    def get_variable(key, default=None):
        return values.get(key, default)

    return values, get_variable


@pytest.fixture(scope="function")
def mock_airflow_context():
    """
    Mock Airflow context for testing task functions.

    Returns:
        dict: Context with a dag_run whose conf tests can set
    """
    context = {
        'dag': Mock(),
        'task': Mock(),
        'task_instance': Mock(),
        'dag_run': Mock(),
        'ds': '2025-08-01',
        'ds_nodash': '20250801',
        'ti': Mock()
    }
    context['dag_run'].conf = {}
    context['ti'].xcom_pull = Mock(return_value=None)
    context['ti'].xcom_push = Mock()
    return context
