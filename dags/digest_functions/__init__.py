"""
Digest functions package for Airflow DAGs.

This package contains the schema-anchored item parser and the LLM response
post-processing built on it, separated from the DAG definitions to avoid
import issues during testing.
"""
