"""Pytest configuration and fixtures for knime2sql tests."""
import json
from pathlib import Path
from typing import Any, Dict

import pytest

from knime2sql.core.config import ConverterSettings
from tests.factories import WorkflowBuilder, join_workflow, linear_workflow


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep KNIME2SQL_* variables from the developer's shell out of the tests."""
    for name in (
        "KNIME2SQL_LOG_LEVEL",
        "KNIME2SQL_ALIAS_TEMPLATE",
        "KNIME2SQL_JOIN_SUFFIX",
        "KNIME2SQL_MAX_UPLOAD_NODES",
        "KNIME2SQL_API_HOST",
        "KNIME2SQL_API_PORT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings() -> ConverterSettings:
    """Default converter settings."""
    return ConverterSettings()


@pytest.fixture
def linear() -> WorkflowBuilder:
    return linear_workflow()


@pytest.fixture
def join() -> WorkflowBuilder:
    return join_workflow()


@pytest.fixture
def workflow_file(tmp_path: Path):
    """Write a declaration dict to a JSON file and return its path."""

    def _write(declaration: Dict[str, Any], name: str = "workflow.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(declaration), encoding="utf-8")
        return path

    return _write
