"""Pytest configuration and fixtures."""

import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for graph_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from graph_mock import MockCredential, MockGraphService  # noqa: E402
from graph_mock.credential import DEFAULT_TENANT_ID  # noqa: E402

TemplateWriter = Callable[[str, str, Any], Path]


@pytest.fixture
def tenant_id() -> str:
    return DEFAULT_TENANT_ID


@pytest.fixture
def graph() -> MockGraphService:
    """Empty mock Graph service."""
    return MockGraphService()


@pytest.fixture
def credential() -> MockCredential:
    """Mock credential with every permission, issued by the test tenant."""
    return MockCredential()


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    path = tmp_path / "templates"
    path.mkdir()
    return path


@pytest.fixture
def write_template(templates_dir: Path) -> TemplateWriter:
    """Write a template file below the templates directory."""

    def write(directory: str, filename: str, content: Any) -> Path:
        family_dir = templates_dir / directory
        family_dir.mkdir(parents=True, exist_ok=True)
        path = family_dir / filename
        path.write_text(json.dumps(content), encoding="utf-8")
        return path

    return write
