"""
Test fixtures for manifest resolution and recipe compilation tests.

This module provides a throw-away manifest repository built under tmp_path,
plus helpers for writing YAML manifests into it.
"""

import sys
from pathlib import Path
from typing import Any, Dict

import pytest
import yaml

_tests_dir = Path(__file__).parent
_repo_root = _tests_dir.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

from manifold.config.settings import load_settings, reset_settings  # noqa: E402
from manifold.spec.loader import ManifestStore  # noqa: E402


# ============================================================================
# Helpers
# ============================================================================


def write_yaml(path: Path, data: Dict[str, Any]) -> Path:
    """Write a YAML manifest, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return path


def build_manifest_repo(root: Path) -> Path:
    """Populate root with a small but complete manifest repository."""
    write_yaml(root / "01_rulepacks" / "base.yml", {
        "id": "base",
        "version": "1.0.0",
        "rules": ["Write clear code"],
    })
    write_yaml(root / "01_rulepacks" / "python.yml", {
        "id": "python",
        "version": "1.0.0",
        "extends": ["base"],
        "rules": ["Follow PEP 8"],
    })
    write_yaml(root / "01_rulepacks" / "testing.yml", {
        "id": "testing",
        "version": "1.0.0",
        "extends": ["base"],
        "rules": ["Add a regression test"],
    })

    write_yaml(root / "04_agents" / "bug-fixer.yml", {
        "id": "bug-fixer",
        "version": "1.0.0",
        "purpose": "Fix reported bugs",
        "rulepacks": ["python", "testing"],
        "prompt": {"system": "You fix bugs."},
        "defaults": {"model": "sonnet"},
    })
    write_yaml(root / "04_agents" / "reviewer.yml", {
        "id": "reviewer",
        "version": "1.0.0",
        "purpose": "Review changes",
        "rulepacks": ["python"],
    })

    write_yaml(root / "03_prompts" / "refactor" / "extract-method.yml", {
        "id": "extract-method",
        "version": "1.0.0",
        "description": "Extract a method",
        "content": "Extract {{name}}{{#file}} from {{file}}{{/file}}.",
        "model": "haiku",
        "variables": [{"name": "name", "required": True}, {"name": "file"}],
    })
    write_yaml(root / "03_prompts" / "shared" / "fragment.yml", {
        "id": "fragment",
        "description": "Shared fragment",
        "content": "Not a standalone prompt",
    })

    write_yaml(root / "05_recipes" / "greet.yml", {
        "id": "greet",
        "version": "1.0.0",
        "description": "Say hello",
        "variables": {"name": "Alice"},
        "steps": [
            {"id": "hello", "agent": "reviewer", "task": "Say hello to {{name}}"},
        ],
    })
    write_yaml(root / "05_recipes" / "bugfix-loop.yml", {
        "id": "bugfix-loop",
        "version": "1.0.0",
        "description": "Analyze, fix in a loop, verify",
        "tools": ["claude-code", "copilot-cli", "cursor"],
        "conversationStrategy": "continue",
        "variables": {"bug": "#42"},
        "steps": [
            {
                "id": "analyze",
                "agent": "reviewer",
                "task": "Analyze bug {{bug}}",
                "outputDocument": "docs/analysis.md",
            },
            {
                "id": "fix",
                "agent": "bug-fixer",
                "task": "Fix {{bug}}",
                "includeDocuments": ["docs/analysis.md"],
            },
            {
                "id": "verify",
                "agent": "reviewer",
                "task": "Verify the fix",
                "condition": {"type": "on-success", "check": {"type": "contains", "value": "LGTM"}},
            },
        ],
        "loop": {"steps": ["fix"], "maxIterations": 2},
        "toolOptions": {
            "claude-code": {"allowedTools": ["Read", "Edit"]},
            "copilot-cli": {"allowAllTools": True, "addDirs": ["src"]},
        },
    })

    project_dir = root / "06_projects" / "global" / "my-app"
    write_yaml(project_dir / "project.yml", {
        "id": "my-app",
        "name": "My App",
        "ai_tools": {"custom_rules": ["Use the project logger"]},
    })
    write_yaml(project_dir / "features" / "login" / "feature.yml", {
        "id": "login",
        "name": "Login",
        "model": "opus",
        "recipe": {"id": "greet", "context": {"name": "Bob"}, "tools": ["copilot-cli"]},
    })
    return root


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch):
    """Keep environment overrides and cached settings out of every test."""
    monkeypatch.delenv("MANIFOLD_ROOT", raising=False)
    monkeypatch.delenv("MANIFOLD_OUTPUT_DIR", raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def manifest_repo(tmp_path) -> Path:
    """A populated manifest repository root."""
    return build_manifest_repo(tmp_path / "repo")


@pytest.fixture
def settings(manifest_repo):
    return load_settings(manifest_repo)


@pytest.fixture
def store(settings) -> ManifestStore:
    return ManifestStore(settings)
