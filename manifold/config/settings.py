"""Settings for a manifest repository.

Resolves where manifests live and where generated artifacts go.
Environment variables take precedence over YAML config.

Resolution order (highest to lowest priority):
1. Environment variables (MANIFOLD_ROOT, MANIFOLD_OUTPUT_DIR)
2. Local overrides (15_config/config.local.yml)
3. Repository config (15_config/config.yml)
4. Built-in defaults

Mappings merge recursively; lists are unioned in order with duplicates
dropped, so a local file can add project sources without repeating them.

Usage:
    from manifold.config.settings import get_settings, reset_settings

    settings = get_settings()
    recipes_dir = settings.dir_path("recipes")
    out = settings.output_root / "my-project" / "claude-code"
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

ENV_ROOT = "MANIFOLD_ROOT"
ENV_OUTPUT_DIR = "MANIFOLD_OUTPUT_DIR"

CONFIG_DIR = "15_config"
CONFIG_FILE = "config.yml"
LOCAL_CONFIG_FILE = "config.local.yml"

# Markers used to recognise a manifest repository root when walking up from cwd
_ROOT_MARKERS = (CONFIG_DIR, "05_recipes", "04_agents")

_cached_settings: Dict[str, "Settings"] = {}


@dataclass(frozen=True)
class Settings:
    """Resolved layout of a manifest repository."""
    root: Path
    directories: Tuple[Tuple[str, str], ...]
    output_dir: str = ".output"
    docs_dir: str = ".recipe-docs"
    logs_dir: str = ".recipe-logs"
    project_sources: Tuple[str, ...] = ("global", "local")
    default_tools: Tuple[str, ...] = ("claude-code", "copilot-cli", "cursor")
    max_workers: int = 8
    sources: Tuple[str, ...] = field(default=(), compare=False)

    def dir_name(self, kind: str) -> str:
        """Return the configured directory name for a manifest kind."""
        for name, value in self.directories:
            if name == kind:
                return value
        raise KeyError(f"Unknown manifest directory kind: {kind}")

    def dir_path(self, kind: str) -> Path:
        """Return the absolute directory for a manifest kind (e.g. "recipes")."""
        return self.root / self.dir_name(kind)

    @property
    def output_root(self) -> Path:
        output = Path(self.output_dir)
        return output if output.is_absolute() else self.root / output

    def project_dirs(self) -> Tuple[Path, ...]:
        """Project source directories in lookup order."""
        projects = self.dir_path("projects")
        return tuple(projects / source for source in self.project_sources)


def _default_config() -> Dict[str, Any]:
    """Return default configuration used when no config.yml exists."""
    return {
        "directories": {
            "rulepacks": "01_rulepacks",
            "skills": "02_skills",
            "prompts": "03_prompts",
            "agents": "04_agents",
            "recipes": "05_recipes",
            "projects": "06_projects",
        },
        "output_dir": ".output",
        "docs_dir": ".recipe-docs",
        "logs_dir": ".recipe-logs",
        "project_sources": ["global", "local"],
        "default_tools": ["claude-code", "copilot-cli", "cursor"],
        "max_workers": 8,
    }


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge override into a copy of base.

    Nested mappings merge recursively, lists are unioned preserving order,
    anything else in override replaces the base value.
    """
    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        elif isinstance(current, list) and isinstance(value, list):
            result[key] = current + [v for v in value if v not in current]
        else:
            result[key] = value
    return result


def _load_yaml_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: top level must be a mapping", path)
        return {}
    return data


def find_root(start: Optional[Path] = None) -> Path:
    """Find the manifest repository root.

    Walks up from start (default: cwd) looking for a directory that holds
    the config directory or one of the manifest directories. Falls back to
    start itself.
    """
    env_root = os.environ.get(ENV_ROOT)
    if env_root:
        return Path(env_root).resolve()

    origin = (start or Path.cwd()).resolve()
    for parent in [origin] + list(origin.parents):
        if any((parent / marker).is_dir() for marker in _ROOT_MARKERS):
            return parent
    return origin


def load_settings(root: Optional[Path] = None) -> Settings:
    """Build Settings for a repository root without caching.

    Args:
        root: Repository root. Discovered with find_root() when omitted.

    Returns:
        Resolved Settings.
    """
    repo_root = Path(root).resolve() if root else find_root()
    config = _default_config()
    sources = ["defaults"]

    for filename in (CONFIG_FILE, LOCAL_CONFIG_FILE):
        path = repo_root / CONFIG_DIR / filename
        layer = _load_yaml_config(path)
        if layer:
            config = deep_merge(config, layer)
            sources.append(str(path))

    output_dir = os.environ.get(ENV_OUTPUT_DIR)
    if output_dir:
        config["output_dir"] = output_dir
        sources.append(f"env:{ENV_OUTPUT_DIR}")

    directories = config.get("directories") or {}
    return Settings(
        root=repo_root,
        directories=tuple((str(k), str(v)) for k, v in directories.items()),
        output_dir=str(config.get("output_dir", ".output")),
        docs_dir=str(config.get("docs_dir", ".recipe-docs")),
        logs_dir=str(config.get("logs_dir", ".recipe-logs")),
        project_sources=tuple(config.get("project_sources") or ()),
        default_tools=tuple(config.get("default_tools") or ()),
        max_workers=int(config.get("max_workers", 8)),
        sources=tuple(sources),
    )


def get_settings(root: Optional[Path] = None) -> Settings:
    """Get Settings for a root, with caching."""
    repo_root = Path(root).resolve() if root else find_root()
    key = str(repo_root)
    if key not in _cached_settings:
        _cached_settings[key] = load_settings(repo_root)
    return _cached_settings[key]


def reset_settings() -> None:
    """Reset cached settings (for testing)."""
    _cached_settings.clear()
