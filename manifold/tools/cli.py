#!/usr/bin/env python3
"""
cli.py - Command line interface for manifest resolution and recipe compilation.

Usage:
    manifold compile bugfix-loop --tool copilot-cli --project my-app
    manifold generate my-app --tool claude-code --tool cursor
    manifold list recipes
    manifold rules code-reviewer --project my-app
    manifold rules --project my-app --stack backend
    manifold model --project my-app --feature login --agent code-reviewer
    manifold fill-prompt extract-method --var file=app.py
    manifold validate --json

Exit Codes:
    0 - Success
    1 - Validation failed
    2 - Fatal error (unknown id or tool, unloadable manifest, bad recipe)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from manifold import __version__
from manifold.config.resolver import OverrideResolver, resolve_model_source
from manifold.config.settings import get_settings
from manifold.recipes.backends import default_registry
from manifold.recipes.compiler import CompileRun
from manifold.recipes.generator import generate_project, write_script
from manifold.spec.errors import ManifestError, ManifestNotFoundError
from manifold.spec.loader import ManifestStore
from manifold.spec.prompts import fill_prompt
from manifold.spec.validation import validate_repository

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_VALIDATION_FAILED = 1
EXIT_FATAL_ERROR = 2

LIST_KINDS = ("recipes", "agents", "prompts", "rulepacks", "projects", "tools")


def _parse_vars(pairs: Optional[List[str]]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise ValueError(f"Expected KEY=VALUE, got: {pair}")
        key, value = pair.split("=", 1)
        values[key.strip()] = value
    return values


def _open_store(args: argparse.Namespace) -> ManifestStore:
    return ManifestStore(get_settings(Path(args.root) if args.root else None))


# =============================================================================
# Commands
# =============================================================================


def cmd_compile(args: argparse.Namespace) -> int:
    store = _open_store(args)
    project = store.load_project(args.project) if args.project else None
    feature = None
    if args.feature:
        if not args.project:
            raise ManifestError("--feature requires --project")
        feature = store.load_feature(args.project, args.feature)

    run = CompileRun(store, project=project, feature=feature)
    text = run.compile(store.load_recipe(args.recipe), args.tool)

    if args.output:
        path = write_script(Path(args.output), text)
        print(f"Wrote {path}")
    else:
        sys.stdout.write(text)
    return EXIT_SUCCESS


def cmd_generate(args: argparse.Namespace) -> int:
    store = _open_store(args)
    report = generate_project(store, args.project, tools=args.tool)
    for script in report.written:
        print(script.path)
    for unit, reason in report.skipped:
        print(f"SKIPPED: {unit}: {reason}", file=sys.stderr)
    print(f"\n{len(report.written)} script(s) generated, {len(report.skipped)} skipped")
    return EXIT_SUCCESS


def cmd_list(args: argparse.Namespace) -> int:
    if args.kind == "tools":
        for backend in default_registry().all():
            caps = backend.capabilities()
            mode = "cli" if caps.programmatic else "manual"
            print(f"{backend.id:<16} {mode:<7} {backend.recipes_dir:<24} {caps.label}")
        return EXIT_SUCCESS

    store = _open_store(args)
    listers = {
        "recipes": store.list_recipes,
        "agents": store.list_agents,
        "prompts": store.list_prompts,
        "rulepacks": store.list_rulepacks,
        "projects": store.list_projects,
    }
    for item in listers[args.kind]():
        print(item)
    return EXIT_SUCCESS


def cmd_rules(args: argparse.Namespace) -> int:
    store = _open_store(args)
    project = store.load_project(args.project) if args.project else None
    if args.agent is None and project is None:
        raise ValueError("rules needs an agent id, --project, or both")
    if args.stack and project is None:
        raise ValueError("--stack requires --project")

    languages = None
    if args.stack:
        stack = project.stack(args.stack)
        if stack is None:
            raise ManifestNotFoundError("Tech stack", args.stack)
        languages = stack.languages

    resolver = OverrideResolver.from_store(store)
    if args.agent is None:
        rules = resolver.resolve_project_rules(project, languages)
    else:
        agent = store.get_agent(args.agent)
        if agent is None:
            raise ManifestNotFoundError("Agent", args.agent, store.settings.dir_path("agents"))
        rules = resolver.resolve_agent_rules(agent, project, languages)

    for rule in rules:
        print(f"- {rule}")
    return EXIT_SUCCESS


def cmd_model(args: argparse.Namespace) -> int:
    store = _open_store(args)
    project = store.load_project(args.project) if args.project else None
    feature = store.load_feature(args.project, args.feature) if args.feature and args.project else None
    agent = store.get_agent(args.agent) if args.agent else None
    prompt = store.get_prompt(args.prompt) if args.prompt else None
    if args.agent and agent is None:
        logger.warning("Agent not found: %s", args.agent)
    if args.prompt and prompt is None:
        logger.warning("Prompt not found: %s", args.prompt)

    resolution = resolve_model_source(feature, project, agent, prompt)
    if resolution.model is None:
        print("(none)")
    else:
        print(f"{resolution.model}\t{resolution.label}")
    return EXIT_SUCCESS


def cmd_fill_prompt(args: argparse.Namespace) -> int:
    store = _open_store(args)
    prompt = store.get_prompt(args.prompt)
    if prompt is None:
        raise ManifestNotFoundError("Prompt", args.prompt, store.settings.dir_path("prompts"))
    sys.stdout.write(fill_prompt(prompt, _parse_vars(args.var)))
    sys.stdout.write("\n")
    return EXIT_SUCCESS


def cmd_validate(args: argparse.Namespace) -> int:
    settings = get_settings(Path(args.root) if args.root else None)
    result = validate_repository(settings, known_tools=default_registry().ids())
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(result.format_report())
    return EXIT_VALIDATION_FAILED if result.has_errors() else EXIT_SUCCESS


# =============================================================================
# Entry Point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="manifold",
        description="Resolve AI tool manifests and compile recipes into bash scripts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit Codes:
  0 - Success
  1 - Validation failed
  2 - Fatal error (unknown id or tool, unloadable manifest, bad recipe)
        """,
    )
    parser.add_argument("--root", help="Manifest repository root (default: discovered from cwd)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"manifold {__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("compile", help="Compile one recipe for one tool")
    p.add_argument("recipe", help="Recipe id")
    p.add_argument("--tool", required=True, help="Target tool (see 'list tools')")
    p.add_argument("--project", help="Project id for model and filtering")
    p.add_argument("--feature", help="Feature id (requires --project)")
    p.add_argument("--output", "-o", help="Write the script to this file (mode 0755)")
    p.set_defaults(func=cmd_compile)

    p = sub.add_parser("generate", help="Generate all recipe and feature scripts for a project")
    p.add_argument("project", help="Project id")
    p.add_argument("--tool", action="append", help="Restrict to a tool (repeatable)")
    p.set_defaults(func=cmd_generate)

    p = sub.add_parser("list", help="List manifests or tools")
    p.add_argument("kind", choices=LIST_KINDS)
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("rules", help="Print the flattened rules of an agent or a project")
    p.add_argument("agent", nargs="?", help="Agent id (omit for the project's own rules)")
    p.add_argument("--project", help="Project id for rulepack filtering and custom rules")
    p.add_argument("--stack", help="Named tech stack of the project to filter rulepacks for")
    p.set_defaults(func=cmd_rules)

    p = sub.add_parser("model", help="Print the effective model and where it comes from")
    p.add_argument("--project")
    p.add_argument("--feature")
    p.add_argument("--agent")
    p.add_argument("--prompt")
    p.set_defaults(func=cmd_model)

    p = sub.add_parser("fill-prompt", help="Fill a prompt template")
    p.add_argument("prompt", help="Prompt id")
    p.add_argument("--var", action="append", metavar="KEY=VALUE", help="Variable value (repeatable)")
    p.set_defaults(func=cmd_fill_prompt)

    p = sub.add_parser("validate", help="Validate all manifests")
    p.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    p.set_defaults(func=cmd_validate)

    return parser


def run(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, dispatch the command and return an exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except (ManifestError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_FATAL_ERROR


def main() -> None:
    """CLI entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
