# manifold/validator/errors.py
"""Validation issue collection and formatting for manifest checks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

# Issue message template: [FAIL] CODE: location problem -> Fix: action
ERROR_TEMPLATE = "[FAIL] {code}: {location} {problem}\n  Fix: {fix}"
WARNING_TEMPLATE = "[WARN] {code}: {location} {problem}\n  Fix: {fix}"

# Issue codes
SCHEMA = "SCHEMA"
PARSE = "PARSE"
ID_FORMAT = "ID_FORMAT"
VERSION_FORMAT = "VERSION_FORMAT"
DUPLICATE_ID = "DUPLICATE_ID"
MISSING_REFERENCE = "MISSING_REFERENCE"
CYCLIC_EXTENDS = "CYCLIC_EXTENDS"
LIST_CONFLICT = "LIST_CONFLICT"
LOOP_REFERENCE = "LOOP_REFERENCE"
UNKNOWN_TOOL = "UNKNOWN_TOOL"
FORBIDDEN_CHARACTER = "FORBIDDEN_CHARACTER"


@dataclass(frozen=True)
class ValidationIssue:
    """A single problem found in a manifest.

    location names the manifest (``recipe:bugfix-loop``) optionally followed
    by a field path (``recipe:bugfix-loop steps.0.agent``).
    """
    code: str
    location: str
    problem: str
    fix: str
    file_path: str = ""

    def format(self, warning: bool = False) -> str:
        template = WARNING_TEMPLATE if warning else ERROR_TEMPLATE
        return template.format(
            code=self.code, location=self.location, problem=self.problem, fix=self.fix,
        )

    def sort_key(self) -> Tuple[str, str, str]:
        """Sort key for deterministic ordering."""
        return (self.file_path, self.location, self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "location": self.location,
            "problem": self.problem,
            "fix": self.fix,
            "file_path": self.file_path,
        }


class ValidationResult:
    """Collects validation errors and warnings."""

    def __init__(self):
        self.errors: List[ValidationIssue] = []
        self.warnings: List[ValidationIssue] = []
        self.checked: int = 0

    def add_error(
        self,
        code: str,
        location: str,
        problem: str,
        fix: str,
        file_path: Optional[str] = None,
    ):
        """Add a validation error."""
        self.errors.append(ValidationIssue(code, location, problem, fix, file_path or ""))

    def add_warning(
        self,
        code: str,
        location: str,
        problem: str,
        fix: str,
        file_path: Optional[str] = None,
    ):
        """Add a warning (suspicious but compilable manifest)."""
        self.warnings.append(ValidationIssue(code, location, problem, fix, file_path or ""))

    def extend(self, other: "ValidationResult"):
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.checked += other.checked

    def has_errors(self) -> bool:
        return bool(self.errors)

    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def codes(self) -> List[str]:
        """Codes of all errors, in collection order."""
        return [e.code for e in self.errors]

    def sorted_errors(self) -> List[ValidationIssue]:
        return sorted(self.errors, key=lambda e: e.sort_key())

    def sorted_warnings(self) -> List[ValidationIssue]:
        return sorted(self.warnings, key=lambda w: w.sort_key())

    def format_report(self) -> str:
        """Human-readable report: errors, then warnings, then a summary line."""
        lines = [e.format() for e in self.sorted_errors()]
        lines.extend(w.format(warning=True) for w in self.sorted_warnings())
        status = "FAIL" if self.has_errors() else "PASS"
        lines.append(
            f"{status}: {self.checked} manifests checked, "
            f"{len(self.errors)} errors, {len(self.warnings)} warnings"
        )
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for JSON serialization."""
        return {
            "errors": [e.to_dict() for e in self.sorted_errors()],
            "warnings": [w.to_dict() for w in self.sorted_warnings()],
            "checked": self.checked,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "status": "FAIL" if self.has_errors() else "PASS",
        }
