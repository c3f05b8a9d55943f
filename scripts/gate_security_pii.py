#!/usr/bin/env python3
"""Gate G2: Security & PII check for source files.

Fails if:
- print( found in runtime code (src/**)
- A logger call passes a chat id, CPF, message text or raw payload without
  hashing, masking or measuring it first

Usage:
    python scripts/gate_security_pii.py
"""

import ast
import sys
from pathlib import Path

# Names (variables or attributes) that carry personal data
SENSITIVE_NAMES = frozenset(
    {
        "chat_id",
        "jid",
        "participant",
        "sender_id",
        "push_name",
        "text",
        "raw_text",
        "normalized",
        "digits",
        "cpf",
        "document",
        "payload",
        "body",
        "number",
    }
)

# Calls that make a sensitive value safe to log
REDACTION_CALLS = frozenset(
    {
        "hash_identifier",
        "mask_cpf",
        "redact_value",
        "redact_string",
        "len",
    }
)

LOGGER_METHODS = frozenset({"debug", "info", "warning", "error", "critical", "exception"})


def _call_name(node: ast.Call) -> str:
    func = node.func
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        return func.attr
    return ""


def _is_logger_call(node: ast.Call) -> bool:
    func = node.func
    return (
        isinstance(func, ast.Attribute)
        and func.attr in LOGGER_METHODS
        and isinstance(func.value, ast.Name)
        and func.value.id == "logger"
    )


def _unredacted_names(node: ast.AST) -> list[str]:
    """Sensitive names reachable from node outside a redaction call."""
    if isinstance(node, ast.Call) and _call_name(node) in REDACTION_CALLS:
        return []
    if isinstance(node, ast.IfExp):
        # The condition is only a truth test
        return _unredacted_names(node.body) + _unredacted_names(node.orelse)
    if isinstance(node, ast.Name) and node.id in SENSITIVE_NAMES:
        return [node.id]
    if isinstance(node, ast.Attribute) and node.attr in SENSITIVE_NAMES:
        return [node.attr]

    found: list[str] = []
    for child in ast.iter_child_nodes(node):
        found.extend(_unredacted_names(child))
    return found


def check_source(source: str, filename: str = "<source>") -> list[str]:
    """Check one module's source. Returns list of error messages."""
    try:
        tree = ast.parse(source, filename=filename)
    except SyntaxError as e:
        return [f"{filename}:{e.lineno}: cannot parse ({e.msg})"]

    errors = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue

        if isinstance(node.func, ast.Name) and node.func.id == "print":
            errors.append(f"{filename}:{node.lineno}: print() not allowed in runtime code")
            continue

        if not _is_logger_call(node):
            continue

        arguments = list(node.args) + [kw.value for kw in node.keywords]
        for name in sorted({n for arg in arguments for n in _unredacted_names(arg)}):
            errors.append(
                f"{filename}:{node.lineno}: logger call with '{name}' "
                "must hash/mask it (hash_identifier/mask_cpf/len)"
            )

    return errors


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations. Returns list of error messages."""
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []  # Skip binary files
    return check_source(content, str(filepath))


def main() -> int:
    """Run gate check on src directory."""
    src_dir = Path("src")

    if not src_dir.exists():
        # Try from project root
        src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []

    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("Gate G2 FAILED - Security/PII violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("Gate G2 PASSED - No security/PII violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
