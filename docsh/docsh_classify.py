"""
Pure text classification helpers used by the editor bridge.
"""
import ast
import keyword
import re
from typing import Optional

# Editors that fork into a GUI window and need `--wait` to block until it closes.
EDITOR_APPLICATION_FAMILY = frozenset({"code", "code-insiders", "codium"})

_NAME = r"[A-Za-z_$][\w$]*"
_DOTTED_PATH = re.compile(rf"{_NAME}(?:\.{_NAME})*")


def is_editor_application_family(command_path: str) -> bool:
    name = re.split(r"[\\/]", command_path.strip().strip('"').strip("'"))[-1].lower()
    if name.endswith(".exe"):
        name = name[:-4]
    return name in EDITOR_APPLICATION_FAMILY


def is_bare_identifier(code: str) -> bool:
    """True for `name` / `a.b.c` / `$name` references that can be re-bound."""
    text = code.strip()
    if not _DOTTED_PATH.fullmatch(text):
        return False
    # `None`, `True`, `lambda` and friends look like names but cannot be assigned
    return not any(keyword.iskeyword(part) for part in text.split("."))


def defined_name(code: str) -> Optional[str]:
    """Name bound by `code` when it is exactly one def/class statement."""
    try:
        tree = ast.parse(code)
    except SyntaxError:
        return None
    if len(tree.body) != 1:
        return None
    match tree.body[0]:
        case ast.FunctionDef(name=name) | ast.AsyncFunctionDef(name=name) | ast.ClassDef(name=name):
            return name
        case _:
            return None
