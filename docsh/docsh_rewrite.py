"""
Rewrites an input line so that recorded suspension points are awaited.
"""
import ast
from typing import Dict, Iterable, List, Optional, Tuple

from docsh.docsh_datatypes import RewriteFailed, SourceLocation

MARKER = "await "

# `await` is illegal, or turns the construct into something else, inside these.
_SYNC_SCOPES = (ast.Lambda, ast.FunctionDef, ast.ClassDef, ast.GeneratorExp)


class _CallIndex(ast.NodeVisitor):
    """Indexes Call nodes by end position, remembering their parent."""

    def __init__(self):
        self.calls: Dict[Tuple[int, int], Tuple[ast.Call, Optional[ast.AST], bool]] = {}
        self._stack: List[ast.AST] = []

    def generic_visit(self, node):
        if isinstance(node, ast.Call):
            parent = self._stack[-1] if self._stack else None
            in_sync_scope = any(isinstance(n, _SYNC_SCOPES) for n in self._stack)
            self.calls[(node.end_lineno, node.end_col_offset)] = (node, parent, in_sync_scope)
        self._stack.append(node)
        super().generic_visit(node)
        self._stack.pop()


def _needs_parens(call: ast.Call, parent: Optional[ast.AST]) -> bool:
    match parent:
        case ast.Attribute(value=v) | ast.Subscript(value=v) if v is call:
            return True
        case ast.Call(func=f) if f is call:
            return True
    return False


class _Offsets:
    """Converts (line, utf-8 byte column) into absolute str offsets."""

    def __init__(self, source: str):
        self.lines = source.split("\n")
        self.starts = []
        pos = 0
        for line in self.lines:
            self.starts.append(pos)
            pos += len(line) + 1

    def __call__(self, lineno: int, byte_col: int) -> int:
        line = self.lines[lineno - 1]
        char_col = len(line.encode("utf-8")[:byte_col].decode("utf-8", errors="ignore"))
        return self.starts[lineno - 1] + char_col


def rewrite(source: str, locations: Iterable[SourceLocation]) -> str:
    locations = list(locations)
    if not locations:
        return source
    try:
        tree = ast.parse(source)
    except SyntaxError as e:
        raise RewriteFailed(e) from e

    index = _CallIndex()
    index.visit(tree)
    offset = _Offsets(source)

    # (offset, order, text); order sorts closes before opens, outer opens before inner
    inserts: List[Tuple[int, int, str]] = []
    seen = set()
    for loc in locations:
        key = (loc.end_lineno, loc.end_col_offset)
        entry = index.calls.get(key)
        if entry is None or key in seen:
            continue
        seen.add(key)
        call, parent, in_sync_scope = entry
        if in_sync_scope or isinstance(parent, ast.Await):
            continue
        start = offset(call.lineno, call.col_offset)
        end = offset(call.end_lineno, call.end_col_offset)
        span = end - start
        if _needs_parens(call, parent):
            inserts.append((start, -span, "(" + MARKER))
            inserts.append((end, -(10 ** 9) + span, ")"))
        else:
            inserts.append((start, -span, MARKER))

    # Build left to right: at a shared offset the lowest order goes first.
    inserts.sort(key=lambda t: (t[0], t[1]))
    out = []
    cursor = 0
    for pos, _, text in inserts:
        out.append(source[cursor:pos])
        out.append(text)
        cursor = pos
    out.append(source[cursor:])
    return "".join(out)
