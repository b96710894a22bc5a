"""
The docsh evaluator: runs one input line through discovery, rewrite and the
real evaluation pass, and renders the result.
"""
import ast
import inspect
import itertools
import linecache
import re
import textwrap
from typing import Any, Dict, Optional

from docsh.docsh_config import Config, dbg
from docsh.docsh_datatypes import DocshError, EvaluationSession, ReplRenderable, RewriteFailed
from docsh.docsh_printer import Printer
from docsh.docsh_rewrite import rewrite
from docsh.docsh_shell_api import ShellApi
from docsh.docsh_suspend import collect_suspensions, current_session

_COMPILE_FLAGS = ast.PyCF_ALLOW_TOP_LEVEL_AWAIT
_CURSOR_PREFIX = re.compile(r"^\s*var\s+(?=[A-Za-z_])")
_DB_NAME = re.compile(r"[\w.$-]+")
_line_numbers = itertools.count(1)


def _register_source(source: str, filename: str):
    # Lets inspect.getsource find functions and classes defined in the shell
    linecache.cache[filename] = (len(source), None, source.splitlines(True), filename)


async def run_source(source: str, namespace: Dict[str, Any], filename: str) -> Any:
    """Execute `source` in `namespace`; the value of a trailing expression is returned."""
    tree = ast.parse(source, filename, "exec")
    tail = None
    if tree.body and isinstance(tree.body[-1], ast.Expr):
        tail = ast.Expression(tree.body.pop().value)
    _register_source(source, filename)

    result = None
    if tree.body:
        code = compile(tree, filename, "exec", flags=_COMPILE_FLAGS)
        result = eval(code, namespace)
        if code.co_flags & inspect.CO_COROUTINE:
            await result
        result = None
    if tail is not None:
        code = compile(tail, filename, "eval", flags=_COMPILE_FLAGS)
        result = eval(code, namespace)
        if code.co_flags & inspect.CO_COROUTINE:
            result = await result
    return result


def _is_python(line: str) -> bool:
    try:
        ast.parse(textwrap.dedent(line).strip())
    except SyntaxError:
        return False
    return True


def _source_context(source: str, line: Optional[int], col: Optional[int], radius: int = 2) -> str:
    lines = source.splitlines()
    if not line or line < 1 or line > len(lines):
        return ""
    start = max(1, line - radius)
    end = min(len(lines), line + radius)
    width = len(str(end))
    out = []
    for i in range(start, end + 1):
        prefix = ">" if i == line else " "
        out.append(f"{prefix} {str(i).rjust(width)} | {lines[i - 1]}")
        if i == line and col is not None:
            out.append(f"  {' ' * width} | {' ' * max(col - 1, 0)}^")
    return "\n".join(out)


def format_error(e: BaseException) -> str:
    """One-line description of an error, with a source excerpt for syntax errors."""
    if isinstance(e, RewriteFailed):
        e = e.original
    if isinstance(e, SyntaxError):
        msg = f"SyntaxError: {e.msg}"
        ctx = _source_context(e.text or "", 1, e.offset) if e.text else ""
        return f"{msg}\n{ctx}" if ctx else msg
    text = str(e)
    return f"{type(e).__name__}: {text}" if text else type(e).__name__


class Evaluator:
    """Evaluates shell input lines, awaiting backend calls the user did not mark."""

    def __init__(self, shell_api: Optional[ShellApi] = None, config: Optional[Config] = None,
                 printer: Optional[Printer] = None):
        self.shell_api = shell_api
        self.config = config or Config()
        self.printer = printer or Printer()

    # --- built-in verbs ---

    async def _run_verb(self, line: str, context: Dict[str, Any]):
        """Returns (handled, value) for the shell's own commands."""
        if self.shell_api is None:
            return False, None
        argv = line.strip().split()
        if not argv:
            return False, None
        match argv:
            case ["use", name] if _DB_NAME.fullmatch(name):
                msg = self.shell_api.use(name)
                context["db"] = self.shell_api.db
                return True, msg
            case ["use", *rest] if not _is_python(line):
                raise DocshError(f"use: invalid database name {' '.join(rest)!r}")
            case ["it"]:
                return True, await self.shell_api.it()
            case ["help"] | ["help()"]:
                return True, self.shell_api.help
        return False, None

    # --- evaluation ---

    async def _evaluate_session(self, session: EvaluationSession, context: Dict[str, Any]) -> Any:
        if self.config.get("rewrite"):
            try:
                locations = await collect_suspensions(session, context, run_source)
                session.rewritten_input = rewrite(session.source, locations)
            except RewriteFailed:
                raise
            except Exception as e:
                raise RewriteFailed(e) from e
            if session.rewritten_input.strip() != session.source.strip():
                dbg(f'rewrote input "{session.source.strip()}" to "{session.rewritten_input.strip()}"')
            source = session.rewritten_input
        else:
            source = session.source

        value = await run_source(source, context, session.filename)
        if inspect.isawaitable(value):
            value = await value
        if self.shell_api is not None:
            value = await self.shell_api.present(value, session)
        return value

    async def evaluate_value(self, line: str, context: Dict[str, Any]) -> Any:
        """Evaluate one line and return its raw value."""
        handled, value = await self._run_verb(line, context)
        if handled:
            return value

        # indentation typed before a line is not a block
        source = textwrap.dedent(line).strip()
        cursor_assigned = False
        if _CURSOR_PREFIX.match(source):
            source = _CURSOR_PREFIX.sub("", source, count=1)
            cursor_assigned = True
        session = EvaluationSession(
            raw_input=line,
            source=source,
            filename=f"<docsh-input-{next(_line_numbers)}>",
            cursor_assigned=cursor_assigned,
        )
        token = current_session.set(session)
        try:
            return await self._evaluate_session(session, context)
        finally:
            session.stop_tracking()
            session.cursor_assigned = False
            current_session.reset(token)

    async def evaluate(self, line: str, context: Dict[str, Any]) -> Optional[str]:
        """Evaluate one line; returns the text to print, or None for nothing."""
        return self.writer(await self.evaluate_value(line, context))

    def writer(self, output: Any) -> Optional[str]:
        match output:
            case None if not self.config.get("show-none"):
                return None
            case ReplRenderable():
                return output.to_repl_string()
            case str():
                return output
            case _:
                return self.printer.pformat(output)
