"""
The `edit` command: opens code in an external editor and feeds the edited
result back into the shell's input stream.

Editing a name re-binds it (`name = <edited>`); editing anything else
replaces the input as-is.
"""
from __future__ import annotations

import ast
import asyncio
import inspect
import io
import os
import re
import shlex
import textwrap
import tokenize
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from docsh.docsh_classify import defined_name, is_bare_identifier, is_editor_application_family
from docsh.docsh_config import dbg
from docsh.docsh_datatypes import (
    ContentKind, EditorExecutionFailed, EditorSession, NoEditorConfigured, ShellState,
)

_TEMP_NAME = re.compile(r"^edit-(\d+)-[0-9a-f]+\.py$")


def default_scratch_dir() -> Path:
    return Path.home() / ".docsh" / "editor"


def resolve_path(namespace: Mapping[str, Any], dotted: str) -> Any:
    """Look up `a.b.c` in a shell namespace (attributes first, then keys)."""
    head, *rest = dotted.strip().split(".")
    if head not in namespace:
        raise NameError(f"name {head!r} is not defined")
    value = namespace[head]
    for part in rest:
        try:
            value = getattr(value, part)
        except AttributeError:
            if isinstance(value, Mapping) and part in value:
                value = value[part]
            else:
                raise
    return value


def source_of(value: Any) -> str:
    """Source text that re-creates `value` when assigned to a name."""
    if inspect.isfunction(value) or inspect.isclass(value) or inspect.ismethod(value):
        try:
            src = textwrap.dedent(inspect.getsource(value)).strip()
        except (OSError, TypeError):
            return repr(value)
        if getattr(value, "__name__", None) == "<lambda>":
            return _lambda_expression(src) or src
        return src
    return repr(value)


def _lambda_expression(src: str) -> Optional[str]:
    # getsource returns the whole line a lambda sits on; keep just the lambda
    try:
        tree = ast.parse(src)
    except SyntaxError:
        return None
    for node in ast.walk(tree):
        if isinstance(node, ast.Lambda):
            return ast.get_source_segment(src, node)
    return None


def _is_single_logical_line(code: str) -> bool:
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(code).readline))
    except (tokenize.TokenError, SyntaxError):
        return False
    newlines = 0
    for tok in tokens:
        if tok.type in (tokenize.INDENT, tokenize.DEDENT) and tok.string:
            return False
        if tok.type == tokenize.STRING and tok.start[0] != tok.end[0]:
            return False
        if tok.type == tokenize.NEWLINE:
            newlines += 1
    return newlines <= 1


def _collapse(code: str) -> str:
    lines = code.split("\n")
    for tok in tokenize.generate_tokens(io.StringIO(code).readline):
        if tok.type == tokenize.COMMENT:
            row, col = tok.start
            lines[row - 1] = lines[row - 1][:col]
    parts = []
    for line in lines:
        line = line.strip()
        if line.endswith("\\"):
            line = line[:-1].rstrip()
        if line:
            parts.append(line)
    return " ".join(parts)


def normalize_editor_output(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    if "\n" in text and _is_single_logical_line(text):
        return _collapse(text)
    return text


class EditorBridge:
    """Runs the `edit` command for one shell."""

    def __init__(self, input, config, state: Optional[ShellState] = None,
                 tmp_dir: Optional[Path] = None,
                 lookup: Optional[Callable[[str], Any]] = None,
                 namespace: Optional[Dict[str, Any]] = None,
                 environ: Optional[Mapping[str, str]] = None):
        self._input = input
        self._config = config
        self.state = state or ShellState()
        self.tmp_dir = Path(tmp_dir) if tmp_dir is not None else default_scratch_dir()
        self._namespace = namespace if namespace is not None else {}
        self._lookup = lookup or (lambda code: resolve_path(self._namespace, code))
        self._environ = environ if environ is not None else os.environ

    def resolve_editor_command(self) -> str:
        cmd = self._config.get("editor")
        if cmd:
            return cmd
        cmd = self._environ.get("EDITOR")
        if cmd:
            return cmd
        raise NoEditorConfigured()

    async def prepare_content(self, code: str) -> str:
        if not code.strip():
            return self.state.last_edited_content or ""
        if is_bare_identifier(code):
            value = self._lookup(code.strip())
            if inspect.isawaitable(value):
                value = await value
            return source_of(value)
        return code

    def _prepare_result(self, *, original_code: str, modified_code: str) -> str:
        name = original_code.strip()
        if not is_bare_identifier(name):
            return modified_code
        bound = defined_name(modified_code)
        if bound is None:
            return f"{name} = {modified_code}"
        # a def/class statement binds its own name
        if bound == name:
            return modified_code
        return f"{modified_code}\n{name} = {bound}"

    def _command_argv(self, command: str):
        try:
            argv = shlex.split(command, posix=(os.name != "nt"))
        except ValueError as e:
            raise EditorExecutionFailed(f"could not parse editor command {command!r}: {e}") from e
        if os.name == "nt":
            argv = [a.strip('"') for a in argv]
        if not argv:
            raise NoEditorConfigured()
        program, flags = argv[0], argv[1:]
        if is_editor_application_family(program) and not {"--wait", "-w"} & set(flags):
            flags.append("--wait")
        return program, flags

    def _create_temp_file(self, content: str) -> Path:
        self.tmp_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        # mkdir leaves an existing directory's mode alone
        self.tmp_dir.chmod(0o700)
        path = self.tmp_dir / f"edit-{os.getpid()}-{uuid.uuid4().hex}.py"
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        return path

    async def _spawn(self, session: EditorSession):
        program, flags = self._command_argv(session.editor_command)
        dbg("editor: spawning", program, flags, session.temp_file_path)
        try:
            proc = await asyncio.create_subprocess_exec(program, *flags, str(session.temp_file_path))
        except OSError as e:
            raise EditorExecutionFailed(f"could not start editor {program!r}: {e}") from e
        returncode = await proc.wait()
        if returncode != 0:
            raise EditorExecutionFailed(f"editor {program!r} exited with status {returncode}", returncode)

    async def run_edit_command(self, code: str):
        """Edit `code` externally and push the reconciled line into the input stream."""
        command = self.resolve_editor_command()
        content = await self.prepare_content(code)
        session = EditorSession(
            original_code=code,
            content_kind=ContentKind.IDENTIFIER if is_bare_identifier(code) else ContentKind.STATEMENT,
            editor_command=command,
        )
        session.temp_file_path = str(self._create_temp_file(content))
        try:
            await self._spawn(session)
            raw = Path(session.temp_file_path).read_text(encoding="utf-8")
        finally:
            Path(session.temp_file_path).unlink(missing_ok=True)

        session.modified_code = normalize_editor_output(raw)
        self.state.last_edited_content = session.modified_code
        self._input.unshift(self._prepare_result(original_code=code, modified_code=session.modified_code))

    def sweep_scratch_dir(self) -> int:
        """Remove temp files left behind by shells that are no longer running."""
        if not self.tmp_dir.is_dir():
            return 0
        removed = 0
        for entry in self.tmp_dir.iterdir():
            m = _TEMP_NAME.match(entry.name)
            if not m or _pid_alive(int(m.group(1))):
                continue
            entry.unlink(missing_ok=True)
            removed += 1
        if removed:
            dbg("editor: removed stale temp files", removed)
        return removed


def _pid_alive(pid: int) -> bool:
    if pid == os.getpid():
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True
