"""
Discovery of suspension points.

Backend coroutine methods are wrapped with `suspending`. While the current
EvaluationSession is tracking, a wrapped call does not reach the backend: it
records where in the input line it was called from and hands back a
Placeholder so the rest of the line can keep running.
"""
import contextlib
import contextvars
import copy
import functools
import inspect
import io
import sys
import types
from typing import Any, Awaitable, Callable, Dict, List, Optional

from docsh.docsh_config import dbg
from docsh.docsh_datatypes import EvaluationSession, SourceLocation

current_session: contextvars.ContextVar[Optional[EvaluationSession]] = contextvars.ContextVar(
    "docsh_current_session", default=None
)


class Placeholder:
    """Stand-in result for a suspending call made during the discovery pass."""

    __slots__ = ("label",)

    def __init__(self, label: str = "?"):
        self.label = label

    def __getattr__(self, name):
        if name.startswith("__"):
            raise AttributeError(name)
        return Placeholder(f"{self.label}.{name}")

    def __call__(self, *args, **kwargs):
        return self

    def __getitem__(self, key):
        return self

    def __setitem__(self, key, value):
        pass

    def __iter__(self):
        return iter(())

    def __len__(self):
        return 0

    def __bool__(self):
        return True

    def __await__(self):
        return self
        yield

    def __deepcopy__(self, memo):
        return self

    def _same(self, *args):
        return self

    __add__ = __radd__ = __sub__ = __rsub__ = __mul__ = __rmul__ = _same
    __truediv__ = __rtruediv__ = __floordiv__ = __rfloordiv__ = __mod__ = __rmod__ = _same
    __pow__ = __rpow__ = __neg__ = __pos__ = __abs__ = __invert__ = __round__ = _same
    __and__ = __rand__ = __or__ = __ror__ = __xor__ = __rxor__ = _same
    __lt__ = __le__ = __gt__ = __ge__ = _same
    __hash__ = object.__hash__

    # int(), float(), range() and indexing need real numbers
    def __int__(self):
        return 0

    __index__ = __int__

    def __float__(self):
        return 0.0

    def __complex__(self):
        return 0j

    def __format__(self, spec):
        return repr(self)

    def __repr__(self):
        return f"<pending {self.label}>"


def _caller_location(frame) -> Optional[SourceLocation]:
    # f_lasti is the byte offset of the CALL instruction currently executing
    positions = list(frame.f_code.co_positions())
    idx = frame.f_lasti // 2
    if idx < 0 or idx >= len(positions):
        return None
    lineno, end_lineno, col, end_col = positions[idx]
    if None in (lineno, end_lineno, col, end_col):
        return None
    return SourceLocation(lineno, col, end_lineno, end_col)


def suspending(method: Callable[..., Awaitable[Any]]):
    """Mark a backend coroutine method as a suspension point."""

    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        session = current_session.get()
        if session is None or not session.tracking:
            return method(*args, **kwargs)
        caller = sys._getframe(1)
        if caller.f_code.co_filename == session.filename:
            loc = _caller_location(caller)
            if loc is not None:
                session.record(loc)
        else:
            dbg("suspend: call from outside the input line", caller.f_code.co_filename)
        return Placeholder(method.__name__)

    wrapper._is_suspending = True
    return wrapper


def _defined_in(func: Any, namespace: Dict[str, Any]) -> bool:
    return isinstance(func, types.FunctionType) and func.__globals__ is namespace


def _rebind_function(func: types.FunctionType, scratch: Dict[str, Any], memo: Dict[int, Any]) -> types.FunctionType:
    try:
        defaults = copy.deepcopy(func.__defaults__, memo)
        kwdefaults = copy.deepcopy(func.__kwdefaults__, memo)
    except Exception:
        defaults, kwdefaults = func.__defaults__, func.__kwdefaults__
    clone = types.FunctionType(func.__code__, scratch, func.__name__, defaults, func.__closure__)
    clone.__kwdefaults__ = kwdefaults
    clone.__qualname__ = func.__qualname__
    clone.__doc__ = func.__doc__
    clone.__dict__.update(func.__dict__)
    return clone


def _rebind_member(value: Any, namespace, scratch, memo) -> Any:
    match value:
        case types.FunctionType() if _defined_in(value, namespace):
            return _rebind_function(value, scratch, memo)
        case staticmethod() | classmethod() if _defined_in(value.__func__, namespace):
            return type(value)(_rebind_function(value.__func__, scratch, memo))
        case property() if any(_defined_in(f, namespace) for f in (value.fget, value.fset, value.fdel)):
            parts = [_rebind_member(f, namespace, scratch, memo) for f in (value.fget, value.fset, value.fdel)]
            return property(*parts, value.__doc__)
    return value


def _rebind_class(cls: type, namespace, scratch, memo) -> Optional[type]:
    body = {}
    for key, member in vars(cls).items():
        rebound = _rebind_member(member, namespace, scratch, memo)
        if rebound is not member:
            body[key] = rebound
    if not body:
        return None
    body["__module__"] = cls.__module__
    body["__qualname__"] = cls.__qualname__
    body["__doc__"] = cls.__doc__
    # a subclass keeps isinstance checks and zero-argument super() working
    return type(cls)(cls.__name__, (cls,), body)


def snapshot_context(namespace: Dict[str, Any]) -> Dict[str, Any]:
    """Structurally independent copy of a shell namespace for the discovery pass.

    Functions and classes defined in the shell are rebuilt against the copy,
    so calling them during discovery cannot reach the real namespace.
    """
    memo: Dict[int, Any] = {}
    out: Dict[str, Any] = {}
    for value in namespace.values():
        if _defined_in(value, namespace):
            memo[id(value)] = _rebind_function(value, out, memo)
        elif isinstance(value, type) and id(value) not in memo:
            try:
                clone = _rebind_class(value, namespace, out, memo)
            except Exception as e:
                dbg("snapshot: sharing class", value.__name__, e)
                clone = None
            if clone is not None:
                memo[id(value)] = clone
    for name, value in namespace.items():
        if name == "__builtins__":
            out[name] = value
            continue
        try:
            out[name] = copy.deepcopy(value, memo)
        except Exception as e:
            # modules, locks, sockets: nothing to copy, share the reference
            dbg("snapshot: sharing", name, type(value).__name__, e)
            out[name] = value
    return out


async def collect_suspensions(session: EvaluationSession, context: Dict[str, Any],
                              run: Callable[[str, Dict[str, Any], str], Awaitable[Any]]) -> List[SourceLocation]:
    """Run `session.source` once against a snapshot and return the recorded call sites."""
    scratch = snapshot_context(context)
    token = current_session.set(session)
    session.start_tracking()
    try:
        # output written by the line belongs to the real pass
        with contextlib.redirect_stdout(io.StringIO()), contextlib.redirect_stderr(io.StringIO()):
            result = await run(session.source, scratch, session.filename)
        if inspect.iscoroutine(result):
            result.close()
    finally:
        session.stop_tracking()
        current_session.reset(token)
    return list(session.locations)
