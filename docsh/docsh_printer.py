"""
A pretty-printer for shell results.

Formats documents, lists and scalars as readable Python literals. Cyclic
structures print as `...` and objects whose repr raises fall back to a
type tag, so formatting never fails.
"""
import collections.abc


class Printer:
    """Formats Python values for display in the shell."""

    def __init__(self, indent_width=2, width=80):
        self._indent_char = " " * indent_width
        self._width = width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        return self._format(obj, level, set())

    def _format(self, obj, level, active):
        handler = self._get_handler(obj)
        if handler in (self._pformat_dict, self._pformat_seq):
            if id(obj) in active:
                return "..."
            active = active | {id(obj)}
        try:
            return handler(obj, level, active)
        except Exception:
            return self._pformat_opaque(obj, level, active)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, collections.abc.Mapping):
            return self._pformat_dict
        if isinstance(obj, (list, tuple, set, frozenset)):
            return self._pformat_seq
        return self._pformat_repr

    def _create_handlers(self):
        return {
            str: self._pformat_repr,
            bytes: self._pformat_repr,
            int: self._pformat_repr,
            float: self._pformat_repr,
            bool: self._pformat_repr,
            type(None): self._pformat_repr,
            dict: self._pformat_dict,
            list: self._pformat_seq,
            tuple: self._pformat_seq,
            set: self._pformat_seq,
            frozenset: self._pformat_seq,
        }

    def _pformat_repr(self, obj, level, active):
        return repr(obj)

    def _pformat_opaque(self, obj, level, active):
        return f"<{type(obj).__name__} object>"

    def _wrap(self, opener, closer, items, level):
        flat = f"{opener}{', '.join(items)}{closer}"
        if "\n" not in flat and len(flat) + len(self._indent_char) * level <= self._width:
            return flat
        inner = self._indent_char * (level + 1)
        body = ",\n".join(f"{inner}{item}" for item in items)
        return f"{opener}\n{body}\n{self._indent_char * level}{closer}"

    def _pformat_dict(self, obj, level, active):
        if not obj:
            return "{}"
        items = [
            f"{self._format(k, level + 1, active)}: {self._format(v, level + 1, active)}"
            for k, v in obj.items()
        ]
        return self._wrap("{", "}", items, level)

    def _pformat_seq(self, obj, level, active):
        items = [self._format(x, level + 1, active) for x in obj]
        match obj:
            case tuple():
                if len(items) == 1:
                    return f"({items[0]},)"
                return self._wrap("(", ")", items, level)
            case set() | frozenset():
                if not items:
                    return f"{type(obj).__name__}()"
                return self._wrap("{", "}", items, level)
            case _:
                return self._wrap("[", "]", items, level)
