"""
Defines the core data types shared by the docsh evaluator and editor bridge.

Sessions are plain values owned by the component that created them; only
ShellState outlives a single input line.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


class DocshError(Exception):
    """Base class for errors reported by the shell core."""
    pass


class NoEditorConfigured(DocshError):
    def __init__(self):
        super().__init__(
            "Command failed with an error: please define an external editor "
            "using config.set('editor', ...) or the EDITOR environment variable"
        )


class EditorExecutionFailed(DocshError):
    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(f"Command failed with an error: {message}")
        self.returncode = returncode


class RewriteFailed(DocshError):
    """The discovery pass or the rewrite of a line raised.

    The original exception is kept as __cause__; str() renders it the way the
    real evaluation error would have been rendered.
    """
    def __init__(self, original: BaseException):
        super().__init__(f"{type(original).__name__}: {original}")
        self.original = original


class ConfigError(DocshError):
    pass


class BackendError(DocshError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ReplRenderable(ABC):
    """A result that knows how to render itself for the shell."""

    @abstractmethod
    def to_repl_string(self) -> str: raise NotImplementedError


# =================================================================
# Evaluation
# =================================================================

@dataclass(frozen=True)
class SourceLocation:
    """Span of one call expression, in compiler coordinates.

    Lines are 1-based, columns are UTF-8 byte offsets (as in `ast`).
    """
    lineno: int
    col_offset: int
    end_lineno: int
    end_col_offset: int


@dataclass
class EvaluationSession:
    raw_input: str
    source: str
    filename: str
    tracking: bool = False
    locations: List[SourceLocation] = field(default_factory=list)
    rewritten_input: Optional[str] = None
    cursor_assigned: bool = False

    def start_tracking(self):
        self.locations.clear()
        self.tracking = True

    def stop_tracking(self):
        self.tracking = False

    def record(self, loc: SourceLocation):
        if self.tracking and loc not in self.locations:
            self.locations.append(loc)


# =================================================================
# Editing
# =================================================================

class ContentKind(enum.Enum):
    IDENTIFIER = "identifier"
    STATEMENT = "statement"


@dataclass
class EditorSession:
    original_code: str
    content_kind: ContentKind
    editor_command: str
    temp_file_path: Optional[str] = None
    modified_code: Optional[str] = None


@dataclass
class ShellState:
    last_edited_content: str = ""
