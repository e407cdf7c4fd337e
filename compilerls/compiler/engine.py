"""
Compiler engine interface

The language server never parses or type checks anything itself. It hands a
source map to a CompilerEngine and reads back syntax trees, declarations and
diagnostics. Everything in this module is the contract between the two.

Offsets in SourceLocation are string offsets into the source text the engine
was given (code points, not bytes); the orchestrator converts them to LSP
positions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum

from compilerls.compiler.config import Remapping

# Kind argument of the read callback for imported sources.
READ_SOURCE = "source"


@dataclass(frozen=True)
class SourceLocation:
    source_name: str
    start: int
    end: int

    def contains(self, offset: int) -> bool:
        return self.start <= offset <= self.end

    @property
    def length(self) -> int:
        return self.end - self.start


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"


class DiagnosticFlag(Enum):
    UNUSED = "unused"
    DEPRECATED = "deprecated"


@dataclass(frozen=True)
class SecondaryLocation:
    message: str
    location: SourceLocation


@dataclass
class EngineDiagnostic:
    """A diagnostic as reported by the engine, before translation to LSP."""

    severity: Severity
    message: str
    location: SourceLocation | None = None
    code: int | None = None
    flags: frozenset[DiagnosticFlag] = frozenset()
    secondary: list[SecondaryLocation] = field(default_factory=list)


class Access(Enum):
    """How an identifier occurrence uses the symbol it refers to."""

    NONE = "none"
    READ = "read"
    WRITE = "write"


@dataclass(eq=False)
class SyntaxNode:
    """
    One node of a program unit's syntax tree.

    Attributes:
        kind: Engine-specific node kind (e.g. "Identifier")
        location: Source range covered by the node
        children: Child nodes in source order
        name: Identifier text for named nodes
        declares: Handle of the declaration this node introduces
        references: Handle of the declaration this identifier resolves to
        access: Whether the occurrence reads or writes the symbol
        import_path: Path as written in an import directive
        imported_source: Source name the import resolved to
    """

    kind: str
    location: SourceLocation
    children: list[SyntaxNode] = field(default_factory=list)
    name: str | None = None
    declares: int | None = None
    references: int | None = None
    access: Access = Access.NONE
    import_path: str | None = None
    imported_source: str | None = None

    def walk(self) -> Iterator[SyntaxNode]:
        """Pre-order traversal without recursion."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))


@dataclass(frozen=True)
class Declaration:
    """
    A named symbol's binding site.

    `handle` is unique within one compilation and is the only thing used to
    decide whether two occurrences denote the same symbol.
    """

    handle: int
    name: str
    location: SourceLocation


@dataclass
class ProgramUnit:
    source_name: str
    root: SyntaxNode

    @property
    def imports(self) -> list[str]:
        return [
            node.imported_source
            for node in self.root.walk()
            if node.imported_source is not None
        ]


@dataclass
class CompilationResult:
    units: dict[str, ProgramUnit] = field(default_factory=dict)
    declarations: dict[int, Declaration] = field(default_factory=dict)
    diagnostics: list[EngineDiagnostic] = field(default_factory=list)


@dataclass(frozen=True)
class ReadResult:
    """Answer of the read callback: either content or an error message."""

    content: str | None = None
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.content is not None

    @classmethod
    def ok(cls, content: str) -> ReadResult:
        return cls(content=content)

    @classmethod
    def failure(cls, message: str) -> ReadResult:
        return cls(error_message=message)


ReadCallback = Callable[[str, str], ReadResult]


class CompilerEngine(ABC):
    """
    Whole-program compiler as seen by the language server.

    An engine instance is created per compilation with the read callback it
    must use for any source that is not part of the source map.
    """

    def __init__(self, read_file: ReadCallback) -> None:
        self.read_file = read_file

    @abstractmethod
    def set_sources(self, sources: dict[str, str]) -> None:
        """Source name -> content of every tracked document."""

    @abstractmethod
    def set_remappings(self, remappings: list[Remapping]) -> None:
        pass

    @abstractmethod
    def set_target_version(self, version: str | None) -> None:
        """
        Raises:
            ValueError: the engine does not support `version`.
        """

    @abstractmethod
    def compile(self) -> CompilationResult:
        pass


EngineFactory = Callable[[ReadCallback], CompilerEngine]
