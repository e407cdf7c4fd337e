"""
Symbol Resolver

Answers navigation queries against one compilation: which node is under
the cursor, which declaration it binds to, and where else that declaration
occurs.

Occurrences are matched by declaration handle only. Two symbols spelled the
same way (e.g. a local shadowing a global) are never conflated.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from lsprotocol.types import (
    DocumentHighlight,
    DocumentHighlightKind,
    Location,
    Position,
)

from compilerls.compiler.engine import (
    Access,
    CompilationResult,
    Declaration,
    ProgramUnit,
    SourceLocation,
    SyntaxNode,
)
from compilerls.vfs import PositionError

if TYPE_CHECKING:
    from compilerls.compiler.orchestrator import CompilationOrchestrator


HIGHLIGHT_KINDS = {
    Access.NONE: DocumentHighlightKind.Text,
    Access.READ: DocumentHighlightKind.Read,
    Access.WRITE: DocumentHighlightKind.Write,
}


@dataclass(frozen=True)
class Occurrence:
    """One place a declaration appears, with how it is used there."""

    location: SourceLocation
    kind: DocumentHighlightKind


class SymbolResolver:
    def __init__(
        self, result: CompilationResult, orchestrator: CompilationOrchestrator
    ) -> None:
        self.result = result
        self.orchestrator = orchestrator

    def _offset(self, source_name: str, position: Position) -> int | None:
        try:
            return self.orchestrator.offset_at(source_name, position)
        except (KeyError, PositionError):
            return None

    def find_node(self, position: Position, source_name: str) -> SyntaxNode | None:
        """
        Innermost node whose range contains `position`.

        Among nodes containing the position the one with the smallest range
        wins; None if no node contains it.
        """
        unit = self.result.units.get(source_name)
        if unit is None:
            return None
        offset = self._offset(source_name, position)
        if offset is None:
            return None

        best: SyntaxNode | None = None
        stack = [unit.root]
        while stack:
            node = stack.pop()
            if not node.location.contains(offset):
                continue
            if best is None or node.location.length <= best.location.length:
                best = node
            stack.extend(node.children)
        return best

    def resolve_declaration(self, node: SyntaxNode | None) -> Declaration | None:
        if node is None:
            return None
        if node.references is not None:
            return self.result.declarations.get(node.references)
        if node.declares is not None:
            return self.result.declarations.get(node.declares)
        return None

    def declaration_at(self, position: Position, source_name: str) -> Declaration | None:
        return self.resolve_declaration(self.find_node(position, source_name))

    def goto_definition(self, position: Position, source_name: str) -> list[Location]:
        declaration = self.declaration_at(position, source_name)
        if declaration is None:
            return []
        location = self.orchestrator.to_location(declaration.location)
        return [location] if location is not None else []

    def occurrences(
        self, declaration: Declaration, unit: ProgramUnit
    ) -> list[Occurrence]:
        """Every occurrence of `declaration` in `unit`, in source order."""
        found: dict[SourceLocation, Occurrence] = {}
        for node in unit.root.walk():
            if node.references == declaration.handle:
                location = node.location
            elif node.declares == declaration.handle:
                location = declaration.location
            else:
                continue
            if location.source_name != unit.source_name or location in found:
                continue
            found[location] = Occurrence(location, HIGHLIGHT_KINDS[node.access])
        return sorted(found.values(), key=lambda o: (o.location.start, o.location.end))

    def find_all_references(
        self, position: Position, source_name: str
    ) -> list[tuple[str, DocumentHighlight]]:
        """
        Occurrences of the symbol at `position` in every program unit.

        Returns:
            (uri, highlight) pairs; the highlight kind tells read, write or
            plain textual occurrences apart.
        """
        declaration = self.declaration_at(position, source_name)
        if declaration is None:
            return []

        references = []
        for name in sorted(self.result.units):
            for occurrence in self.occurrences(declaration, self.result.units[name]):
                highlight = self._highlight(occurrence)
                if highlight is not None:
                    references.append((self.orchestrator.uri_for(name), highlight))
        return references

    def references(self, position: Position, source_name: str) -> list[Location]:
        return [
            Location(uri=uri, range=highlight.range)
            for uri, highlight in self.find_all_references(position, source_name)
        ]

    def semantic_highlight(
        self, position: Position, source_name: str
    ) -> list[DocumentHighlight]:
        """Like find_all_references, limited to the queried document."""
        declaration = self.declaration_at(position, source_name)
        unit = self.result.units.get(source_name)
        if declaration is None or unit is None:
            return []

        highlights = []
        for occurrence in self.occurrences(declaration, unit):
            highlight = self._highlight(occurrence)
            if highlight is not None:
                highlights.append(highlight)
        return highlights

    def _highlight(self, occurrence: Occurrence) -> DocumentHighlight | None:
        range = self.orchestrator.to_range(occurrence.location)
        if range is None:
            return None
        return DocumentHighlight(range=range, kind=occurrence.kind)
