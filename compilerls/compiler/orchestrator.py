"""
Compilation Orchestrator

Keeps the diagnostics shown by the client consistent with the latest text
of every tracked document.

Compilation is always whole-program: every tracked document goes into one
source map and the engine is invoked once per run, because resolving a
symbol in one file may require the others. `validate_all()` amortizes that
run across all documents instead of recompiling per file.
"""

from __future__ import annotations

from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING

from lsprotocol.types import (
    Diagnostic,
    DiagnosticRelatedInformation,
    DiagnosticSeverity,
    DiagnosticTag,
    Location,
    MessageType,
    Position,
    Range,
)
from pygls.uris import from_fs_path, to_fs_path

from compilerls.compiler.config import WorkspaceConfig
from compilerls.compiler.engine import (
    READ_SOURCE,
    CompilationResult,
    DiagnosticFlag,
    EngineDiagnostic,
    EngineFactory,
    ReadResult,
    Severity,
    SourceLocation,
)
from compilerls.vfs import DocumentStore, LineIndex

if TYPE_CHECKING:
    from compilerls.lsp.session import Server


SEVERITIES = {
    Severity.ERROR: DiagnosticSeverity.Error,
    Severity.WARNING: DiagnosticSeverity.Warning,
    Severity.INFO: DiagnosticSeverity.Information,
    Severity.HINT: DiagnosticSeverity.Hint,
}

TAGS = {
    DiagnosticFlag.UNUSED: DiagnosticTag.Unnecessary,
    DiagnosticFlag.DEPRECATED: DiagnosticTag.Deprecated,
}


class CompilationOrchestrator:
    """
    Turns the document store into compiler runs and compiler output into
    published diagnostics.

    Attributes:
        config: Workspace configuration read on every compile
        base_path: Workspace root, first of the directories imports may be
                   read from
        diagnostic_source: Value of the `source` field of every diagnostic
    """

    def __init__(
        self,
        server: Server,
        store: DocumentStore,
        engine_factory: EngineFactory,
        config: WorkspaceConfig | None = None,
        diagnostic_source: str = "compilerls",
    ) -> None:
        self.server = server
        self.store = store
        self.engine_factory = engine_factory
        self.config = config or WorkspaceConfig()
        self.base_path: Path | None = None
        self.diagnostic_source = diagnostic_source

        self._result: CompilationResult | None = None
        self._compiled_generation = -1
        self._sources: dict[str, str] = {}
        self._uri_by_source: dict[str, str] = {}
        self._line_indexes: dict[str, LineIndex] = {}
        self._read_sources: dict[str, str] = {}
        self._read_failures: dict[str, str] = {}
        self._rejected_target_version: str | None = None
        # URIs whose last published diagnostic list was not empty.
        self._published: set[str] = set()

    # ===== Source names =====

    def source_name_for(self, uri: str) -> str:
        """Name under which the engine sees the document `uri`."""
        if uri.startswith("file:"):
            path = to_fs_path(uri)
            if path:
                return path
        return uri

    def uri_for(self, source_name: str) -> str:
        uri = self._uri_by_source.get(source_name)
        if uri is not None:
            return uri
        if "://" in source_name:
            return source_name
        return from_fs_path(source_name) or source_name

    @property
    def allowed_directories(self) -> list[Path]:
        directories = list(self.config.include_paths)
        if self.base_path is not None:
            directories.insert(0, self.base_path)
        return directories

    # ===== Compilation =====

    def compile(self) -> CompilationResult:
        """Run the engine once over every tracked document."""
        sources: dict[str, str] = {}
        self._uri_by_source = {}
        for document in self.store:
            name = self.source_name_for(document.uri)
            sources[name] = document.content
            self._uri_by_source[name] = document.uri

        self._sources = dict(sources)
        self._read_sources = {}
        self._read_failures = {}

        engine = self.engine_factory(self.read_file)
        engine.set_sources(sources)
        engine.set_remappings(list(self.config.remappings))
        try:
            engine.set_target_version(self.config.target_version)
        except ValueError as e:
            if self._rejected_target_version != self.config.target_version:
                self._rejected_target_version = self.config.target_version
                self.server.log(
                    f"Target version {self.config.target_version!r} rejected: {e}",
                    MessageType.Error,
                )

        result = engine.compile()

        self._sources.update(self._read_sources)
        self._line_indexes = {}
        self._result = result
        self._compiled_generation = self.store.generation
        return result

    def snapshot(self) -> CompilationResult:
        """The latest compilation, recompiling if the store changed since."""
        if self._result is None or self._compiled_generation != self.store.generation:
            return self.compile()
        return self._result

    def read_file(self, kind: str, path: str) -> ReadResult:
        """
        Serve a source the engine needs but was not given.

        Tracked documents take precedence over the file system; files are
        only read from the allowed directories.
        """
        if kind != READ_SOURCE:
            return ReadResult.failure(f"Unsupported read kind: {kind}")

        if path in self._sources:
            return ReadResult.ok(self._sources[path])

        result = self._read_from_disk(path)
        if result.success:
            self._read_sources[path] = result.content
        else:
            self._read_failures[path] = result.error_message
        return result

    def _read_from_disk(self, path: str) -> ReadResult:
        candidate = Path(path)
        if not candidate.is_absolute():
            if self.base_path is None:
                return ReadResult.failure(f"Cannot resolve relative path {path}")
            candidate = self.base_path / candidate
        candidate = candidate.resolve()

        allowed = self.allowed_directories
        if allowed and not any(candidate.is_relative_to(d) for d in allowed):
            return ReadResult.failure(
                f"{path} is outside of the allowed directories"
            )

        try:
            return ReadResult.ok(candidate.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            return ReadResult.failure(f"Cannot read {path}: {e}")

    # ===== Position translation =====

    def line_index(self, source_name: str) -> LineIndex | None:
        index = self._line_indexes.get(source_name)
        if index is None:
            text = self._sources.get(source_name)
            if text is None:
                return None
            index = self._line_indexes[source_name] = LineIndex(text)
        return index

    def offset_at(self, source_name: str, position: Position) -> int:
        """
        Raises:
            KeyError: `source_name` was not part of the last compilation.
            PositionError: `position` lies outside the source.
        """
        index = self.line_index(source_name)
        if index is None:
            raise KeyError(source_name)
        return index.offset_at(position)

    def to_range(self, location: SourceLocation) -> Range | None:
        index = self.line_index(location.source_name)
        if index is None:
            return None
        return index.range_of(location.start, location.end)

    def to_location(self, location: SourceLocation) -> Location | None:
        range = self.to_range(location)
        if range is None:
            return None
        return Location(uri=self.uri_for(location.source_name), range=range)

    # ===== Diagnostics =====

    def to_diagnostic(self, diagnostic: EngineDiagnostic) -> Diagnostic | None:
        if diagnostic.location is None:
            return None
        range = self.to_range(diagnostic.location)
        if range is None:
            return None

        related = []
        for secondary in diagnostic.secondary:
            location = self.to_location(secondary.location)
            if location is not None:
                related.append(
                    DiagnosticRelatedInformation(
                        location=location, message=secondary.message
                    )
                )

        tags = sorted((TAGS[flag] for flag in diagnostic.flags), key=int)
        return Diagnostic(
            range=range,
            message=diagnostic.message,
            severity=SEVERITIES[diagnostic.severity],
            code=diagnostic.code,
            source=self.diagnostic_source,
            tags=tags or None,
            related_information=related or None,
        )

    def diagnostics_by_uri(
        self, result: CompilationResult
    ) -> dict[str, list[Diagnostic]]:
        by_uri: dict[str, list[Diagnostic]] = defaultdict(list)
        for diagnostic in [*result.diagnostics, *self._import_failures(result)]:
            converted = self.to_diagnostic(diagnostic)
            if converted is None:
                self.server.log(
                    f"{diagnostic.severity.value}: {diagnostic.message}",
                    MessageType.Error
                    if diagnostic.severity is Severity.ERROR
                    else MessageType.Warning,
                )
                continue
            by_uri[self.uri_for(diagnostic.location.source_name)].append(converted)
        return by_uri

    def _import_failures(self, result: CompilationResult) -> list[EngineDiagnostic]:
        """Errors for imports whose target could not be read."""
        if not self._read_failures:
            return []

        reported = {
            d.location for d in result.diagnostics if d.location is not None
        }
        failures = []
        for unit in result.units.values():
            for node in unit.root.walk():
                if node.import_path is None or node.location in reported:
                    continue
                message = self._read_failures.get(node.imported_source or node.import_path)
                if message is None:
                    continue
                failures.append(
                    EngineDiagnostic(
                        severity=Severity.ERROR,
                        message=f'Source "{node.import_path}" not found: {message}',
                        location=node.location,
                    )
                )
        return failures

    def validate(self, uri: str) -> None:
        """Compile and publish the diagnostics of a single document."""
        document = self.store.get(uri)
        result = self.compile()
        diagnostics = self.diagnostics_by_uri(result).get(uri, [])
        self._publish(uri, document.version, diagnostics)

    def validate_all(self) -> None:
        """
        Compile once and publish diagnostics for every tracked document.

        Documents whose previous diagnostics disappeared receive an empty
        list so the client clears them.
        """
        result = self.compile()
        by_uri = self.diagnostics_by_uri(result)

        targets = {document.uri for document in self.store}
        targets |= self._published
        targets |= set(by_uri)
        for uri in sorted(targets):
            version = self.store.get(uri).version if uri in self.store else None
            self._publish(uri, version, by_uri.get(uri, []))

    def clear(self, uri: str) -> None:
        version = self.store.get(uri).version if uri in self.store else None
        self._publish(uri, version, [])

    def _publish(self, uri: str, version: int | None, diagnostics: list[Diagnostic]) -> None:
        self.server.push_diagnostics(uri, version, diagnostics)
        if diagnostics:
            self._published.add(uri)
        else:
            self._published.discard(uri)

    # ===== Garbage collection =====

    def collect_garbage(self) -> list[str]:
        """
        Evict closed documents no open document imports.

        Reachability follows the import graph of the latest compilation.

        Returns:
            The evicted URIs.
        """
        if self._result is None:
            return []

        graph = {
            name: unit.imports for name, unit in self._result.units.items()
        }
        reachable: set[str] = set()
        stack = [self.source_name_for(uri) for uri in self.store.open_uris]
        while stack:
            name = stack.pop()
            if name in reachable:
                continue
            reachable.add(name)
            stack.extend(graph.get(name, []))

        unreachable = [
            document.uri
            for document in self.store
            if not self.store.is_open(document.uri)
            and self.source_name_for(document.uri) not in reachable
        ]
        evicted = self.store.evict(unreachable)
        for uri in evicted:
            self._publish(uri, None, [])
        return evicted
