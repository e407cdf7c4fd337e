from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from lsprotocol.types import DocumentHighlight, Location, MessageType, Range
from pygls.uris import to_fs_path

from compilerls.compiler.config import ConfigurationError, WorkspaceConfig
from compilerls.compiler.engine import EngineFactory
from compilerls.compiler.orchestrator import CompilationOrchestrator
from compilerls.compiler.resolver import SymbolResolver
from compilerls.lsp.capabilities import LanguageCapabilities
from compilerls.lsp.errors import InvalidParams
from compilerls.lsp.types import (
    ContentChange,
    DocumentPosition,
    FullReplace,
    RangeReplace,
    ServerId,
    VersionOnly,
    WorkspaceFolder,
)
from compilerls.vfs import DocumentRangeError, DocumentStore, UnknownDocumentError

if TYPE_CHECKING:
    from compilerls.lsp.session import Server


class CompilerLanguageServer(LanguageCapabilities):
    """
    Language capabilities backed by a whole-program compiler.

    Attributes:
        store: Text of every document the client sent
        orchestrator: Runs the engine and publishes diagnostics
        config: Workspace configuration shared with the orchestrator
    """

    def __init__(self, server: Server, engine_factory: EngineFactory) -> None:
        super().__init__(server)
        self.store = DocumentStore()
        self.config = WorkspaceConfig()
        self.orchestrator = CompilationOrchestrator(
            server, self.store, engine_factory, self.config,
            diagnostic_source=server.name,
        )

    async def initialize(
        self,
        root_uri: str | None,
        workspace_folders: list[WorkspaceFolder],
        initialization_options: Any = None,
    ) -> ServerId:
        if root_uri is None and workspace_folders:
            root_uri = workspace_folders[0].uri

        if root_uri is not None:
            root_path = to_fs_path(root_uri) if root_uri.startswith("file:") else None
            if root_path is None:
                raise InvalidParams(f"Workspace root must be a file URI: {root_uri}")
            base_path = Path(root_path).resolve()
            self.orchestrator.base_path = base_path

            try:
                self.config = WorkspaceConfig.load(base_path)
            except ConfigurationError as e:
                self.server.log(str(e), MessageType.Error)
                self.config = WorkspaceConfig()
            self.orchestrator.config = self.config

        self._apply_settings(initialization_options)

        return ServerId(self.server.name, self.server.version)

    async def change_configuration(self, settings: Any) -> None:
        self._apply_settings(settings)
        if len(self.store):
            self.orchestrator.validate_all()

    def _apply_settings(self, settings: Any) -> None:
        for error in self.config.update(settings, base=self.orchestrator.base_path):
            self.server.log(f"Invalid configuration: {error}", MessageType.Error)

    async def document_opened(
        self, uri: str, language_id: str, version: int | None, text: str
    ) -> None:
        self.store.open(uri, language_id, version, text)
        # Opening does not change what importers of this file see, only
        # the opened document needs fresh diagnostics.
        self.orchestrator.validate(uri)

    async def document_content_updated(
        self, uri: str, version: int | None, changes: list[ContentChange]
    ) -> None:
        self._require(uri)
        edits: list[tuple[Range | None, str]] = []
        for change in changes:
            if isinstance(change, FullReplace):
                edits.append((None, change.text))
            elif isinstance(change, RangeReplace):
                edits.append((change.range, change.text))
            elif isinstance(change, VersionOnly):
                continue

        # A batch that does not fit leaves the document untouched.
        try:
            self.store.apply_changes(uri, version, edits)
        except DocumentRangeError as e:
            raise InvalidParams(str(e)) from e

        self.orchestrator.validate_all()

    async def document_closed(self, uri: str) -> None:
        self._require(uri)
        self.store.close(uri)
        self.orchestrator.clear(uri)
        self.orchestrator.collect_garbage()

    async def goto_definition(self, position: DocumentPosition) -> list[Location]:
        resolver, source_name = self._resolver_for(position.uri)
        return resolver.goto_definition(position.position, source_name)

    async def semantic_highlight(
        self, position: DocumentPosition
    ) -> list[DocumentHighlight]:
        resolver, source_name = self._resolver_for(position.uri)
        return resolver.semantic_highlight(position.position, source_name)

    async def references(self, position: DocumentPosition) -> list[Location]:
        resolver, source_name = self._resolver_for(position.uri)
        return resolver.references(position.position, source_name)

    def _require(self, uri: str) -> None:
        if uri not in self.store:
            raise InvalidParams(str(UnknownDocumentError(uri)))

    def _resolver_for(self, uri: str) -> tuple[SymbolResolver, str]:
        self._require(uri)
        result = self.orchestrator.snapshot()
        return SymbolResolver(result, self.orchestrator), self.orchestrator.source_name_for(uri)
