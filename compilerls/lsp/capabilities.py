"""
Language capabilities

The protocol session knows nothing about documents or compilers. Everything
language specific is delegated to a LanguageCapabilities object whose
methods the session calls while dispatching a message.

Design Principles:
1. Every hook has a default (no-op / empty answer), so an implementation
   only overrides what it supports
2. Hooks receive decoded values, never raw JSON
3. Hooks may raise RequestError to answer a request with a specific error
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from lsprotocol.types import DocumentHighlight, Location

from compilerls.lsp.types import (
    ContentChange,
    DocumentPosition,
    ServerId,
    WorkspaceFolder,
)

if TYPE_CHECKING:
    from compilerls.lsp.session import Server


class LanguageCapabilities:
    """
    Base class for the language-specific half of the server.

    Usage:
        class MyLanguage(LanguageCapabilities):
            async def goto_definition(self, position):
                ...

        server = Server("my-ls", "1.0", transport)
        server.capabilities = MyLanguage(server)
    """

    def __init__(self, server: Server) -> None:
        self.server = server

    async def initialize(
        self,
        root_uri: str | None,
        workspace_folders: list[WorkspaceFolder],
        initialization_options: Any = None,
    ) -> ServerId:
        """
        Prepare the server for the given workspace.

        Returns:
            The identity reported to the client as `serverInfo`.
        """
        return ServerId(self.server.name, self.server.version)

    async def initialized(self) -> None:
        """The client finished its own initialization."""

    async def change_configuration(self, settings: Any) -> None:
        """User-supplied configuration changed on the client."""

    async def document_opened(
        self, uri: str, language_id: str, version: int | None, text: str
    ) -> None:
        """The document was opened in the editor."""

    async def document_content_updated(
        self, uri: str, version: int | None, changes: list[ContentChange]
    ) -> None:
        """
        The document was edited.

        `changes` are applied in order. A notification that only carries a
        new version is delivered as a single VersionOnly change.
        """

    async def document_closed(self, uri: str) -> None:
        """The document was closed in the editor."""

    async def goto_definition(self, position: DocumentPosition) -> list[Location]:
        """Locations defining the symbol at `position`."""
        return []

    async def semantic_highlight(
        self, position: DocumentPosition
    ) -> list[DocumentHighlight]:
        """Occurrences of the symbol at `position` within its document."""
        return []

    async def references(self, position: DocumentPosition) -> list[Location]:
        """All occurrences of the symbol at `position` in the workspace."""
        return []
