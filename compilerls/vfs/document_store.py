"""
Document Store

In-memory file system holding the text of every document the client has
sent, independent of what is on disk.

Design Principles:
1. The store is owned by the session and mutated only while a
   notification is dispatched, so it needs no locking
2. Closing a document does not drop its content: other open documents may
   still import it and it must stay available for compilation
3. Edits that do not fit the current text are errors, never clamped
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from lsprotocol.types import Range

from compilerls.vfs.line_index import LineIndex, PositionError

logger = logging.getLogger(__name__)


class DocumentStoreError(Exception):
    """Base class for document store failures."""


class UnknownDocumentError(DocumentStoreError, KeyError):
    """No document is tracked under the given URI."""

    def __init__(self, uri: str) -> None:
        super().__init__(uri)
        self.uri = uri

    def __str__(self) -> str:
        return f"Unknown document: {self.uri}"


class DocumentRangeError(DocumentStoreError, ValueError):
    """An incremental edit addressed text outside the document."""


@dataclass
class TrackedDocument:
    """
    A document known to the server.

    Attributes:
        uri: Document identity
        language_id: Language reported by the client on open
        version: Client-supplied version, None if the client does not
                 version this document
        content: Current full text
        revision: Internal counter bumped on every mutation
    """

    uri: str
    language_id: str
    version: int | None
    content: str
    revision: int = 0
    _line_index: LineIndex | None = field(default=None, repr=False, compare=False)

    @property
    def line_index(self) -> LineIndex:
        """Line start table, rebuilt on first use after each mutation."""
        if self._line_index is None:
            self._line_index = LineIndex(self.content)
        return self._line_index

    def _set_content(self, content: str) -> None:
        self.content = content
        self._line_index = None
        self.revision += 1

    def _set_version(self, version: int | None) -> None:
        if version is None:
            return
        if self.version is not None and version < self.version:
            logger.warning(
                "Ignoring version %d for %s, already at version %d",
                version,
                self.uri,
                self.version,
            )
            return
        self.version = version


class DocumentStore:
    """
    Registry of tracked documents keyed by URI.

    Usage:
        store = DocumentStore()
        store.open(uri, "solidity", 1, text)
        store.replace_range(uri, 2, edit_range, "new text")
        store.close(uri)  # content is kept
    """

    def __init__(self) -> None:
        self._documents: dict[str, TrackedDocument] = {}
        self._open: set[str] = set()
        # Bumped on every mutation; lets consumers detect stale snapshots.
        self.generation = 0

    def __contains__(self, uri: object) -> bool:
        return uri in self._documents

    def __iter__(self) -> Iterator[TrackedDocument]:
        return iter(list(self._documents.values()))

    def __len__(self) -> int:
        return len(self._documents)

    def get(self, uri: str) -> TrackedDocument:
        try:
            return self._documents[uri]
        except KeyError:
            raise UnknownDocumentError(uri) from None

    def is_open(self, uri: str) -> bool:
        return uri in self._open

    @property
    def open_uris(self) -> set[str]:
        return set(self._open)

    def open(
        self, uri: str, language_id: str, version: int | None, content: str
    ) -> TrackedDocument:
        """Start tracking `uri`; an existing entry is overwritten."""
        previous = self._documents.get(uri)
        if previous is not None:
            logger.debug("Re-opening %s, replacing tracked content", uri)

        document = TrackedDocument(
            uri=uri,
            language_id=language_id,
            version=version,
            content=content,
            revision=previous.revision + 1 if previous else 0,
        )
        self._documents[uri] = document
        self._open.add(uri)
        self.generation += 1
        return document

    def apply_changes(
        self,
        uri: str,
        version: int | None,
        edits: Iterable[tuple[Range | None, str]],
    ) -> TrackedDocument:
        """
        Apply a batch of edits in order, all or nothing.

        Each edit is `(range, text)`; a None range replaces the whole text.
        Ranges refer to the text produced by the preceding edits. Content
        and version are only committed once every edit fits, and an empty
        batch only updates the version.

        Raises:
            UnknownDocumentError: `uri` is not tracked.
            DocumentRangeError: an edit does not lie within the text it
                applies to.
        """
        document = self.get(uri)
        content = document.content
        index: LineIndex | None = document.line_index
        changed = False
        for range, text in edits:
            if range is None:
                content = text
            else:
                if index is None:
                    index = LineIndex(content)
                try:
                    start, end = index.range_offsets(range)
                except PositionError as e:
                    raise DocumentRangeError(f"{uri}: {e}") from e
                content = content[:start] + text + content[end:]
            index = None
            changed = True

        if changed:
            document._set_content(content)
        else:
            document.revision += 1
        document._set_version(version)
        self.generation += 1
        return document

    def replace_all(
        self, uri: str, version: int | None, content: str
    ) -> TrackedDocument:
        return self.apply_changes(uri, version, [(None, content)])

    def replace_range(
        self, uri: str, version: int | None, range: Range, text: str
    ) -> TrackedDocument:
        """Replace the text covered by `range` with `text`."""
        return self.apply_changes(uri, version, [(range, text)])

    def bump_version(self, uri: str, version: int | None) -> TrackedDocument:
        return self.apply_changes(uri, version, [])

    def close(self, uri: str) -> None:
        """Mark `uri` closed; its content stays available for compilation."""
        self.get(uri)
        self._open.discard(uri)
        self.generation += 1

    def evict(self, uris: Iterable[str]) -> list[str]:
        """
        Forget closed documents.

        Open documents are never evicted.

        Returns:
            The URIs that were removed.
        """
        evicted = []
        for uri in uris:
            if uri in self._documents and uri not in self._open:
                del self._documents[uri]
                evicted.append(uri)
        if evicted:
            self.generation += 1
        return evicted
