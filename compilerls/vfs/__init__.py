"""In-memory document storage for the language server."""
from .document_store import (
    DocumentRangeError,
    DocumentStore,
    DocumentStoreError,
    TrackedDocument,
    UnknownDocumentError,
)
from .line_index import LineIndex, PositionError

__all__ = [
    'DocumentRangeError',
    'DocumentStore',
    'DocumentStoreError',
    'LineIndex',
    'PositionError',
    'TrackedDocument',
    'UnknownDocumentError',
]
