"""
JSON-RPC error taxonomy.

Handlers raise these to answer a request with a specific error code.
Anything else escaping a handler is reported as InternalError.
"""

from __future__ import annotations

from lsprotocol.types import ErrorCodes, LSPErrorCodes


class RequestError(Exception):
    """A failure that is reported to the client as a JSON-RPC error."""

    code: int = ErrorCodes.InternalError

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": int(self.code), "message": self.message}


class ParseError(RequestError):
    code = ErrorCodes.ParseError


class InvalidRequest(RequestError):
    code = ErrorCodes.InvalidRequest


class MethodNotFound(RequestError):
    code = ErrorCodes.MethodNotFound


class InvalidParams(RequestError):
    code = ErrorCodes.InvalidParams


class ServerNotInitialized(RequestError):
    code = ErrorCodes.ServerNotInitialized


class InternalError(RequestError):
    code = ErrorCodes.InternalError


class RequestFailed(RequestError):
    code = LSPErrorCodes.RequestFailed
