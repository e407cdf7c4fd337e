"""
Protocol session

Owns the JSON-RPC contract with one client: the lifecycle state machine,
the method table, request/response bookkeeping and the outbound
notification helpers. Language behaviour is delegated to a
LanguageCapabilities object (see capabilities.py).

Messages are processed strictly one at a time: `run()` reads a message,
dispatches it to completion (including any compilation it triggers) and
only then reads the next one.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from lsprotocol.converters import get_converter
from lsprotocol.types import (
    CANCEL_REQUEST,
    EXIT,
    INITIALIZE,
    INITIALIZED,
    LOG_TRACE,
    SET_TRACE,
    SHUTDOWN,
    TEXT_DOCUMENT_DEFINITION,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_CLOSE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_DOCUMENT_HIGHLIGHT,
    TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS,
    TEXT_DOCUMENT_REFERENCES,
    WINDOW_LOG_MESSAGE,
    WORKSPACE_DID_CHANGE_CONFIGURATION,
    Diagnostic,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    LogMessageParams,
    LogTraceParams,
    MessageType,
    PublishDiagnosticsParams,
    Range,
    ServerCapabilities,
    TextDocumentPositionParams,
    TextDocumentSyncKind,
    TextDocumentSyncOptions,
)
from pygls.uris import from_fs_path

from compilerls.lsp.capabilities import LanguageCapabilities
from compilerls.lsp.errors import (
    InternalError,
    InvalidParams,
    InvalidRequest,
    MethodNotFound,
    ParseError,
    RequestError,
    ServerNotInitialized,
)
from compilerls.lsp.transport import MalformedMessage, Transport, TransportError
from compilerls.lsp.types import (
    ContentChange,
    DocumentPosition,
    FullReplace,
    RangeReplace,
    ServerState,
    Trace,
    VersionOnly,
    WorkspaceFolder,
)

JSONRPC_VERSION = "2.0"

# Method name -> name of the Server method handling it.
HANDLERS: dict[str, str] = {
    INITIALIZE: "_handle_initialize",
    INITIALIZED: "_handle_initialized",
    SHUTDOWN: "_handle_shutdown",
    EXIT: "_handle_exit",
    SET_TRACE: "_handle_set_trace",
    CANCEL_REQUEST: "_handle_cancel_request",
    WORKSPACE_DID_CHANGE_CONFIGURATION: "_handle_did_change_configuration",
    TEXT_DOCUMENT_DID_OPEN: "_handle_did_open",
    TEXT_DOCUMENT_DID_CHANGE: "_handle_did_change",
    TEXT_DOCUMENT_DID_CLOSE: "_handle_did_close",
    TEXT_DOCUMENT_DEFINITION: "_handle_definition",
    TEXT_DOCUMENT_DOCUMENT_HIGHLIGHT: "_handle_document_highlight",
    TEXT_DOCUMENT_REFERENCES: "_handle_references",
}


class Server:
    """
    A language server session talking to one client over a Transport.

    Attributes:
        state: Current lifecycle state
        trace_level: Verbosity requested by the client for `$/logTrace`
        capabilities: Language-specific hooks invoked by the handlers
    """

    def __init__(
        self,
        name: str,
        version: str | None,
        transport: Transport,
        logger: logging.Logger | None = None,
    ) -> None:
        self.name = name
        self.version = version
        self.transport = transport
        self.logger = logger or logging.getLogger(__name__)
        self.converter = get_converter()

        self.capabilities: LanguageCapabilities = LanguageCapabilities(self)
        self.state = ServerState.UNINITIALIZED
        self.trace_level = Trace.OFF

        self._shutdown_requested = False
        self._dispatching = False
        self._deferred: list[tuple[str, Any]] = []

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    # ===== Main loop =====

    async def run(self) -> bool:
        """
        Process messages until the client exits or the transport closes.

        Returns:
            True if the session ended with `shutdown` followed by `exit`,
            False for any other termination.
        """
        while self.state is not ServerState.EXITED:
            try:
                try:
                    message = await self.transport.receive()
                except MalformedMessage as e:
                    self.error(None, ParseError(str(e)))
                    continue

                if message is None:
                    self.logger.info("Client closed the connection")
                    break

                await self.handle_message(message)
            except TransportError as e:
                self.logger.error("Transport failure: %s", e)
                break

        return self.state is ServerState.EXITED and self._shutdown_requested

    async def handle_message(self, message: Any) -> None:
        """
        Dispatch one decoded JSON-RPC message.

        Failures raised by a handler are answered as JSON-RPC errors (for
        requests) or logged (for notifications); they never escape.
        """
        if not isinstance(message, dict):
            self.error(None, InvalidRequest("Message must be a JSON object."))
            return

        msg_id = message.get("id")
        method = message.get("method")

        if method is None and ("result" in message or "error" in message):
            self.logger.debug("Ignoring client response for id %r", msg_id)
            return

        if not isinstance(method, str):
            self.error(msg_id, InvalidRequest('"method" has to be a string.'))
            return

        is_request = "id" in message
        if is_request and (isinstance(msg_id, bool) or not isinstance(msg_id, (int, str))):
            self.error(None, InvalidRequest('"id" must be an integer or a string.'))
            return

        params = message.get("params")
        if params is None:
            params = {}

        self.trace(
            f"Received {'request' if is_request else 'notification'} '{method}'",
            verbose=json.dumps(params),
        )

        self._dispatching = True
        try:
            result = await self._dispatch(method, params, is_request)
        except RequestError as e:
            if is_request:
                self.error(msg_id, e)
            else:
                self.logger.warning("Error handling %s: %s", method, e.message)
                self.log(f"Error handling {method}: {e.message}", MessageType.Error)
        except TransportError:
            raise
        except Exception as e:
            self.logger.exception("Unhandled exception while handling %s", method)
            description = f"{type(e).__name__}: {e}"
            if is_request:
                self.error(msg_id, InternalError(f"Unhandled exception: {description}"))
            else:
                self.log(f"Error handling {method}: {description}", MessageType.Error)
        else:
            if is_request:
                self.transport.send(
                    {"jsonrpc": JSONRPC_VERSION, "id": msg_id, "result": result}
                )
        finally:
            self._dispatching = False

        self._flush_deferred()

    async def _dispatch(self, method: str, params: Any, is_request: bool) -> Any:
        if not self._accepts(method, is_request):
            self.logger.debug("Dropping %s in state %s", method, self.state.value)
            return None

        handler_name = HANDLERS.get(method)
        if handler_name is None:
            if is_request:
                raise MethodNotFound(f"Unknown method {method}")
            self.logger.debug("Ignoring unknown notification %s", method)
            return None

        handler = getattr(self, handler_name)
        return await handler(params)

    def _accepts(self, method: str, is_request: bool) -> bool:
        """
        Apply the lifecycle rules.

        Requests that are not allowed in the current state raise; notifications
        are simply not accepted. `exit` is accepted in every state.
        """
        if method == EXIT:
            return True

        if self.state is ServerState.UNINITIALIZED and method != INITIALIZE:
            if is_request:
                raise ServerNotInitialized("Server has not been initialized.")
            return False

        if self.state is ServerState.SHUTTING_DOWN:
            if is_request:
                raise InvalidRequest("Server is shutting down.")
            return False

        if method == INITIALIZE and self.state is not ServerState.UNINITIALIZED:
            raise InvalidRequest("Initialize called at the wrong time.")

        return True

    # ===== Outbound messages =====

    def notify(self, method: str, params: Any) -> None:
        self.transport.send(
            {
                "jsonrpc": JSONRPC_VERSION,
                "method": method,
                "params": self.converter.unstructure(params),
            }
        )

    def error(self, msg_id: int | str | None, failure: RequestError) -> None:
        """Send an error response for the request `msg_id`."""
        self.transport.send(
            {"jsonrpc": JSONRPC_VERSION, "id": msg_id, "error": failure.to_dict()}
        )

    def push_diagnostics(
        self, uri: str, version: int | None, diagnostics: list[Diagnostic]
    ) -> None:
        """
        Publish the diagnostics of one document.

        While a message is being dispatched the notification is held back
        and sent once the handler has returned.
        """
        params = PublishDiagnosticsParams(
            uri=uri, diagnostics=list(diagnostics), version=version
        )
        if self._dispatching:
            self._deferred.append((TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS, params))
        else:
            self.notify(TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS, params)

    def log(self, message: str, type: MessageType = MessageType.Log) -> None:
        """Show a message in the client's log window."""
        self.notify(WINDOW_LOG_MESSAGE, LogMessageParams(type=type, message=message))

    def trace(self, message: str, verbose: str | None = None) -> None:
        """Send a `$/logTrace` notification if the client asked for traces."""
        if self.trace_level is Trace.OFF:
            return

        if self.trace_level is not Trace.VERBOSE:
            verbose = None
        self.notify(LOG_TRACE, LogTraceParams(message=message, verbose=verbose))

    def _flush_deferred(self) -> None:
        deferred, self._deferred = self._deferred, []
        for method, params in deferred:
            self.notify(method, params)

    # ===== Parameter decoding =====

    def _structure(self, params: Any, cls: type) -> Any:
        try:
            return self.converter.structure(params, cls)
        except Exception as e:
            raise InvalidParams(f"Invalid {cls.__name__}: {e}") from e

    def _document_position(self, params: Any) -> DocumentPosition:
        decoded = self._structure(params, TextDocumentPositionParams)
        return DocumentPosition(decoded.text_document.uri, decoded.position)

    def _content_changes(self, raw_changes: Any) -> list[ContentChange]:
        if not isinstance(raw_changes, list):
            raise InvalidParams("contentChanges must be an array.")

        changes: list[ContentChange] = []
        for raw in raw_changes:
            if not isinstance(raw, dict) or not isinstance(raw.get("text"), str):
                raise InvalidParams("Content change requires a text field.")
            if raw.get("range") is not None:
                changes.append(
                    RangeReplace(self._structure(raw["range"], Range), raw["text"])
                )
            else:
                changes.append(FullReplace(raw["text"]))

        return changes or [VersionOnly()]

    # ===== Handlers =====

    async def _handle_initialize(self, params: dict) -> dict:
        if not isinstance(params, dict):
            raise InvalidParams("initialize expects an object.")

        root_uri = params.get("rootUri")
        if root_uri is None and params.get("rootPath"):
            root_uri = from_fs_path(params["rootPath"])

        folders = [
            WorkspaceFolder(name=folder.get("name", ""), uri=folder["uri"])
            for folder in params.get("workspaceFolders") or []
            if isinstance(folder, dict) and "uri" in folder
        ]

        trace_level = self.trace_level
        if params.get("trace") is not None:
            try:
                trace_level = Trace.parse(params["trace"])
            except ValueError as e:
                raise InvalidParams(str(e)) from e

        server_id = await self.capabilities.initialize(
            root_uri, folders, params.get("initializationOptions")
        )
        self.state = ServerState.INITIALIZED
        self.trace_level = trace_level

        capabilities = ServerCapabilities(
            text_document_sync=TextDocumentSyncOptions(
                open_close=True,
                change=TextDocumentSyncKind.Incremental,
            ),
            definition_provider=True,
            references_provider=True,
            document_highlight_provider=True,
        )
        server_info = {"name": server_id.name}
        if server_id.version is not None:
            server_info["version"] = server_id.version

        return {
            "capabilities": self.converter.unstructure(capabilities),
            "serverInfo": server_info,
        }

    async def _handle_initialized(self, params: Any) -> None:
        await self.capabilities.initialized()

    async def _handle_shutdown(self, params: Any) -> None:
        self.state = ServerState.SHUTTING_DOWN
        self._shutdown_requested = True
        return None

    async def _handle_exit(self, params: Any) -> None:
        self.logger.info(
            "Exit requested (%s shutdown)",
            "after" if self._shutdown_requested else "without",
        )
        self.state = ServerState.EXITED

    async def _handle_set_trace(self, params: Any) -> None:
        try:
            self.trace_level = Trace.parse(params.get("value"))
        except (AttributeError, ValueError) as e:
            raise InvalidParams(f"Invalid $/setTrace value: {e}") from e

    async def _handle_cancel_request(self, params: Any) -> None:
        # Requests run to completion before the next message is read, so
        # there is never anything in flight to cancel.
        self.trace("Ignoring $/cancelRequest")

    async def _handle_did_change_configuration(self, params: Any) -> None:
        settings = params.get("settings") if isinstance(params, dict) else None
        await self.capabilities.change_configuration(settings)

    async def _handle_did_open(self, params: Any) -> None:
        decoded = self._structure(params, DidOpenTextDocumentParams)
        document = decoded.text_document
        await self.capabilities.document_opened(
            document.uri, document.language_id, document.version, document.text
        )

    async def _handle_did_change(self, params: Any) -> None:
        try:
            text_document = params["textDocument"]
            uri = text_document["uri"]
            version = text_document.get("version")
            raw_changes = params["contentChanges"]
        except (AttributeError, KeyError, TypeError) as e:
            raise InvalidParams(f"Invalid didChange params: {e}") from e

        if version is not None and (isinstance(version, bool) or not isinstance(version, int)):
            raise InvalidParams("Document version must be an integer.")

        changes = self._content_changes(raw_changes)
        await self.capabilities.document_content_updated(uri, version, changes)

    async def _handle_did_close(self, params: Any) -> None:
        decoded = self._structure(params, DidCloseTextDocumentParams)
        await self.capabilities.document_closed(decoded.text_document.uri)

    async def _handle_definition(self, params: Any) -> list:
        locations = await self.capabilities.goto_definition(
            self._document_position(params)
        )
        return self.converter.unstructure(locations)

    async def _handle_document_highlight(self, params: Any) -> list:
        highlights = await self.capabilities.semantic_highlight(
            self._document_position(params)
        )
        return self.converter.unstructure(highlights)

    async def _handle_references(self, params: Any) -> list:
        locations = await self.capabilities.references(
            self._document_position(params)
        )
        return self.converter.unstructure(locations)
