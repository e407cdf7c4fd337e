import logging

from compilerls import __version__
from compilerls.compiler.engine import EngineFactory
from compilerls.lsp.compiler_language_server import CompilerLanguageServer
from compilerls.lsp.session import Server
from compilerls.lsp.transport import Transport


def create_server(
    transport: Transport,
    engine_factory: EngineFactory,
    logger: logging.Logger | None = None,
) -> Server:
    """
    Creates and returns a configured Language Server session.

    The Server handles:
    - JSON-RPC communication with the client (editor)
    - Request/response lifecycle
    - Notifications

    CompilerLanguageServer supplies document sync, diagnostics and
    navigation on top of the engine built by `engine_factory`.
    """
    server = Server("compilerls", __version__, transport, logger)
    server.capabilities = CompilerLanguageServer(server, engine_factory)
    return server
