"""
Main entry point for the compiler language server.

This file is executed when running: python -m compilerls

The server communicates with editors via stdin/stdout using JSON-RPC.
"""
import argparse
import asyncio
import importlib
import logging
import os
import sys

from compilerls import __version__
from compilerls.compiler.engine import EngineFactory
from compilerls.lsp.server import create_server
from compilerls.lsp.transport import StdioTransport


def load_engine_factory(reference: str) -> EngineFactory:
    """Resolve a `package.module:callable` reference to an engine factory."""
    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Engine must be given as module:callable, got {reference!r}")

    module = importlib.import_module(module_name)
    factory = getattr(module, attribute)
    if not callable(factory):
        raise ValueError(f"{reference} is not callable")
    return factory


def main():
    """Start the language server on stdin/stdout."""
    parser = argparse.ArgumentParser(prog="compilerls", description=__doc__)
    parser.add_argument(
        "--engine",
        default=os.getenv("COMPILERLS_ENGINE"),
        help="compiler engine factory as module:callable",
    )
    parser.add_argument("--version", action="version", version=__version__)
    args = parser.parse_args()

    # stdout carries the protocol, logs go to stderr
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if os.getenv("DEBUG") else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    if not args.engine:
        parser.error("no compiler engine configured (--engine or COMPILERLS_ENGINE)")

    try:
        engine_factory = load_engine_factory(args.engine)
    except (ImportError, AttributeError, ValueError) as e:
        parser.error(f"cannot load engine: {e}")

    transport = StdioTransport(sys.stdin.buffer, sys.stdout.buffer)
    server = create_server(transport, engine_factory, logging.getLogger("compilerls"))

    # Start the server - it will listen on stdin/stdout for LSP messages
    # from the editor client
    orderly = asyncio.run(server.run())
    sys.exit(0 if orderly else 1)


if __name__ == "__main__":
    main()
