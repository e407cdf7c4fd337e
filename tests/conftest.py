import logging

import pytest

from compilerls.lsp.server import create_server
from compilerls.lsp.session import Server
from lsp_fixtures import MemoryTransport
from toy_engine import create_engine


@pytest.fixture
def transport():
    """Create an empty in-memory transport."""
    return MemoryTransport()


@pytest.fixture
def server(transport) -> Server:
    """Create a compiler-backed server talking to the in-memory transport."""
    return create_server(transport, create_engine, logging.getLogger("compilerls.tests"))
