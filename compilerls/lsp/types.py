"""
Session-level types that lsprotocol does not model.

The wire types (Range, Location, Diagnostic, ...) come from lsprotocol;
this module only holds what is specific to the session: lifecycle state,
trace level, server identity and the content-change variants.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum

from lsprotocol.types import Position, Range


class ServerState(Enum):
    """Lifecycle of a single client session."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    SHUTTING_DOWN = "shutting_down"
    EXITED = "exited"


class Trace(IntEnum):
    """Client-configured verbosity for `$/logTrace` notifications."""

    OFF = 0
    MESSAGES = 1
    VERBOSE = 2

    @classmethod
    def parse(cls, value: object) -> Trace:
        """Map the protocol's "off" / "messages" / "verbose" strings."""
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                pass
        raise ValueError(f"Invalid trace value: {value!r}")


@dataclass(frozen=True)
class ServerId:
    name: str
    version: str | None = None


@dataclass(frozen=True)
class WorkspaceFolder:
    name: str
    uri: str


@dataclass(frozen=True)
class DocumentPosition:
    uri: str
    position: Position


# Content changes of a textDocument/didChange notification.


@dataclass(frozen=True)
class FullReplace:
    text: str


@dataclass(frozen=True)
class RangeReplace:
    range: Range
    text: str


@dataclass(frozen=True)
class VersionOnly:
    pass


ContentChange = FullReplace | RangeReplace | VersionOnly
