"""
Transport layer between the session and the editor.

The session only depends on the abstract Transport: it awaits parsed JSON
messages from `receive()` and hands JSON messages to `send()`. StdioTransport
implements the base protocol framing (Content-Length headers) over binary
streams so the server can be launched by an editor.
"""

from __future__ import annotations

import asyncio
import json
import threading
from abc import ABC, abstractmethod
from typing import BinaryIO


class TransportError(Exception):
    """The channel to the client failed; the session cannot continue."""


class MalformedMessage(Exception):
    """A single message could not be decoded; the channel is still usable."""


class Transport(ABC):
    """Bidirectional channel yielding and accepting JSON-RPC messages."""

    @abstractmethod
    async def receive(self) -> dict | None:
        """
        Wait for the next message from the client.

        Returns:
            The decoded message, or None once the stream has been closed.

        Raises:
            MalformedMessage: the message body is not a valid JSON object.
            TransportError: the underlying stream failed.
        """

    @abstractmethod
    def send(self, message: dict) -> None:
        """Send one message to the client."""


class StdioTransport(Transport):
    """
    LSP base protocol over a pair of binary streams.

    Each message is a header block (at least `Content-Length`) followed by
    an empty line and a UTF-8 encoded JSON body.
    """

    def __init__(self, reader: BinaryIO, writer: BinaryIO) -> None:
        self.reader = reader
        self.writer = writer
        self._write_lock = threading.Lock()

    async def receive(self) -> dict | None:
        # Blocking reads happen off the event loop.
        return await asyncio.to_thread(self._read_message)

    def _read_message(self) -> dict | None:
        headers = self._read_headers()
        if headers is None:
            return None

        try:
            length = int(headers["content-length"])
        except (KeyError, ValueError):
            raise MalformedMessage("Missing or invalid Content-Length header")

        try:
            body = self.reader.read(length)
        except OSError as e:
            raise TransportError(f"Failed to read message body: {e}") from e
        if len(body) < length:
            return None

        try:
            message = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedMessage(f"Invalid JSON body: {e}") from e

        if not isinstance(message, dict):
            raise MalformedMessage("Message body must be a JSON object")
        return message

    def _read_headers(self) -> dict[str, str] | None:
        headers: dict[str, str] = {}
        while True:
            try:
                line = self.reader.readline()
            except OSError as e:
                raise TransportError(f"Failed to read message header: {e}") from e

            if not line:
                return None

            line = line.decode("ascii", errors="replace").strip()
            if not line:
                if headers:
                    return headers
                continue

            name, sep, value = line.partition(":")
            if sep:
                headers[name.strip().lower()] = value.strip()

    def send(self, message: dict) -> None:
        body = json.dumps(message, separators=(",", ":")).encode("utf-8")
        header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
        with self._write_lock:
            try:
                self.writer.write(header + body)
                self.writer.flush()
            except (OSError, ValueError) as e:
                raise TransportError(f"Failed to send message: {e}") from e
