"""Incremental decoder for the never-ending GetMessages JSON stream."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import ijson

from robustsession.protocol.errors import MalformedResponse
from robustsession.protocol.messages import Cursor, StreamMessage

logger = logging.getLogger(__name__)


@dataclass
class StreamParserState:
    """Accumulators for the message currently being decoded."""

    depth: int = 0
    last_key: str | None = None
    in_id: bool = False
    in_servers: bool = False
    data: str | None = None
    id_id: int = 0
    id_reply: int = 0
    type: int | None = None
    servers: list[str] | None = None
    pending_servers: list[str] = field(default_factory=list)

    def reset_message(self) -> None:
        """Forget everything collected for the last message."""
        self.last_key = None
        self.in_id = False
        self.in_servers = False
        self.data = None
        self.id_id = 0
        self.id_reply = 0
        self.type = None
        self.servers = None
        self.pending_servers = []


class StreamMessageParser:
    """
    Reconstructs messages from arbitrarily split chunks of the stream.

    The stream is a sequence of JSON objects such as::

        {"Id": {"Id": 1428773900924989332, "Reply": 1},
         "Session": {"Id": 1428773900606543398, "Reply": 0},
         "Type": 3,
         "Data": ":robustirc.net 311 ..."}

    or, for keep-alives::

        {"Id": {"Id": 0, "Reply": 0},
         "Session": {"Id": 0, "Reply": 0},
         "Type": 4,
         "Data": "",
         "Servers": ["localhost:13003", "localhost:13001"]}

    Keys are matched case-insensitively. A fresh parser must be used for
    every GetMessages attempt.
    """

    def __init__(self) -> None:
        self.state = StreamParserState()
        self._events = ijson.sendable_list()
        self._coro = ijson.basic_parse_coro(self._events, multiple_values=True)
        self._error: MalformedResponse | None = None
        self._closed = False

    @property
    def broken(self) -> bool:
        """True once the stream contained invalid JSON."""
        return self._error is not None

    def feed(self, chunk: bytes) -> list[StreamMessage]:
        """
        Feed the next chunk of the response body.

        Returns:
            The messages completed by this chunk, in stream order.

        Raises:
            MalformedResponse: If the stream is not valid JSON. The parser
                stays broken afterwards and rejects every later chunk.
        """
        if self._error is not None:
            raise MalformedResponse(
                f"Stream already failed to parse: {self._error}", chunk=chunk
            )
        if self._closed:
            raise MalformedResponse("Parser is closed", chunk=chunk)
        if not chunk:
            return []

        try:
            self._coro.send(chunk)
        except (ijson.JSONError, UnicodeDecodeError) as e:
            self._error = MalformedResponse(str(e), chunk=chunk, cause=e)
            messages = self._drain()
            if messages:
                logger.debug(f"{len(messages)} message(s) decoded before parse error")
            raise self._error

        return self._drain()

    def close(self) -> list[StreamMessage]:
        """Finish parsing; returns nothing new unless a value was pending."""
        if self._closed or self._error is not None:
            self._closed = True
            return []
        self._closed = True
        try:
            self._coro.close()
        except (ijson.JSONError, UnicodeDecodeError) as e:
            logger.debug(f"Stream ended mid-message: {e}")
        return self._drain()

    def _drain(self) -> list[StreamMessage]:
        messages = []
        for event, value in self._events:
            message = self._handle(event, value)
            if message is not None:
                messages.append(message)
        del self._events[:]
        return messages

    def _handle(self, event: str, value: Any) -> StreamMessage | None:
        state = self.state

        if event == "map_key":
            state.last_key = value.lower()
        elif event == "start_map":
            state.in_id = state.last_key == "id"
            state.depth += 1
        elif event == "end_map":
            state.in_id = False
            state.depth -= 1
            if state.depth <= 0:
                state.depth = 0
                return self._complete()
        elif event == "start_array":
            if state.last_key == "servers":
                state.in_servers = True
                state.pending_servers = []
        elif event == "end_array":
            if state.in_servers:
                state.servers = state.pending_servers
            state.in_servers = False
        elif event == "number":
            self._number(value)
        elif event == "string":
            self._string(value)
        return None

    def _number(self, value: Any) -> None:
        state = self.state
        if state.last_key is None or not isinstance(value, int):
            return
        if state.in_id:
            if state.last_key == "id":
                state.id_id = value
            elif state.last_key == "reply":
                state.id_reply = value
        if state.last_key == "type":
            state.type = value

    def _string(self, value: str) -> None:
        state = self.state
        if state.in_servers:
            state.pending_servers.append(value)
            return
        if state.last_key == "data":
            state.data = value

    def _complete(self) -> StreamMessage:
        state = self.state
        message = StreamMessage(
            cursor=Cursor(id=state.id_id, reply=state.id_reply),
            type=state.type,
            data=state.data,
            servers=state.servers,
        )
        state.reset_message()
        return message
