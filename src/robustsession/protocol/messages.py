"""RobustSession wire types: cursors, stream messages and requests."""

from __future__ import annotations

import random
import zlib
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, ClassVar

from robustsession.lib import oj
from robustsession.network.selector import SelectionMode
from robustsession.protocol.errors import MalformedResponse

API_PREFIX = "/robustirc/v1"


class MessageType(IntEnum):
    """Message types the client acts on."""

    TO_CLIENT = 3
    PING = 4


@dataclass(frozen=True, order=True)
class Cursor:
    """
    Position of the last delivered message, ``{Id, Reply}``.

    Sent as ``lastseen=<id>.<reply>`` so a reconnect resumes right after it.
    """

    id: int = 0
    reply: int = 0

    @classmethod
    def parse(cls, value: str) -> "Cursor":
        """Parse ``"<id>.<reply>"``."""
        id_part, sep, reply_part = value.partition(".")
        try:
            return cls(id=int(id_part), reply=int(reply_part) if sep else 0)
        except ValueError:
            raise ValueError(f"Invalid cursor: {value!r}")

    def __str__(self) -> str:
        return f"{self.id}.{self.reply}"


START_CURSOR = Cursor()


@dataclass
class StreamMessage:
    """One message decoded from the GetMessages stream."""

    cursor: Cursor
    type: int | None = None
    data: str | None = None
    servers: list[str] | None = None

    @property
    def is_delivery(self) -> bool:
        """An IRC line for the client."""
        return self.type == MessageType.TO_CLIENT and bool(self.data)

    @property
    def is_ping(self) -> bool:
        """A keep-alive, possibly carrying the current server list."""
        return self.type == MessageType.PING

    def __str__(self) -> str:
        return f"StreamMessage(type={self.type}, id={self.cursor})"


@dataclass(frozen=True)
class SessionCredentials:
    """Server-issued session identity."""

    session_id: str
    session_auth: str

    @classmethod
    def from_body(cls, body: bytes) -> "SessionCredentials":
        """
        Parse a CreateSession response body.

        Raises:
            MalformedResponse: If the body is not JSON or lacks a field.
        """
        try:
            data = oj.loads(body)
        except oj.JSONDecodeError as e:
            raise MalformedResponse(f"Invalid CreateSession response: {e}", chunk=body, cause=e)

        if not isinstance(data, dict):
            raise MalformedResponse("CreateSession response is not an object", chunk=body)

        session_id = data.get("Sessionid")
        if not isinstance(session_id, str) or not session_id:
            raise MalformedResponse("Sessionid not found", chunk=body)

        session_auth = data.get("Sessionauth")
        if not isinstance(session_auth, str):
            raise MalformedResponse("Sessionauth not found", chunk=body)

        return cls(session_id=session_id, session_auth=session_auth)

    def headers(self) -> dict[str, str]:
        """Headers authenticating every request of the session."""
        return {"X-Session-Auth": self.session_auth}

    def __repr__(self) -> str:
        return f"SessionCredentials(session_id={self.session_id!r})"


def client_message_id(data: str, rng: random.Random | None = None) -> int:
    """
    De-duplication id for an outgoing message.

    A hash of the text plus a random value; the same id is reused for all
    retries of one message so the server delivers it once.
    """
    rng = rng or random
    return zlib.crc32(data.encode("utf-8")) + rng.getrandbits(31)


@dataclass
class CreateSessionRequest:
    """POST /session."""

    name: ClassVar[str] = "CreateSession"
    method: ClassVar[str] = "POST"
    selection: ClassVar[SelectionMode] = SelectionMode.RANDOM

    def path(self, session_id: str | None = None) -> str:
        return f"{API_PREFIX}/session"

    def body(self) -> bytes | None:
        return None


@dataclass
class DeleteSessionRequest:
    """DELETE /<sessionid>."""

    quit_message: str = ""

    name: ClassVar[str] = "DeleteSession"
    method: ClassVar[str] = "DELETE"
    selection: ClassVar[SelectionMode] = SelectionMode.RANDOM

    def path(self, session_id: str | None = None) -> str:
        return f"{API_PREFIX}/{session_id}"

    def body(self) -> bytes | None:
        return oj.dumps({"Quitmessage": self.quit_message})


@dataclass
class PostMessageRequest:
    """POST /<sessionid>/message."""

    data: str
    client_message_id: int = field(default=0)

    name: ClassVar[str] = "PostMessage"
    method: ClassVar[str] = "POST"
    selection: ClassVar[SelectionMode] = SelectionMode.RANDOM

    def __post_init__(self) -> None:
        if not self.client_message_id:
            self.client_message_id = client_message_id(self.data)

    def path(self, session_id: str | None = None) -> str:
        return f"{API_PREFIX}/{session_id}/message"

    def body(self) -> bytes | None:
        payload: dict[str, Any] = {
            "Data": self.data,
            "ClientMessageId": self.client_message_id,
        }
        return oj.dumps(payload)


@dataclass
class GetMessagesRequest:
    """GET /<sessionid>/messages?lastseen=<cursor>; never completes normally."""

    lastseen: Cursor = START_CURSOR

    name: ClassVar[str] = "GetMessages"
    method: ClassVar[str] = "GET"
    selection: ClassVar[SelectionMode] = SelectionMode.ORDERED

    def path(self, session_id: str | None = None) -> str:
        return f"{API_PREFIX}/{session_id}/messages"

    def params(self) -> dict[str, str]:
        return {"lastseen": str(self.lastseen)}

    def body(self) -> bytes | None:
        return None


Request = CreateSessionRequest | DeleteSessionRequest | PostMessageRequest | GetMessagesRequest
