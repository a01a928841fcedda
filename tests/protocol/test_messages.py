"""Tests for RobustSession wire types."""

import random

import orjson
import pytest

from robustsession.network.selector import SelectionMode
from robustsession.protocol.errors import MalformedResponse
from robustsession.protocol.messages import (
    START_CURSOR,
    CreateSessionRequest,
    Cursor,
    DeleteSessionRequest,
    GetMessagesRequest,
    PostMessageRequest,
    SessionCredentials,
    client_message_id,
)


class TestCursor:
    def test_str(self):
        assert str(Cursor(1428773900924989332, 1)) == "1428773900924989332.1"
        assert str(START_CURSOR) == "0.0"

    def test_parse(self):
        assert Cursor.parse("5.2") == Cursor(5, 2)
        assert Cursor.parse("5") == Cursor(5, 0)

    def test_parse_invalid(self):
        with pytest.raises(ValueError, match="Invalid cursor"):
            Cursor.parse("x.y")

    def test_ordering(self):
        assert Cursor(5, 0) < Cursor(5, 1) < Cursor(6, 0)


class TestSessionCredentials:
    """Tests for parsing CreateSession responses."""

    def test_from_body(self):
        credentials = SessionCredentials.from_body(
            b'{"Sessionid": "13c4f1c1c7f8a0b2", "Sessionauth": "secret", "Prefix": "robustirc.net"}'
        )
        assert credentials.session_id == "13c4f1c1c7f8a0b2"
        assert credentials.session_auth == "secret"
        assert credentials.headers() == {"X-Session-Auth": "secret"}

    def test_repr_hides_auth(self):
        credentials = SessionCredentials("sid", "secret")
        assert "secret" not in repr(credentials)

    @pytest.mark.parametrize(
        "body",
        [
            b"",
            b"<html>",
            b"[]",
            b'{"Sessionauth": "secret"}',
            b'{"Sessionid": 5, "Sessionauth": "secret"}',
            b'{"Sessionid": "sid"}',
        ],
    )
    def test_malformed_bodies(self, body):
        with pytest.raises(MalformedResponse) as exc_info:
            SessionCredentials.from_body(body)
        assert exc_info.value.chunk == body


class TestClientMessageId:
    def test_same_seed_same_id(self):
        assert client_message_id("PRIVMSG #c :hi", random.Random(1)) == client_message_id(
            "PRIVMSG #c :hi", random.Random(1)
        )

    def test_depends_on_text(self):
        assert client_message_id("a", random.Random(1)) != client_message_id(
            "b", random.Random(1)
        )


class TestRequests:
    """Tests for request paths, bodies and selection modes."""

    def test_create_session(self):
        request = CreateSessionRequest()
        assert request.method == "POST"
        assert request.path() == "/robustirc/v1/session"
        assert request.body() is None
        assert request.selection is SelectionMode.RANDOM

    def test_post_message(self):
        request = PostMessageRequest(data="NICK secure", client_message_id=42)
        assert request.path("sid") == "/robustirc/v1/sid/message"
        assert orjson.loads(request.body()) == {"Data": "NICK secure", "ClientMessageId": 42}
        assert request.selection is SelectionMode.RANDOM

    def test_post_message_generates_stable_id(self):
        request = PostMessageRequest(data="NICK secure")
        assert request.client_message_id != 0
        assert orjson.loads(request.body())["ClientMessageId"] == request.client_message_id
        assert orjson.loads(request.body())["ClientMessageId"] == request.client_message_id

    def test_get_messages(self):
        request = GetMessagesRequest(lastseen=Cursor(5, 1))
        assert request.method == "GET"
        assert request.path("sid") == "/robustirc/v1/sid/messages"
        assert request.params() == {"lastseen": "5.1"}
        assert request.selection is SelectionMode.ORDERED

    def test_get_messages_starts_at_zero(self):
        assert GetMessagesRequest().params() == {"lastseen": "0.0"}

    def test_delete_session(self):
        request = DeleteSessionRequest(quit_message="bye")
        assert request.method == "DELETE"
        assert request.path("sid") == "/robustirc/v1/sid"
        assert orjson.loads(request.body()) == {"Quitmessage": "bye"}
