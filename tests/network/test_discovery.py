"""Tests for network discovery."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import dns.exception
import dns.name
import pytest

from robustsession.lib.cancellation import CancellationToken
from robustsession.network.discovery import Resolver, parse_static_targets, srv_lookup
from robustsession.protocol.errors import DiscoveryFailure


class TestParseStaticTargets:
    """Tests for comma-separated target lists."""

    def test_plain_address_is_not_a_list(self):
        assert parse_static_targets("robustirc.net") is None
        assert parse_static_targets("localhost:13001") is None

    def test_list_is_split_and_stripped(self):
        assert parse_static_targets("localhost:13001, localhost:13002") == [
            "localhost:13001",
            "localhost:13002",
        ]

    def test_empty_items_are_dropped(self):
        assert parse_static_targets("a:1,,b:2,") == ["a:1", "b:2"]
        assert parse_static_targets(" , ") == []


class TestSrvLookup:
    @pytest.mark.asyncio
    async def test_records_become_host_port_targets(self):
        answer = [
            SimpleNamespace(target=dns.name.from_text("robustirc1.example.net."), port=60667),
            SimpleNamespace(target=dns.name.from_text("robustirc2.example.net."), port=60668),
        ]
        resolve = AsyncMock(return_value=answer)
        with patch("robustsession.network.discovery.dns.asyncresolver.resolve", resolve):
            targets = await srv_lookup("example.net")

        resolve.assert_awaited_once_with("_robustirc._tcp.example.net", "SRV")
        assert targets == ["robustirc1.example.net:60667", "robustirc2.example.net:60668"]


class TestResolver:
    """Tests for Resolver."""

    @pytest.mark.asyncio
    async def test_static_list_needs_no_lookup(self, registry):
        lookup = AsyncMock()
        resolver = Resolver(registry, lookup=lookup)

        entry = await resolver.resolve("a:1, b:2", CancellationToken())

        assert entry.targets == ["a:1", "b:2"]
        lookup.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_static_list_fails(self, registry):
        resolver = Resolver(registry, lookup=AsyncMock())
        with pytest.raises(DiscoveryFailure):
            await resolver.resolve(",", CancellationToken())

    @pytest.mark.asyncio
    async def test_srv_targets_are_registered(self, registry):
        lookup = AsyncMock(return_value=["a:1", "b:2"])
        resolver = Resolver(registry, lookup=lookup)

        entry = await resolver.resolve("RobustIRC.net", CancellationToken())

        lookup.assert_awaited_once_with("robustirc.net")
        assert entry.targets == ["a:1", "b:2"]
        assert registry.get("robustirc.net") is entry

    @pytest.mark.asyncio
    async def test_resolved_network_is_cached(self, registry):
        lookup = AsyncMock(return_value=["a:1"])
        resolver = Resolver(registry, lookup=lookup)

        first = await resolver.resolve("net", CancellationToken())
        second = await resolver.resolve("net", CancellationToken())

        assert first is second
        assert lookup.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_resolves_share_one_lookup(self, registry):
        release = asyncio.Event()
        calls = []

        async def lookup(address):
            calls.append(address)
            await release.wait()
            return ["a:1"]

        resolver = Resolver(registry, lookup=lookup)
        first = asyncio.create_task(resolver.resolve("net", CancellationToken()))
        second = asyncio.create_task(resolver.resolve("NET", CancellationToken()))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert resolver.is_pending("net")

        release.set()
        a, b = await asyncio.gather(first, second)

        assert a is b
        assert calls == ["net"]
        assert not resolver.is_pending("net")

    @pytest.mark.asyncio
    async def test_dns_error_becomes_discovery_failure(self, registry):
        lookup = AsyncMock(side_effect=dns.exception.DNSException("no answer"))
        resolver = Resolver(registry, lookup=lookup)

        with pytest.raises(DiscoveryFailure) as exc_info:
            await resolver.resolve("net", CancellationToken())

        assert exc_info.value.address == "net"
        assert isinstance(exc_info.value.cause, dns.exception.DNSException)
        assert "net" not in registry
        assert not resolver.is_pending("net")

    @pytest.mark.asyncio
    async def test_empty_answer_is_a_failure(self, registry):
        resolver = Resolver(registry, lookup=AsyncMock(return_value=[]))
        with pytest.raises(DiscoveryFailure, match="no targets"):
            await resolver.resolve("net", CancellationToken())

    @pytest.mark.asyncio
    async def test_failed_lookup_is_retried_on_next_resolve(self, registry):
        lookup = AsyncMock(side_effect=[OSError("unreachable"), ["a:1"]])
        resolver = Resolver(registry, lookup=lookup)

        with pytest.raises(DiscoveryFailure):
            await resolver.resolve("net", CancellationToken())
        entry = await resolver.resolve("net", CancellationToken())

        assert entry.targets == ["a:1"]
        assert lookup.await_count == 2

    @pytest.mark.asyncio
    async def test_cancelled_token_raises(self, registry):
        lookup = AsyncMock(return_value=["a:1"])
        resolver = Resolver(registry, lookup=lookup)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(asyncio.CancelledError):
            await resolver.resolve("net", token)
        lookup.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_abandons_wait_but_lookup_completes(self, registry, wait):
        release = asyncio.Event()

        async def lookup(address):
            await release.wait()
            return ["a:1"]

        resolver = Resolver(registry, lookup=lookup)
        token = CancellationToken()
        waiter = asyncio.create_task(resolver.resolve("net", token))
        await asyncio.sleep(0)

        token.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        release.set()
        await wait(lambda: "net" in registry)
        assert len(token) == 0
