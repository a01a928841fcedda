"""Tests for target selection."""

import asyncio

import pytest

from robustsession.lib.cancellation import CancellationToken
from robustsession.network.selector import SelectionMode, TargetSelector
from robustsession.protocol.errors import NetworkNotResolved


class TestTargetSelector:
    """Tests for TargetSelector.select()."""

    @pytest.fixture
    def entry(self, registry):
        return registry.register("net", ["a:1", "b:2", "c:3"])

    @pytest.fixture
    def make_selector(self, registry, scheduler, fixed_random):
        def make(picks=()):
            return TargetSelector(registry, scheduler=scheduler, rng=fixed_random(picks))
        return make

    def select(self, selector, mode, token=None):
        selected = []
        selector.select("net", mode, token if token is not None else CancellationToken(), selected.append)
        return selected

    def test_ordered_is_round_robin(self, entry, make_selector):
        selector = make_selector()
        picks = [self.select(selector, SelectionMode.ORDERED)[0] for _ in range(6)]
        assert picks == ["a:1", "b:2", "c:3", "a:1", "b:2", "c:3"]

    def test_ordered_moves_skipped_targets_to_tail(self, entry, make_selector):
        entry.backoff.record_failure("a:1")
        selector = make_selector()

        assert self.select(selector, SelectionMode.ORDERED) == ["b:2"]
        assert entry.targets == ["c:3", "a:1", "b:2"]

    def test_random_pick_when_eligible(self, entry, make_selector):
        selector = make_selector(picks=[2])
        assert self.select(selector, SelectionMode.RANDOM) == ["c:3"]
        assert entry.targets == ["a:1", "b:2", "c:3"]

    def test_random_falls_back_to_first_eligible(self, entry, make_selector):
        entry.backoff.record_failure("a:1")
        entry.backoff.record_failure("b:2")
        selector = make_selector(picks=[0])

        assert self.select(selector, SelectionMode.RANDOM) == ["c:3"]
        assert entry.targets[0] == "c:3"
        assert sorted(entry.targets) == ["a:1", "b:2", "c:3"]

    def test_callback_runs_synchronously(self, entry, make_selector, scheduler):
        selector = make_selector()
        selected = self.select(selector, SelectionMode.ORDERED)
        assert selected == ["a:1"]
        assert scheduler.timers == []

    def test_unresolved_network(self, make_selector):
        selector = make_selector()
        with pytest.raises(NetworkNotResolved):
            self.select(selector, SelectionMode.RANDOM)

    def test_cancelled_token_does_nothing(self, entry, make_selector, scheduler):
        selector = make_selector()
        token = CancellationToken()
        token.cancel()
        assert self.select(selector, SelectionMode.ORDERED, token) == []
        assert scheduler.timers == []

    def test_all_backing_off_schedules_one_retry(self, entry, make_selector, scheduler):
        entry.backoff.record_failure("a:1")
        entry.backoff.record_failure("a:1")  # 4s
        entry.backoff.record_failure("b:2")  # 2s
        entry.backoff.record_failure("c:3")
        entry.backoff.record_failure("c:3")
        entry.backoff.record_failure("c:3")  # 8s
        selector = make_selector()

        selected = self.select(selector, SelectionMode.ORDERED)

        assert selected == []
        assert len(scheduler.pending) == 1
        assert scheduler.pending[0].delay == 2

        scheduler.advance(2)
        assert selected == ["b:2"]
        assert scheduler.pending == []

    def test_retry_is_registered_with_token(self, entry, make_selector, scheduler):
        for target in entry.targets:
            entry.backoff.record_failure(target)
        selector = make_selector()
        token = CancellationToken()

        selected = self.select(selector, SelectionMode.RANDOM, token)
        assert len(token) == 1

        token.cancel()
        assert scheduler.timers[0].cancelled
        scheduler.advance(100)
        assert selected == []

    def test_retry_reports_network_forgotten_meanwhile(
        self, entry, make_selector, scheduler, registry
    ):
        for target in entry.targets:
            entry.backoff.record_failure(target)
        selector = make_selector()
        failures = []
        selector.select(
            "net", SelectionMode.ORDERED, CancellationToken(), lambda t: None, failures.append
        )

        registry.forget("net")
        scheduler.advance(2)

        assert len(failures) == 1
        assert isinstance(failures[0], NetworkNotResolved)


class TestTargetSelectorAcquire:
    """Tests for TargetSelector.acquire()."""

    @pytest.mark.asyncio
    async def test_acquire_returns_eligible_target(self, registry):
        registry.register("net", ["a:1"])
        selector = TargetSelector(registry)
        assert await selector.acquire("net", SelectionMode.RANDOM, CancellationToken()) == "a:1"

    @pytest.mark.asyncio
    async def test_acquire_waits_for_backoff(self, registry, scheduler):
        entry = registry.register("net", ["a:1"])
        entry.backoff.record_failure("a:1")
        selector = TargetSelector(registry, scheduler=scheduler)

        task = asyncio.create_task(
            selector.acquire("net", SelectionMode.ORDERED, CancellationToken())
        )
        await asyncio.sleep(0)
        assert not task.done()

        scheduler.advance(2)
        assert await task == "a:1"

    @pytest.mark.asyncio
    async def test_acquire_cancelled_by_token(self, registry, scheduler):
        entry = registry.register("net", ["a:1"])
        entry.backoff.record_failure("a:1")
        selector = TargetSelector(registry, scheduler=scheduler)
        token = CancellationToken()

        task = asyncio.create_task(selector.acquire("net", SelectionMode.ORDERED, token))
        await asyncio.sleep(0)
        token.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert scheduler.timers[0].cancelled

    @pytest.mark.asyncio
    async def test_acquire_unresolved(self, registry):
        selector = TargetSelector(registry)
        with pytest.raises(NetworkNotResolved):
            await selector.acquire("net", SelectionMode.ORDERED, CancellationToken())
