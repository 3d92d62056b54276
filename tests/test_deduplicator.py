"""InFlightRegistry: joining, replacement, detach and cleanup."""

import asyncio

import pytest

from ghboard.services.deduplicator import InFlightRegistry


class TestInFlightRegistry:
    @pytest.mark.asyncio
    async def test_get_returns_running_task(self):
        registry = InFlightRegistry()
        gate = asyncio.Event()

        async def work():
            await gate.wait()
            return 42

        task = registry.start("k", work)
        assert registry.get("k") is task
        assert "k" in registry

        gate.set()
        assert await task == 42
        assert "k" not in registry
        assert registry.get_stats().joined == 1

    @pytest.mark.asyncio
    async def test_removed_on_failure(self):
        registry = InFlightRegistry()

        async def boom():
            raise RuntimeError("fail")

        task = registry.start("k", boom)
        with pytest.raises(RuntimeError):
            await task
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_replacement_keeps_newer_registration(self):
        registry = InFlightRegistry()
        old_gate, new_gate = asyncio.Event(), asyncio.Event()

        async def wait_on(gate, value):
            await gate.wait()
            return value

        old = registry.start("k", lambda: wait_on(old_gate, "old"))
        new = registry.start("k", lambda: wait_on(new_gate, "new"))
        assert registry.get_stats().replaced == 1

        old_gate.set()
        assert await old == "old"
        # The old task finishing must not unregister the new one
        assert registry.get("k") is new

        new_gate.set()
        assert await new == "new"
        assert "k" not in registry

    @pytest.mark.asyncio
    async def test_detach_leaves_task_running(self):
        registry = InFlightRegistry()
        gate = asyncio.Event()

        async def work():
            await gate.wait()
            return "done"

        task = registry.start(("prs", "a"), work)
        other = registry.start(("issues", "b"), work)

        detached = registry.detach(lambda k: k[0] == "prs")

        assert detached == 1
        assert registry.get_in_flight_keys() == [("issues", "b")]
        gate.set()
        assert await task == "done"
        assert await other == "done"

    def test_stats_dict(self):
        stats = InFlightRegistry().get_stats().to_dict()
        assert stats["total_requests"] == 0
        assert stats["dedup_rate"] == "0.00%"
