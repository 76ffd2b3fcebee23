"""Tests for the per-user claim path registry."""

import pytest

from landclaim.api.sessions import PathSessionRegistry
from landclaim.core.path_recorder import PathState
from landclaim.core.rules import ClaimRules


class TestPathSessionRegistry:
    @pytest.fixture
    def registry(self, clock):
        return PathSessionRegistry(ClaimRules(), clock=clock)

    def test_start_and_reuse(self, registry):
        recorder = registry.get_or_start("alice")

        assert registry.get("alice") is recorder
        assert registry.get_or_start("alice") is recorder
        assert registry.get("bob") is None
        assert len(registry) == 1

    def test_users_are_isolated(self, registry):
        assert registry.get_or_start("alice") is not registry.get_or_start("bob")
        assert len(registry) == 2

    def test_idle_path_expires_on_access(self, registry, clock):
        recorder = registry.get_or_start("alice")
        clock.advance(seconds=601)

        assert registry.get("alice") is None
        assert recorder.state == PathState.ABANDONED
        assert len(registry) == 0

    def test_terminal_path_is_replaced(self, registry):
        first = registry.get_or_start("alice")
        first.cancel()

        second = registry.get_or_start("alice")
        assert second is not first
        assert second.state == PathState.EMPTY

    def test_discard(self, registry):
        registry.get_or_start("alice")
        registry.discard("alice")
        registry.discard("nobody")

        assert registry.get("alice") is None

    def test_sweep(self, registry, clock):
        idle = registry.get_or_start("alice")
        clock.advance(seconds=400)
        registry.get_or_start("bob")
        registry.get_or_start("carol").cancel()
        clock.advance(seconds=300)

        assert registry.sweep() == 1
        assert idle.state == PathState.ABANDONED
        assert registry.get("bob") is not None
        assert registry.get("carol") is None
        assert len(registry) == 1
