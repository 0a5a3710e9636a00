"""Tests for the bounded-time liveness probe."""

import time

from tunnel_keeper.common.exceptions import TransportError
from tunnel_keeper.probe import LivenessProbe, ProbeResult


class TestLivenessProbe:
    def test_alive(self, fake_session):
        assert LivenessProbe().run(fake_session, deadline=1.0) is ProbeResult.ALIVE
        assert fake_session.keepalives == 1

    def test_error(self, fake_session):
        fake_session.keepalive_error = TransportError("transport is not active")

        assert LivenessProbe().run(fake_session, deadline=1.0) is ProbeResult.ERROR

    def test_timeout_does_not_wait_for_late_reply(self, fake_session):
        """A reply that arrives after the deadline still counts as dead."""
        fake_session.keepalive_delay = 1.0
        probe = LivenessProbe()

        started = time.monotonic()
        result = probe.run(fake_session, deadline=0.05)
        elapsed = time.monotonic() - started

        assert result is ProbeResult.TIMEOUT
        assert elapsed < 0.8

    def test_check(self, fake_session):
        probe = LivenessProbe()
        assert probe.check(fake_session, 1.0) is True

        fake_session.keepalive_error = EOFError()
        assert probe.check(fake_session, 1.0) is False

    def test_check_without_session(self):
        assert LivenessProbe().check(None, 1.0) is False
