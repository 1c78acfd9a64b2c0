"""
Unit tests for the readiness waiter.
"""
import time

import pytest

from otd.errors import CommandError, ReadinessTimeout
from otd.MANAGERS.readiness_waiter import ReadinessTarget, ReadinessWaiter

TARGET = ReadinessTarget("otel-demo", "frontend")


class FlippingProbe:
    """Reports ready from the n-th call on."""

    def __init__(self, ready_on):
        self.ready_on = ready_on
        self.calls = 0

    def __call__(self, target):
        self.calls += 1
        return self.calls >= self.ready_on


class TestReadinessWaiter:

    def test_ready_immediately(self):
        sleeps = []
        probe = FlippingProbe(1)
        ReadinessWaiter(probe, poll_interval=5, sleep=sleeps.append).wait_ready(TARGET, 60)
        assert probe.calls == 1
        assert sleeps == []

    def test_returns_as_soon_as_ready(self):
        sleeps = []
        probe = FlippingProbe(3)
        ReadinessWaiter(probe, poll_interval=0.01, sleep=sleeps.append).wait_ready(TARGET, 60)
        assert probe.calls == 3
        assert sleeps == [0.01, 0.01]

    def test_times_out_when_never_ready(self):
        waiter = ReadinessWaiter(lambda target: False, poll_interval=0.05)
        start = time.monotonic()
        with pytest.raises(ReadinessTimeout) as exc:
            waiter.wait_ready(TARGET, 0.2)
        elapsed = time.monotonic() - start
        assert 0.2 <= elapsed < 0.2 + 0.05 + 0.5
        assert "deployment/frontend in namespace otel-demo" in str(exc.value)
        assert exc.value.timeout == 0.2

    def test_zero_timeout_probes_once(self):
        probe = FlippingProbe(99)
        with pytest.raises(ReadinessTimeout):
            ReadinessWaiter(probe, poll_interval=1, sleep=lambda s: None).wait_ready(TARGET, 0)
        assert probe.calls == 1

    def test_probe_errors_are_not_retried(self):
        calls = []

        def broken(target):
            calls.append(target)
            raise CommandError(["kubectl", "get"], 1, "NotFound")

        with pytest.raises(CommandError):
            ReadinessWaiter(broken, poll_interval=0.01).wait_ready(TARGET, 10)
        assert len(calls) == 1

    def test_wait_port_listening(self):
        answers = iter([False, True])
        waiter = ReadinessWaiter(lambda target: False, poll_interval=0.01, sleep=lambda s: None)
        waiter.wait_port_listening(8081, 5, in_use=lambda port: next(answers))


def test_target_description():
    target = ReadinessTarget("zipkin", "zipkin", kind="statefulset")
    assert str(target) == "statefulset/zipkin in namespace zipkin"
