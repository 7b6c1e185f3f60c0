"""Tests for RetryPolicy backoff and retry classification."""

from __future__ import annotations

import asyncio

import pytest

from caseforge.embedding.retry import RetryPolicy
from caseforge.errors import TerminalProviderError, TransientProviderError


class _Sleeps:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


async def _call_with(policy: RetryPolicy, fn):
    async for attempt in policy.retrying():
        with attempt:
            return await fn()


def test_delay_for_doubles_and_caps():
    policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=3.0)
    assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]


def test_invalid_policy_rejected():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(base_delay=5.0, max_delay=1.0)


def test_transient_errors_retried_until_success():
    sleeps = _Sleeps()
    policy = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0, sleep=sleeps)
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientProviderError("429", status=429)
        return "ok"

    assert asyncio.run(_call_with(policy, flaky)) == "ok"
    assert len(calls) == 3
    assert len(sleeps.delays) == 2
    assert sleeps.delays == [policy.delay_for(1), policy.delay_for(2)] == [1.0, 2.0]


def test_transient_errors_exhaust_attempts_and_reraise():
    sleeps = _Sleeps()
    policy = RetryPolicy(max_attempts=3, sleep=sleeps)
    calls = []

    async def always_429():
        calls.append(1)
        raise TransientProviderError("429", status=429)

    with pytest.raises(TransientProviderError):
        asyncio.run(_call_with(policy, always_429))
    assert len(calls) == 3


def test_terminal_error_not_retried():
    sleeps = _Sleeps()
    policy = RetryPolicy(max_attempts=5, sleep=sleeps)
    calls = []

    async def bad_request():
        calls.append(1)
        raise TerminalProviderError("400", status=400)

    with pytest.raises(TerminalProviderError):
        asyncio.run(_call_with(policy, bad_request))
    assert len(calls) == 1
    assert sleeps.delays == []
