"""Tests for the shared RetryPolicy."""
from unittest.mock import MagicMock

import pytest

from catalog_sync.shopify.errors import RemoteError, RemoteTransientError
from catalog_sync.shopify.retry import RetryPolicy, is_retryable_status


def _policy(**kwargs):
    sleeps = []
    policy = RetryPolicy(sleep=sleeps.append, jitter=lambda: 0.0, **kwargs)
    return policy, sleeps


class TestIsRetryableStatus:
    @pytest.mark.parametrize("status", [0, 429, 500, 502, 503, 599])
    def test_retryable(self, status):
        assert is_retryable_status(status)

    @pytest.mark.parametrize("status", [200, 400, 401, 403, 404, 422])
    def test_not_retryable(self, status):
        assert not is_retryable_status(status)


class TestRetryPolicy:
    def test_success_first_try_does_not_sleep(self):
        policy, sleeps = _policy()
        assert policy.call(lambda: "ok") == "ok"
        assert sleeps == []

    def test_transient_then_success(self):
        policy, sleeps = _policy()
        fn = MagicMock(side_effect=[RemoteTransientError("503", status_code=503), "ok"])
        assert policy.call(fn) == "ok"
        assert fn.call_count == 2
        assert sleeps == [2.0]

    def test_exponential_backoff_then_surfaces(self):
        policy, sleeps = _policy(max_attempts=4)
        fn = MagicMock(side_effect=RemoteTransientError("429", status_code=429))
        with pytest.raises(RemoteTransientError):
            policy.call(fn)
        assert fn.call_count == 4
        assert sleeps == [2.0, 4.0, 8.0]

    def test_non_retryable_surfaces_immediately(self):
        policy, sleeps = _policy()
        fn = MagicMock(side_effect=RemoteError("401", status_code=401))
        with pytest.raises(RemoteError):
            policy.call(fn)
        assert fn.call_count == 1
        assert sleeps == []

    def test_jitter_bounded_by_max_jitter(self):
        policy = RetryPolicy(base_delay=1.0, max_jitter=0.5, jitter=lambda: 1.0)
        assert policy.delay_for(0) == pytest.approx(1.5)
        assert policy.delay_for(2) == pytest.approx(4.5)

    def test_single_attempt_never_sleeps(self):
        policy, sleeps = _policy(max_attempts=1)
        with pytest.raises(RemoteTransientError):
            policy.call(MagicMock(side_effect=RemoteTransientError("x", status_code=0)))
        assert sleeps == []
