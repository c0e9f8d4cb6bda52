"""Unit tests for retry with backoff and cancellation."""

import pytest
from unittest.mock import Mock

from setka_studio.core.cancellation import CancellationToken
from setka_studio.core.exceptions import (
    GenerationCancelled,
    MalformedResponseError,
    ProviderError,
)
from setka_studio.core.retry import MAX_ATTEMPTS, RetryController, is_retryable


def rate_limited():
    return ProviderError("429: RESOURCE_EXHAUSTED", retryable=True, http_status=429)


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_starts_active(self):
        assert CancellationToken().cancelled is False

    def test_cancel_is_sticky(self):
        token = CancellationToken()
        token.cancel()
        token.cancel()

        assert token.cancelled is True

    def test_wait_returns_immediately_when_cancelled(self):
        token = CancellationToken()
        token.cancel()

        assert token.wait(30) is True

    def test_wait_zero(self):
        assert CancellationToken().wait(0) is False


class TestIsRetryable:
    """Tests for the retry predicate."""

    def test_retryable_provider_error(self):
        assert is_retryable(rate_limited())

    def test_fatal_provider_error(self):
        assert not is_retryable(ProviderError("bad request", http_status=400))

    def test_malformed_response_never_retried(self):
        assert not is_retryable(MalformedResponseError("no image"))

    def test_other_exceptions(self):
        assert not is_retryable(ValueError("boom"))


class TestRetryController:
    """Tests for RetryController."""

    def test_defaults(self):
        controller = RetryController()

        assert controller.max_attempts == MAX_ATTEMPTS == 6
        assert controller.base_delay_ms == 2000

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            RetryController(max_attempts=0)
        with pytest.raises(ValueError):
            RetryController(base_delay_ms=-1)

    def test_backoff_delay_doubles(self):
        controller = RetryController()

        assert [controller.backoff_delay(n) for n in range(1, 6)] == [2.0, 4.0, 8.0, 16.0, 32.0]

    def test_success_on_first_attempt(self):
        sleeps = []
        controller = RetryController(sleep=sleeps.append)
        fn = Mock(return_value="data:image/png;base64,AAA")

        assert controller.call(fn) == "data:image/png;base64,AAA"
        assert fn.call_count == 1
        assert sleeps == []

    def test_succeeds_on_last_attempt_after_backoff(self):
        """Five rate limits then success: six calls and five doubling waits."""
        sleeps = []
        controller = RetryController(sleep=sleeps.append)
        fn = Mock(side_effect=[rate_limited() for _ in range(5)] + ["data:image/png;base64,AAA"])

        result = controller.call(fn)

        assert result == "data:image/png;base64,AAA"
        assert fn.call_count == 6
        assert sleeps == [2.0, 4.0, 8.0, 16.0, 32.0]

    def test_exhausted_retries_raise_last_error(self):
        sleeps = []
        controller = RetryController(sleep=sleeps.append)
        errors = [rate_limited() for _ in range(6)]
        fn = Mock(side_effect=errors)

        with pytest.raises(ProviderError) as exc_info:
            controller.call(fn)

        assert exc_info.value is errors[-1]
        assert fn.call_count == 6
        assert len(sleeps) == 5

    def test_fatal_error_not_retried(self):
        sleeps = []
        controller = RetryController(sleep=sleeps.append)
        fn = Mock(side_effect=ProviderError("401: invalid API key", http_status=401))

        with pytest.raises(ProviderError, match="invalid API key"):
            controller.call(fn)

        assert fn.call_count == 1
        assert sleeps == []

    def test_malformed_response_not_retried(self):
        sleeps = []
        controller = RetryController(sleep=sleeps.append)
        fn = Mock(side_effect=MalformedResponseError("no image in response"))

        with pytest.raises(MalformedResponseError):
            controller.call(fn)

        assert fn.call_count == 1
        assert sleeps == []

    def test_custom_base_delay(self):
        sleeps = []
        controller = RetryController(max_attempts=3, base_delay_ms=500, sleep=sleeps.append)
        fn = Mock(side_effect=[rate_limited(), rate_limited(), "ok"])

        assert controller.call(fn) == "ok"
        assert sleeps == [0.5, 1.0]

    def test_cancelled_before_first_attempt(self):
        token = CancellationToken()
        token.cancel()
        fn = Mock()

        with pytest.raises(GenerationCancelled):
            RetryController(sleep=Mock()).call(fn, token=token)

        fn.assert_not_called()

    def test_cancel_during_backoff_stops_retrying(self):
        token = CancellationToken()
        sleep = Mock(side_effect=lambda seconds: token.cancel())
        fn = Mock(side_effect=[rate_limited(), "never returned"])

        with pytest.raises(GenerationCancelled):
            RetryController(sleep=sleep).call(fn, token=token)

        assert fn.call_count == 1
        sleep.assert_called_once_with(2.0)

    def test_token_wait_used_without_injected_sleep(self):
        token = Mock()
        token.cancelled = False
        token.wait.return_value = False
        fn = Mock(side_effect=[rate_limited(), "ok"])

        result = RetryController(base_delay_ms=100).call(fn, token=token)

        assert result == "ok"
        token.wait.assert_called_once_with(0.1)
