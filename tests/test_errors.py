import httpx
import openai
import pytest

from genmux.errors import ConfigurationError, TransportError, ValidationError, classify_error, error_from_body
from genmux.retry import RetryPolicy, run_with_retries


def _status_error(status, message="boom"):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return openai.APIStatusError(message, response=response, body=None)


class TestClassification:
    def test_genmux_errors_pass_through(self):
        error = ValidationError("bad")
        assert classify_error(error) is error

    def test_timeout(self):
        request = httpx.Request("GET", "https://example.com")
        mapped = classify_error(openai.APITimeoutError(request=request), "openai")
        assert mapped.kind == "timeout"
        assert mapped.retryable

    def test_connection(self):
        mapped = classify_error(httpx.ConnectError("refused"), "openai")
        assert mapped.kind == "network"
        assert mapped.retryable

    @pytest.mark.parametrize("status, kind, retryable", [
        (401, "auth", False),
        (402, "insufficient_credits", False),
        (404, "model_not_found", False),
        (429, "rate_limit", True),
        (500, "server", True),
        (503, "server", True),
        (400, "invalid_request", False),
    ])
    def test_status_codes(self, status, kind, retryable):
        mapped = classify_error(_status_error(status), "openai")
        assert isinstance(mapped, TransportError)
        assert (mapped.kind, mapped.retryable, mapped.status_code) == (kind, retryable, status)

    @pytest.mark.parametrize("message, kind, retryable", [
        ("Insufficient credits to complete this request", "insufficient_credits", False),
        ("You exceeded your current quota (insufficient_quota)", "insufficient_credits", False),
        ("No available provider for this model", "unavailable", True),
        ("No endpoints found for mistral/foo", "unavailable", True),
        ("The model `gpt-9` does not exist", "model_not_found", False),
    ])
    def test_vendor_messages_win_over_status(self, message, kind, retryable):
        mapped = classify_error(_status_error(400, message), "openrouter")
        assert (mapped.kind, mapped.retryable) == (kind, retryable)

    def test_unknown_exception(self):
        mapped = classify_error(RuntimeError("weird"), "test")
        assert mapped.kind == "unknown"
        assert not mapped.retryable
        assert "[test:unknown:fatal]" in str(mapped)

    def test_error_body(self):
        mapped = error_from_body({"message": "Rate limit exceeded", "code": 429}, "openrouter")
        assert (mapped.kind, mapped.retryable, mapped.status_code) == ("rate_limit", True, 429)

    def test_error_body_status_only(self):
        mapped = error_from_body({"message": "upstream said no", "code": 502}, "openrouter")
        assert (mapped.kind, mapped.retryable) == ("server", True)


class TestRetries:
    @pytest.fixture
    def policy(self):
        return RetryPolicy(max_retries=2, initial_delay=0.5, max_delay=8.0, jitter=0)

    async def _no_sleep(self, delay):
        self.delays.append(delay)

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, policy):
        self.delays = []
        attempts = []

        async def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise httpx.ConnectError("refused")
            return "ok"

        result = await run_with_retries(operation, provider="openai", policy=policy, sleep=self._no_sleep)
        assert result == "ok"
        assert len(attempts) == 3
        assert self.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_budget_exhausted(self, policy):
        self.delays = []

        async def operation():
            raise _status_error(503)

        with pytest.raises(TransportError) as excinfo:
            await run_with_retries(operation, provider="openai", policy=policy, sleep=self._no_sleep)
        assert excinfo.value.retryable
        assert excinfo.value.attempts == 3
        assert isinstance(excinfo.value.__cause__, openai.APIStatusError)

    @pytest.mark.asyncio
    async def test_fatal_errors_are_not_retried(self, policy):
        self.delays = []
        attempts = []

        async def operation():
            attempts.append(1)
            raise _status_error(401)

        with pytest.raises(TransportError) as excinfo:
            await run_with_retries(operation, provider="openai", policy=policy, sleep=self._no_sleep)
        assert excinfo.value.kind == "auth"
        assert len(attempts) == 1
        assert self.delays == []

    @pytest.mark.asyncio
    async def test_configuration_errors_are_not_retried(self, policy):
        self.delays = []

        async def operation():
            raise ConfigurationError("no key")

        with pytest.raises(ConfigurationError):
            await run_with_retries(operation, provider="openai", policy=policy, sleep=self._no_sleep)
        assert self.delays == []

    def test_backoff_is_bounded(self):
        policy = RetryPolicy(initial_delay=1, max_delay=5, jitter=0.5)
        assert all(policy.delay_for(n) <= 5 for n in range(1, 10))
