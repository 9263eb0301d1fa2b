import asyncio
import json
from types import SimpleNamespace

import pytest

from mdtranslate.errors import (
    CountMismatchError,
    ErrorCategory,
    ResponseParseError,
    TranslationProviderError,
)
from mdtranslate.policy import (
    MAX_RETRY_AFTER_SECONDS,
    RetryPolicy,
    extract_retry_after,
    extract_status_code,
)


def http_error(status, headers=None):
    exc = TranslationProviderError(f"API error {status}", status_code=status)
    if headers is not None:
        exc.response = SimpleNamespace(headers=headers)
    return exc


@pytest.mark.parametrize(
    ("exc", "category"),
    [
        (http_error(429), ErrorCategory.RATE_LIMIT),
        (http_error(408), ErrorCategory.TRANSIENT_HTTP),
        (http_error(409), ErrorCategory.TRANSIENT_HTTP),
        (http_error(425), ErrorCategory.TRANSIENT_HTTP),
        (http_error(503), ErrorCategory.SERVER_ERROR),
        (http_error(404), ErrorCategory.CLIENT_ERROR),
        (asyncio.TimeoutError(), ErrorCategory.TIMEOUT),
        (TranslationProviderError("Request timed out: read"), ErrorCategory.TIMEOUT),
        (ConnectionResetError("reset"), ErrorCategory.NETWORK),
        (TranslationProviderError("Network connection failed: ECONNREFUSED"), ErrorCategory.NETWORK),
        (ResponseParseError("Failed to parse JSON from model response"), ErrorCategory.RESPONSE_SHAPE),
        (CountMismatchError(expected=2, actual=1), ErrorCategory.RESPONSE_SHAPE),
        (json.JSONDecodeError("bad", "", 0), ErrorCategory.RESPONSE_SHAPE),
        (RuntimeError("something odd"), ErrorCategory.UNKNOWN),
    ],
)
def test_classification(exc, category, policy):
    assert policy.classify(exc) is category


def test_only_client_errors_are_fatal(policy):
    for category in ErrorCategory:
        assert policy.is_retryable(category) is (category is not ErrorCategory.CLIENT_ERROR)


def test_rate_limit_is_retryable_with_doubled_backoff(policy):
    decision = policy.decide(http_error(429), attempt=0)
    assert decision.category is ErrorCategory.RATE_LIMIT
    assert decision.retryable
    assert decision.delay_seconds == pytest.approx(1.0)


def test_client_error_is_not_retryable(policy):
    decision = policy.decide(http_error(404), attempt=0)
    assert not decision.retryable
    assert decision.category is ErrorCategory.CLIENT_ERROR


def test_exponential_backoff_is_capped(policy):
    server = http_error(500)
    delays = [policy.delay_for(server, ErrorCategory.SERVER_ERROR, attempt) for attempt in range(6)]
    assert delays == [0.5, 1.0, 2.0, 4.0, 8.0, 8.0]


def test_response_shape_backoff_has_floor_and_cap(policy):
    exc = ResponseParseError("bad")
    assert policy.delay_for(exc, ErrorCategory.RESPONSE_SHAPE, 0) == pytest.approx(0.2)
    assert policy.delay_for(exc, ErrorCategory.RESPONSE_SHAPE, 10) == pytest.approx(8.0)
    tiny = RetryPolicy(base_delay_ms=0, max_delay_ms=8000, jitter_ms=0)
    assert tiny.delay_for(exc, ErrorCategory.RESPONSE_SHAPE, 0) >= 0.1


def test_jitter_is_added():
    policy = RetryPolicy(base_delay_ms=500, max_delay_ms=8000, jitter_ms=100, rng=lambda: 0.5)
    assert policy.delay_for(RuntimeError(), ErrorCategory.UNKNOWN, 0) == pytest.approx(0.55)


def test_retry_after_hint_overrides_backoff_cap(policy):
    exc = http_error(429, headers={"retry-after": "30"})
    assert policy.decide(exc, attempt=0).delay_seconds == pytest.approx(30.0)


def test_retry_after_sources():
    assert extract_retry_after(http_error(429, headers={"retry-after-ms": "1500"})) == pytest.approx(1.5)
    assert extract_retry_after(TranslationProviderError("x", retry_after=2.0)) == pytest.approx(2.0)
    assert extract_retry_after(http_error(429, headers={})) is None
    assert extract_retry_after(RuntimeError()) is None


def test_status_code_attribute_variants():
    assert extract_status_code(SimpleNamespace(statusCode=502)) == 502
    assert extract_status_code(SimpleNamespace(status=418)) == 418
    assert extract_status_code(SimpleNamespace(status=True)) is None


def test_retry_after_hint_has_a_ceiling(policy):
    exc = http_error(429, headers={"retry-after": "86400"})
    assert policy.decide(exc, attempt=0).delay_seconds == pytest.approx(MAX_RETRY_AFTER_SECONDS)


@pytest.mark.parametrize("value", ["inf", "nan", "-inf"])
def test_non_finite_retry_after_falls_back_to_backoff(value, policy):
    exc = http_error(429, headers={"retry-after": value})
    assert extract_retry_after(exc) is None
    assert policy.decide(exc, attempt=0).delay_seconds == pytest.approx(1.0)
    assert extract_retry_after(TranslationProviderError("x", retry_after=float(value))) is None
