"""
Tests for configuration and retry policy.
"""

import asyncio
import json

import pytest

from glyphscroll.core.contracts import Config
from glyphscroll.core.envelope import max_chunk_payload
from glyphscroll.core.errors import NetworkError, NotFoundError, RateLimitError
from glyphscroll.core.retry import RetryConfig, retry_async


def test_defaults_derive_sizes_from_payload_limit():
    """Test default chunk sizes are derived from the payload limit."""
    config = Config()
    assert config.resolved_chunk_size() == max_chunk_payload(1200)
    assert config.resolved_digests_per_chunk() == max_chunk_payload(1200) // 32
    config.validate()


def test_explicit_sizes_win():
    """Test explicit chunk sizes override the derived ones."""
    config = Config(max_payload_size=4096, chunk_size=500, digests_per_hash_list_chunk=64)
    assert config.resolved_chunk_size() == 500
    assert config.resolved_digests_per_chunk() == 64
    config.validate()


@pytest.mark.parametrize(
    "overrides",
    [
        {"chunk_size": 5000},
        {"chunk_size": 0},
        {"digests_per_hash_list_chunk": 1000},
        {"compression": "brotli"},
        {"cipher_key": b""},
        {"max_payload_size": 50},
        {"integrity_attempts": 0},
        {"content_fetch_concurrency": 0},
    ],
)
def test_validate_rejects(overrides):
    """Test validate rejects configurations that cannot publish."""
    with pytest.raises(ValueError):
        Config(**overrides).validate()


def test_from_file(tmp_path):
    """Test config loads from a JSON file."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"compression": "zstd", "cipher_key": "SECRET", "chunk_size": 300}))

    config = Config.from_file(path)
    assert config.compression == "zstd"
    assert config.cipher_key == b"SECRET"
    assert config.chunk_size == 300


def test_from_file_rejects_unknown_keys(tmp_path):
    """Test unknown keys in a config file are rejected."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"chunk_overlap": 50}))
    with pytest.raises(ValueError):
        Config.from_file(path)


def test_backoff_grows_and_caps():
    """Test backoff grows by the factor up to the cap."""
    retry = RetryConfig(max_attempts=5, initial_backoff_s=1.0, backoff_factor=2.0, max_backoff_s=3.0)
    error = NetworkError("down")
    assert [retry.delay_for(n, error) for n in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]


def test_rate_limit_backs_off_longer():
    """Test rate limit errors wait longer than other failures."""
    retry = RetryConfig(initial_backoff_s=1.0, rate_limit_factor=3.0)
    assert retry.delay_for(1, RateLimitError("slow down")) == 3.0
    assert retry.delay_for(1, RateLimitError("slow down")) > retry.delay_for(1, NetworkError("x"))


def _flaky(failures):
    calls = []

    async def call():
        calls.append(1)
        if failures:
            raise failures.pop(0)
        return "ok"

    return call, calls


def test_retry_recovers_from_transient_errors():
    """Test transient errors are retried until success."""
    call, calls = _flaky([NetworkError("a"), RateLimitError("b")])
    retries = []
    config = RetryConfig(max_attempts=3, initial_backoff_s=0.0, max_backoff_s=0.0)

    result = asyncio.run(retry_async(call, config, on_retry=lambda n, e: retries.append(n)))

    assert result == "ok"
    assert len(calls) == 3
    assert retries == [1, 2]


def test_retry_gives_up_after_max_attempts():
    """Test the last error is raised after max attempts."""
    call, calls = _flaky([NetworkError("a")] * 5)
    config = RetryConfig(max_attempts=2, initial_backoff_s=0.0, max_backoff_s=0.0)

    with pytest.raises(NetworkError):
        asyncio.run(retry_async(call, config))
    assert len(calls) == 2


def test_non_retryable_error_propagates_immediately():
    """Test non-retryable errors are raised on the first attempt."""
    call, calls = _flaky([NotFoundError("gone")])
    with pytest.raises(NotFoundError):
        asyncio.run(retry_async(call, RetryConfig(initial_backoff_s=0.0, max_backoff_s=0.0)))
    assert len(calls) == 1
