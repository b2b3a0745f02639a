"""
Pytest configuration and fixtures for Klaviyo marketing manager tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Generator
from unittest.mock import patch

import httpx
import pytest

from kmm.cache import InMemoryKVCache
from kmm.config import clear_settings_cache
from kmm.data.klaviyo_client import KlaviyoClient
from kmm.logging import setup_logging


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing.

    Points KLAVIYO_CONFIG_FILE at a file that does not exist so that a real
    config.json on the machine is never picked up first.
    """
    env_vars = {
        "KLAVIYO_API_KEY": "pk_test_fake_klaviyo_key_1234567890",
        "KLAVIYO_CONFIG_FILE": str(temp_dir / "missing-config.json"),
        "REQUEST_TIMEOUT_SECONDS": "12.5",
        "REPORT_TIMEOUT_SECONDS": "45",
        "CACHE_DISABLED": "false",
        "LOG_LEVEL": "WARNING",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a controllable clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def cache(fake_clock: FakeClock) -> InMemoryKVCache:
    """Provide an empty cache driven by the fake clock."""
    return InMemoryKVCache(clock=fake_clock)


ClientFactory = Callable[..., "tuple[KlaviyoClient, RecordingTransport]"]


@pytest.fixture
def client_factory(cache: InMemoryKVCache) -> ClientFactory:
    """Create KlaviyoClients backed by a recording mock transport."""

    def make(
        handler: Callable[[httpx.Request], httpx.Response],
        **kwargs: Any,
    ) -> tuple[KlaviyoClient, RecordingTransport]:
        transport = RecordingTransport(handler)
        client = KlaviyoClient("pk_test_key", cache=cache, transport=transport, **kwargs)
        return client, transport

    return make


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def reset_logging() -> Generator[None, None, None]:
    """Restore console-only logging after a test that writes log files."""
    yield
    setup_logging()
