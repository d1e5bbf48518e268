"""
Pytest configuration and fixtures for sungura tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Generator
from unittest.mock import patch

import httpx
import pytest

from sungura.config import Settings, clear_settings_cache

ORIGIN = "https://farm.test"
API_BASE = "https://api.farm.test/api/v1"


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "API_BASE_URL": API_BASE,
        "API_TOKEN": "test-token-abcdef123456",
        "APP_ORIGIN": ORIGIN,
        "CACHE_DIR": ".test_cache",
        "RETRY_MAX_ATTEMPTS": "2",
        "RETRY_DELAY_SECONDS": "0",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str], temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration.

    Uses temp_dir for the cache directory.
    """
    with patch.dict(os.environ, {"CACHE_DIR": str(temp_dir / "cache")}):
        clear_settings_cache()
        from sungura.config import get_settings

        settings = get_settings()
        settings.ensure_directories()
        yield settings
        clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


def envelope(data: Any = None, success: bool = True, message: str | None = None) -> dict[str, Any]:
    """Build a farm API response body."""
    body: dict[str, Any] = {"success": success, "data": data}
    if message is not None:
        body["message"] = message
    return body


class FakeNetwork:
    """Scriptable network behind an httpx.MockTransport.

    Routes are ``(METHOD, path) -> response | exception | callable``. Every
    request is recorded; unknown routes answer 404. ``offline = True`` makes
    every request fail with a connection error.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.requests: list[httpx.Request] = []
        self.offline = False

    def add(self, method: str, path: str, response: Any) -> None:
        self.routes[(method.upper(), path)] = response

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)

        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"success": False, "message": "Not found"})
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        return route

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_network() -> FakeNetwork:
    """Provide a scriptable fake network."""
    return FakeNetwork()


@pytest.fixture
def rabbit_data() -> Callable[..., dict[str, Any]]:
    """Factory for raw rabbit payloads as the API returns them."""

    def make(**overrides: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": "r-1",
            "rabbit_id": "RB-001",
            "farm_id": "farm-1",
            "name": "Daisy",
            "gender": "female",
            "breed": "New Zealand",
            "birth_date": "2024-01-10",
            "hutch_id": "H-1",
            "is_pregnant": False,
        }
        data.update(overrides)
        return data

    return make
