import sys
from pathlib import Path

# Ensure project root is importable for the flat module layout.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import asyncio
import inspect
from typing import Any, Dict, List, Tuple
from urllib.parse import urlsplit

import pytest
from fastapi.testclient import TestClient

from api_client import DatabricksAPIClient
from server import create_app


class FakeDatabricksClient(DatabricksAPIClient):
    """DatabricksAPIClient with the transport replaced by a route table.

    ``on(method, path, response)`` registers a response for an exact URL path. A
    response may be a body (served with 200), a ``(status, body)`` tuple, an exception
    instance (raised from the transport), or a callable taking the call record and
    returning any of those. Unregistered paths answer ``(200, {})``.
    """

    def __init__(self, host: str = "https://test.cloud.databricks.com", token: str = "test-token"):
        super().__init__(host, token)
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.calls: List[Dict[str, Any]] = []

    def on(self, method: str, path: str, response: Any):
        self.routes[(method.upper(), path)] = response
        return self

    def called(self, method: str, path: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method.upper() and c["path"] == path]

    async def _send(self, method, url, params=None, json_body=None, data=None, headers=None, timeout=None):
        parts = urlsplit(url)
        call = {"method": method.upper(), "path": parts.path, "host": f"{parts.scheme}://{parts.netloc}",
                "params": params or {}, "json": json_body, "data": data, "headers": headers or {}}
        self.calls.append(call)
        response = self.routes.get((call["method"], call["path"]), {})
        if callable(response) and not isinstance(response, type):
            response = response(call)
            if inspect.isawaitable(response):
                response = await response
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, tuple):
            return response
        return 200, response

    async def close(self):
        pass


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def fake():
    return FakeDatabricksClient()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(fake, clock):
    return create_app(client=fake, clock=clock)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def unguarded_client(app):
    """Client that returns the 500 response instead of re-raising the server exception."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def never():
    async def hang(call):
        await asyncio.sleep(3600)
    return hang
