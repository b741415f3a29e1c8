import random
from collections import Counter
from typing import Iterable, Optional

import httpx
import pytest

from assetlock.config import LockServiceConfig
from assetlock.lockservice import LockServiceClient

ENDPOINT = "http://locks.test"
USER = "tester"


class FakeLockableResources:
    """
    In-memory stand-in for the lockable-resources HTTP service.

    Unknown resources answer 404, reserving a reserved resource answers 423.
    """

    def __init__(self, names: Iterable[str] = (), user: str = USER) -> None:
        self.user = user
        self.resources = {}
        for name in names:
            self.add(name)
        self.calls = Counter()
        self.reserved_names = []
        self.refuse = set()          # reserve answers 423 even though status says free
        self.ignore_reserve = set()  # reserve answers 200 but nothing changes
        self.fail_reserve = False
        self.fail_unreserve = False
        self.fail_status = False
        self.html_label: Optional[str] = None
        self.auth_headers = []

    def add(self, name: str, reserved_by: Optional[str] = None) -> None:
        self.resources[name] = {
            "name": name,
            "reserved": reserved_by is not None,
            "reservedBy": reserved_by,
            "description": f"{name} test resource",
            "labels": "lab device",
        }

    def reserve_elsewhere(self, name: str) -> None:
        self.add(name, reserved_by="someone-else")

    def is_reserved(self, name: str) -> bool:
        return self.resources[name]["reserved"]

    def _html(self, count: int) -> str:
        if self.html_label is None:
            return "<html>ok</html>"
        colour = "red" if count == 0 else "darkorange"
        return (
            f'<table><tr><td>{self.html_label}</td><td class="pane" '
            f'style="color: {colour};">{count}</td></tr></table>'
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.auth_headers.append(request.headers.get("authorization"))
        path = request.url.path
        name = request.url.params.get("resource")

        if path == "/plugin/lockable-resources/api/json":
            self.calls["status"] += 1
            if self.fail_status:
                return httpx.Response(500)
            return httpx.Response(200, json={"resources": list(self.resources.values())})

        if path == "/lockable-resources/reserve":
            self.calls["reserve"] += 1
            self.reserved_names.append(name)
            if self.fail_reserve:
                return httpx.Response(500)
            entry = self.resources.get(name)
            if entry is None:
                return httpx.Response(404)
            if entry["reserved"] or name in self.refuse:
                return httpx.Response(423)
            if name not in self.ignore_reserve:
                entry["reserved"] = True
                entry["reservedBy"] = self.user
            return httpx.Response(200, text=self._html(0))

        if path == "/lockable-resources/unreserve":
            self.calls["unreserve"] += 1
            if self.fail_unreserve:
                return httpx.Response(500)
            entry = self.resources.get(name)
            if entry is None:
                return httpx.Response(404)
            entry["reserved"] = False
            entry["reservedBy"] = None
            return httpx.Response(200, text=self._html(1))

        return httpx.Response(404)


@pytest.fixture
def fake():
    """A lock service knowing a handful of free resources."""
    return FakeLockableResources(["shared", "AA:BB:CC", "alt-1", "busy"])


@pytest.fixture
def config():
    return LockServiceConfig(
        endpoint_url=ENDPOINT,
        wait_time=10,
        wait_timeout=50,
        username=USER,
    )


@pytest.fixture
async def make_client(fake, config):
    """Factory for clients bound to the fake service; all are closed after the test."""
    clients = []

    def _make(**overrides) -> LockServiceClient:
        cfg = config.model_copy(update=overrides)
        client = LockServiceClient(cfg, transport=httpx.MockTransport(fake.handler))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


@pytest.fixture
async def client(make_client):
    return make_client()


@pytest.fixture
def rng():
    return random.Random(7)


@pytest.fixture
def write_data_file():
    """Create a data file from raw rows and return its path."""

    def _write(directory, filename: str, *rows: str):
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / filename
        path.write_text("\n".join(rows) + "\n", encoding="utf-8")
        return path

    return _write
