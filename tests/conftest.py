"""Pytest configuration and fixtures for the chromeframe test suite.

This module provides the fakes shared across the test suite so that the
process manager, the session connector, tabs and the browser facade can be
exercised without a real browser.

Shared Fakes:
    FakeCDPClient mimics the parts of cdp_use.CDPClient the package uses:
    ``start``/``stop``, ``client.send.<Domain>.<method>(params=...)`` and
    ``client.register.<Domain>.<event>(handler)``. Every call is recorded in
    ``client.calls`` in order, registrations included.

    FakeClientFactory hands out FakeCDPClients and can be told to fail the
    first N dials.

    FakeProcess stands in for asyncio.subprocess.Process.

Path Setup:
    The src directory is added to sys.path to enable imports like:
    ``from chromeframe.browser.tab import Tab``
"""

import asyncio
import inspect
import sys
from pathlib import Path
from typing import Any

import httpx
import psutil
import pytest

# Add the src directory to the path so tests can import chromeframe
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from chromeframe.browser import process as process_module  # noqa: E402

BROWSER_WS_URL = "ws://127.0.0.1:9222/devtools/browser/5a1f6c1e-browser"

BLANK_HTML = "<html><head></head><body></body></html>"
PNG_BASE64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="


def default_responses() -> dict[str, Any]:
    """Canned CDP replies keyed by 'Domain.method'."""
    return {
        "Target.getTargets": {
            "targetInfos": [
                {
                    "targetId": "SW1",
                    "type": "service_worker",
                    "title": "worker",
                    "url": "https://example.com/sw.js",
                    "attached": False,
                },
                {
                    "targetId": "PAGE1",
                    "type": "page",
                    "title": "",
                    "url": "about:blank",
                    "attached": False,
                },
            ]
        },
        "Target.createTarget": {"targetId": "NEWPAGE"},
        "Target.createBrowserContext": {"browserContextId": "CTX1"},
        "Target.closeTarget": {"success": True},
        "Page.enable": {},
        "Page.navigate": {"frameId": "FRAME1", "loaderId": "LOADER1"},
        "DOM.getDocument": {"root": {"nodeId": 1, "nodeName": "#document"}},
        "DOM.getOuterHTML": {"outerHTML": BLANK_HTML},
        "DOM.querySelector": {"nodeId": 7},
        "DOM.getBoxModel": {"model": {"width": 1024, "height": 1500}},
        "Emulation.setDeviceMetricsOverride": {},
        "Page.captureScreenshot": {"data": PNG_BASE64},
        "Runtime.evaluate": {"result": {"type": "number", "value": 2, "description": "2"}},
    }


class _FakeDomain:
    def __init__(self, client: "FakeCDPClient", name: str):
        self._client = client
        self._name = name

    def __getattr__(self, method: str):
        key = f"{self._name}.{method}"

        async def call(params: dict[str, Any] | None = None, session_id: str | None = None) -> Any:
            return await self._client.handle(key, params)

        return call


class _FakeRegistryDomain:
    def __init__(self, client: "FakeCDPClient", name: str):
        self._client = client
        self._name = name

    def __getattr__(self, event: str):
        key = f"{self._name}.{event}"

        def register(handler) -> None:
            self._client.calls.append((f"register:{key}", None))
            self._client.handlers[key] = handler

        return register


class _Namespace:
    def __init__(self, client: "FakeCDPClient", domain_cls: type):
        self._client = client
        self._domain_cls = domain_cls

    def __getattr__(self, name: str):
        return self._domain_cls(self._client, name)


class FakeCDPClient:
    """In-memory stand-in for cdp_use.CDPClient."""

    def __init__(self, url: str, responses: dict[str, Any] | None = None, fire_dom_content: bool = True):
        self.url = url
        self.responses = default_responses()
        self.responses.update(responses or {})
        self.fire_dom_content = fire_dom_content
        self.calls: list[tuple[str, Any]] = []
        self.handlers: dict[str, Any] = {}
        self.started = False
        self.stopped = False
        self.send = _Namespace(self, _FakeDomain)
        self.register = _Namespace(self, _FakeRegistryDomain)

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    def called(self, key: str) -> list[Any]:
        """Params of every call to ``key``."""
        return [params for name, params in self.calls if name == key]

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def handle(self, key: str, params: dict[str, Any] | None) -> Any:
        self.calls.append((key, params))
        response = self.responses.get(key, {})
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(params)
            if inspect.isawaitable(response):
                response = await response

        if key == "Page.navigate" and self.fire_dom_content and not response.get("errorText"):
            handler = self.handlers.get("Page.domContentEventFired")
            if handler is not None:
                asyncio.get_running_loop().call_soon(handler, {"timestamp": 1.0}, None)
        return response


class FakeClientFactory:
    """Client factory that records dialed URLs and can fail the first dials."""

    def __init__(
        self,
        responses: dict[str, Any] | None = None,
        failures: int = 0,
        fire_dom_content: bool = True,
    ):
        self.responses = responses or {}
        self.failures = failures
        self.fire_dom_content = fire_dom_content
        self.urls: list[str] = []
        self.clients: list[FakeCDPClient] = []

    async def __call__(self, url: str) -> FakeCDPClient:
        self.urls.append(url)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionRefusedError(f"connection refused: {url}")
        client = FakeCDPClient(url, responses=self.responses, fire_dom_content=self.fire_dom_content)
        await client.start()
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeCDPClient:
        return self.clients[-1]


class VersionEndpoint:
    """httpx MockTransport handler for /json/version that can fail the first N requests."""

    def __init__(self, failures: int = 0, ws_url: str = BROWSER_WS_URL, always_fail: bool = False):
        self.failures = failures
        self.ws_url = ws_url
        self.always_fail = always_fail
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.always_fail or self.failures > 0:
            self.failures -= 1
            raise httpx.ConnectError(f"refused {len(self.requests)}", request=request)
        return httpx.Response(
            200,
            json={"Browser": "HeadlessChrome/126.0.0.0", "webSocketDebuggerUrl": self.ws_url},
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process."""

    def __init__(self, pid: int = 424242, exit_code: int | None = None):
        self.pid = pid
        self.returncode: int | None = None
        self.kill_count = 0
        self._exited = asyncio.Event()
        if exit_code is not None:
            self.exit(exit_code)

    def exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()

    def kill(self) -> None:
        self.kill_count += 1
        if self.returncode is None:
            self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakePsutilProcess:
    """psutil.Process replacement; fake pids never have a live process tree."""

    def __init__(self, pid: int):
        raise psutil.NoSuchProcess(pid)


class FakeSpawner:
    """Replacement for asyncio.create_subprocess_exec."""

    def __init__(self, error: BaseException | None = None, exit_code: int | None = None):
        self.error = error
        self.exit_code = exit_code
        self.calls: list[tuple[str, ...]] = []
        self.processes: list[FakeProcess] = []

    async def __call__(self, program: str, *args: str, **kwargs: Any) -> FakeProcess:
        self.calls.append((program, *args))
        if self.error is not None:
            raise self.error
        process = FakeProcess(exit_code=self.exit_code)
        self.processes.append(process)
        return process


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def client_factory():
    return FakeClientFactory()


@pytest.fixture()
def version_endpoint():
    return VersionEndpoint()


@pytest.fixture()
def no_sleep():
    """Sleep replacement that records the requested delays."""
    delays: list[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    sleep.delays = delays
    return sleep


@pytest.fixture()
def spawner(monkeypatch):
    """Route browser process creation to a FakeSpawner and skip psutil tree kills."""
    fake = FakeSpawner()
    monkeypatch.setattr(process_module.asyncio, "create_subprocess_exec", fake)
    monkeypatch.setattr(process_module.psutil, "Process", FakePsutilProcess)
    return fake
