"""Debugging protocol handshake and per-target connections.

The browser needs a moment after the process is forked before its debugging
listener accepts connections, so the top-level handshake (version lookup,
websocket dial, target enumeration) is retried with a capped exponential
backoff. Per-target connections are single attempts; they run the caller's
connection hooks once the client is live.

Key Components:
    ProtocolSession: A live protocol client bound to one websocket endpoint.
    RetryPolicy: Attempt budget and backoff for the top-level handshake.
    SessionConnector: Performs both kinds of connection for one host/port.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import httpx
from cdp_use import CDPClient
from cdp_use.cdp.target import TargetID
from pydantic import BaseModel, ConfigDict, Field

from chromeframe.browser.profile import DEFAULT_DEBUG_PORT, DEFAULT_HOST
from chromeframe.browser.views import (
    HandshakeError,
    HookError,
    OperationTimeoutError,
    TabConnectError,
    TargetInfo,
)

logger = logging.getLogger(__name__)

# A protocol client is anything shaped like cdp_use.CDPClient: start()/stop(),
# client.send.<Domain>.<method>(params=...) and client.register.<Domain>.<event>(handler).
ClientFactory = Callable[[str], Awaitable[Any]]
ClientHook = Callable[[Any], Awaitable[None] | None]


async def connect_cdp_client(url: str) -> CDPClient:
    """Open a cdp-use client on ``url`` and start its websocket."""
    client = CDPClient(url)
    await client.start()
    return client


async def close_client(client: Any) -> None:
    """Stop a protocol client, logging instead of raising if it is already gone."""
    try:
        await client.stop()
    except Exception as e:
        logger.debug(f'Error while closing protocol client: {type(e).__name__}: {e}')


def _hook_name(hook: ClientHook) -> str:
    return getattr(hook, '__qualname__', None) or repr(hook)


async def run_hooks(client: Any, hooks: Sequence[ClientHook]) -> None:
    """Run connection hooks against ``client`` in order.

    Hooks may be plain functions or coroutine functions.

    Raises:
        HookError: For the first hook that raises; later hooks are not run.
    """
    for index, hook in enumerate(hooks):
        try:
            result = hook(client)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f'Unable to execute connection hook #{index} {_hook_name(hook)}: {e}')
            raise HookError(
                f'Connection hook {_hook_name(hook)} failed: {type(e).__name__}: {e}',
                hook=hook,
                details={'index': index},
            ) from e


class ProtocolSession(BaseModel):
    """A live protocol connection to a single websocket endpoint.

    Instances only exist once the client is connected, so a session is never
    observed half-built.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True, revalidate_instances='never')

    endpoint_url: str
    client: Any

    async def close(self) -> None:
        await close_client(self.client)


class RetryPolicy(BaseModel):
    """Attempt budget and backoff between handshake attempts."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=1)
    initial_delay: float = Field(default=0.1, ge=0)
    max_delay: float = Field(default=1.0, ge=0)

    def delay_for(self, failed_attempts: int) -> float:
        """Delay to sleep after ``failed_attempts`` consecutive failures (1-based)."""
        return min(self.initial_delay * (2 ** (failed_attempts - 1)), self.max_delay)


class SessionConnector(BaseModel):
    """Connects to the debugging endpoint of a browser on ``host:port``.

    Attributes:
        host: Host the debugging endpoint listens on.
        port: Remote debugging port.
        client_factory: Builds a started protocol client for a websocket URL.
        transport: Optional httpx transport for the version lookup.
        retry_policy: Attempt budget for the top-level handshake.
        sleep: Awaitable used between attempts.

    Example:
        >>> connector = SessionConnector(port=9222)
        >>> session, first_page = await connector.connect(timeout=30)
        >>> tab_session = await connector.connect_page(first_page, hooks=[])
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, extra='forbid', revalidate_instances='never')

    host: str = DEFAULT_HOST
    port: int = DEFAULT_DEBUG_PORT
    client_factory: ClientFactory = Field(default=connect_cdp_client, exclude=True)
    transport: httpx.AsyncBaseTransport | None = Field(default=None, exclude=True)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    sleep: Callable[[float], Awaitable[Any]] = Field(default=asyncio.sleep, exclude=True)

    @property
    def version_url(self) -> str:
        return f'http://{self.host}:{self.port}/json/version'

    def page_ws_url(self, target_id: TargetID) -> str:
        return f'ws://{self.host}:{self.port}/devtools/page/{target_id}'

    async def resolve_browser_ws_url(self) -> str:
        """Look up the browser-level websocket URL from /json/version."""
        async with httpx.AsyncClient(transport=self.transport, timeout=5.0) as http:
            response = await http.get(self.version_url)
            response.raise_for_status()
            version_info = response.json()

        ws_url = version_info.get('webSocketDebuggerUrl')
        if not ws_url:
            raise RuntimeError(f'No webSocketDebuggerUrl in {self.version_url} response')
        return ws_url

    async def connect(self, timeout: float) -> tuple[ProtocolSession, TargetID]:
        """Perform the top-level handshake, retrying while the browser starts up.

        Args:
            timeout: Deadline in seconds for the whole retry loop.

        Returns:
            The browser-level session and the target id of the first page.

        Raises:
            HandshakeError: If every attempt failed; chained to the last error.
            OperationTimeoutError: If the deadline elapsed first.
        """
        try:
            return await asyncio.wait_for(self._connect_with_retry(), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(f'Handshake with browser on port {self.port} timed out after {timeout}s')
            raise OperationTimeoutError(
                f'Handshake with browser timed out after {timeout}s',
                step='handshake',
                details={'port': self.port},
            ) from e

    async def _connect_with_retry(self) -> tuple[ProtocolSession, TargetID]:
        max_attempts = self.retry_policy.max_attempts
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                session, target_id = await self._handshake()
            except Exception as e:
                last_error = e
                logger.debug(f'Handshake attempt {attempt}/{max_attempts} on port {self.port} failed: {type(e).__name__}: {e}')
                if attempt < max_attempts:
                    await self.sleep(self.retry_policy.delay_for(attempt))
                continue

            logger.info(f'Connected to browser devtools at {session.endpoint_url} (attempt {attempt})')
            return session, target_id

        logger.error(f'Unable to connect to browser devtools protocol on port {self.port}: {last_error}')
        raise HandshakeError(
            f'Unable to connect to browser devtools protocol after {max_attempts} attempts: {last_error}',
            attempts=max_attempts,
            details={'port': self.port},
        ) from last_error

    async def _handshake(self) -> tuple[ProtocolSession, TargetID]:
        ws_url = await self.resolve_browser_ws_url()
        client = await self.client_factory(ws_url)
        try:
            target_id = await self._first_page_target(client)
        except BaseException:
            await close_client(client)
            raise
        return ProtocolSession(endpoint_url=ws_url, client=client), target_id

    async def _first_page_target(self, client: Any) -> TargetID:
        result = await client.send.Target.getTargets()
        for raw in result.get('targetInfos', []):
            target = TargetInfo.model_validate(raw)
            # skip service workers, extensions and the like
            if target.type == 'page':
                return target.target_id

        created = await client.send.Target.createTarget(params={'url': 'about:blank'})
        logger.debug(f'No page target found, created blank page {created["targetId"]}')
        return created['targetId']

    async def connect_page(self, target_id: TargetID, hooks: Sequence[ClientHook] = ()) -> ProtocolSession:
        """Open a dedicated connection to one page target and run its hooks.

        Single attempt, no retry. The caller applies the deadline.

        Raises:
            TabConnectError: If the websocket could not be dialed.
            HookError: If a hook failed; the connection is closed again.
        """
        url = self.page_ws_url(target_id)
        try:
            client = await self.client_factory(url)
        except Exception as e:
            logger.error(f'Unable to connect to target {target_id}: {e}')
            raise TabConnectError(
                f'Unable to connect to target {target_id}: {type(e).__name__}: {e}',
                details={'url': url},
            ) from e

        try:
            await run_hooks(client, hooks)
        except BaseException:
            await close_client(client)
            raise

        return ProtocolSession(endpoint_url=url, client=client)
