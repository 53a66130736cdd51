"""Browser facade: process, top-level session and tab creation.

This module composes the process manager, the session connector and tabs
into the public entry point.

Key Components:
    Browser: Launches the browser, owns the top-level protocol session used
        to create and close targets, and hands out Tab handles.

Each Tab gets the host and port by value and opens its own connection, so
nothing but those two values is shared between the Browser and its tabs.

Example:
    >>> async with Browser() as browser:
    ...     tab = await browser.launch(LaunchOptions(path='/usr/bin/chromium'))
    ...     await tab.navigate('https://example.com', timeout=30)
    ...     incognito = await browser.open_new_incognito_tab(timeout=10)
    ...     await browser.close_tab(incognito, timeout=10)
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

import httpx
from bubus import BaseEvent, EventBus
from cdp_use.cdp.target import TargetID
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from chromeframe.browser.connector import (
    ClientFactory,
    ProtocolSession,
    RetryPolicy,
    SessionConnector,
    connect_cdp_client,
)
from chromeframe.browser.events import (
    BrowserErrorEvent,
    BrowserLaunchedEvent,
    BrowserTerminatedEvent,
    TabClosedEvent,
    TabCreatedEvent,
)
from chromeframe.browser.process import BrowserProcess
from chromeframe.browser.profile import (
    DEFAULT_DEBUG_PORT,
    DEFAULT_HOST,
    DEFAULT_NAVIGATION_SETTLE_DELAY,
    LaunchOptions,
)
from chromeframe.browser.tab import DEFAULT_TIMEOUT, Tab
from chromeframe.browser.views import (
    BrowserError,
    BrowserLaunchError,
    BrowserNotLaunchedError,
    OperationError,
    OperationTimeoutError,
    TargetInfo,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Browser(BaseModel):
    """Top-level entry point for controlling one browser process.

    Process-control calls (launch, wait, terminate) are not safe to issue
    concurrently from several callers; serialize them yourself.

    Attributes:
        event_bus: EventBus on which lifecycle events are dispatched.
        client_factory: Builds a started protocol client for a websocket URL.
        transport: Optional httpx transport for the /json/version lookup.
        retry_policy: Attempt budget for the launch handshake.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra='forbid',
        revalidate_instances='never',
    )

    event_bus: EventBus = Field(default_factory=EventBus)
    client_factory: ClientFactory = Field(default=connect_cdp_client, exclude=True)
    transport: httpx.AsyncBaseTransport | None = Field(default=None, exclude=True)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)

    _process: BrowserProcess = PrivateAttr(default_factory=BrowserProcess)
    _options: LaunchOptions | None = PrivateAttr(default=None)
    _root: ProtocolSession | None = PrivateAttr(default=None)
    _terminated: bool = PrivateAttr(default=False)
    _bus_started: bool = PrivateAttr(default=False)

    @property
    def process(self) -> BrowserProcess:
        return self._process

    @property
    def options(self) -> LaunchOptions | None:
        return self._options

    @property
    def port(self) -> int:
        return self._options.resolved_port if self._options is not None else DEFAULT_DEBUG_PORT

    @property
    def is_connected(self) -> bool:
        return self._root is not None

    @property
    def cdp_url(self) -> str | None:
        """Browser-level websocket URL, None until launch() succeeded."""
        return self._root.endpoint_url if self._root is not None else None

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    # ------------------------------------------------------------------
    # Process control
    # ------------------------------------------------------------------

    async def launch(self, options: LaunchOptions) -> Tab:
        """Start the browser and connect to its debugging endpoint.

        Args:
            options: Launch configuration. The handshake is bounded by
                ``options.connect_timeout``.

        Returns:
            A Tab for the first page target the browser opened.

        Raises:
            BrowserLaunchError: If the process could not be started, or this
                Browser was already terminated.
            HandshakeError: If every handshake attempt failed.
            OperationTimeoutError: If the handshake deadline elapsed.
        """
        if self._terminated:
            raise BrowserLaunchError('Browser was terminated and cannot be launched again')

        try:
            await self._process.start(options)
        except BrowserError as e:
            await self._dispatch_error(e)
            raise
        self._options = options

        connector = SessionConnector(
            host=options.host,
            port=options.resolved_port,
            client_factory=self.client_factory,
            transport=self.transport,
            retry_policy=self.retry_policy,
        )
        try:
            root, target_id = await connector.connect(timeout=options.connect_timeout)
        except BrowserError as e:
            logger.error(f'Unable to connect to browser devtools protocol, killing browser: {e}')
            await self._process.terminate()
            await self._dispatch_error(e)
            raise

        self._root = root
        await self._dispatch(
            BrowserLaunchedEvent(pid=self._process.pid, port=options.resolved_port, ws_url=root.endpoint_url)
        )
        await self._dispatch(TabCreatedEvent(target_id=target_id))
        return self.open_tab(target_id)

    async def wait(self) -> int | None:
        """Block until the browser process exits and return its exit code.

        A premature exit is logged, not raised.
        """
        return await self._process.wait()

    async def terminate(self) -> None:
        """Close the top-level session and kill the browser.

        A no-op if the browser was never launched, and safe to repeat.
        """
        root, self._root = self._root, None
        if root is not None:
            await root.close()

        await self._process.terminate()

        if self._terminated:
            return
        self._terminated = True

        if self._process.started:
            await self._dispatch(
                BrowserTerminatedEvent(pid=self._process.pid, returncode=self._process.returncode)
            )
        if self._bus_started:
            await self.event_bus.stop(clear=True, timeout=5)

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    def open_tab(self, target_id: TargetID) -> Tab:
        """Wrap a known target id in a Tab without checking it is live.

        A stale id only surfaces as a connect error on the first operation.
        """
        options = self._options
        return Tab(
            target_id=target_id,
            host=options.host if options else DEFAULT_HOST,
            port=self.port,
            navigation_settle_delay=options.navigation_settle_delay if options else DEFAULT_NAVIGATION_SETTLE_DELAY,
            client_factory=self.client_factory,
        )

    async def open_new_tab(self, timeout: float = DEFAULT_TIMEOUT) -> Tab:
        """Create a blank page target and return a Tab for it."""
        client = self._require_root().client

        async def create() -> TargetID:
            created = await client.send.Target.createTarget(params={'url': 'about:blank'})
            return created['targetId']

        target_id = await self._run('create new tab', create(), timeout)
        await self._dispatch(TabCreatedEvent(target_id=target_id))
        return self.open_tab(target_id)

    async def open_new_incognito_tab(self, timeout: float = DEFAULT_TIMEOUT) -> Tab:
        """Create a blank page in a fresh, isolated browser context.

        Both steps share one deadline; the first failure is returned.
        """
        client = self._require_root().client

        async def create() -> tuple[str, TargetID]:
            context = await self._step(
                'create browser context for new incognito tab',
                client.send.Target.createBrowserContext(),
            )
            context_id = context['browserContextId']
            created = await self._step(
                'create new incognito tab',
                client.send.Target.createTarget(params={'url': 'about:blank', 'browserContextId': context_id}),
            )
            return context_id, created['targetId']

        context_id, target_id = await self._run('create new incognito tab', create(), timeout)
        await self._dispatch(
            TabCreatedEvent(target_id=target_id, incognito=True, browser_context_id=context_id)
        )
        return self.open_tab(target_id)

    async def close_tab(self, tab: Tab, timeout: float = DEFAULT_TIMEOUT) -> None:
        """Close ``tab``'s target and drop the tab's own connection.

        Other tabs are left untouched.
        """
        client = self._require_root().client
        target_id = tab.get_target_id()

        await self._run('close tab', client.send.Target.closeTarget(params={'targetId': target_id}), timeout)
        await tab.disconnect()
        await self._dispatch(TabClosedEvent(target_id=target_id))

    async def get_targets(self, timeout: float = DEFAULT_TIMEOUT) -> list[TargetInfo]:
        """List the live targets the browser reports."""
        client = self._require_root().client
        result = await self._run('get targets', client.send.Target.getTargets(), timeout)
        return [TargetInfo.model_validate(raw) for raw in result.get('targetInfos', [])]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_root(self) -> ProtocolSession:
        if self._root is None:
            raise BrowserNotLaunchedError('Browser is not connected. Call launch() first.')
        return self._root

    async def _step(self, step: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except BrowserError:
            raise
        except Exception as e:
            logger.error(f'Unable to {step}: {e}')
            raise OperationError(f'Unable to {step}: {type(e).__name__}: {e}', step=step) from e

    async def _run(self, step: str, awaitable: Awaitable[T], timeout: float) -> T:
        try:
            return await asyncio.wait_for(self._step(step, awaitable), timeout=timeout)
        except BrowserError as e:
            await self._dispatch_error(e)
            raise
        except asyncio.TimeoutError as e:
            logger.error(f'{step} timed out after {timeout}s')
            error = OperationTimeoutError(f'{step} timed out after {timeout}s', step=step)
            await self._dispatch_error(error)
            raise error from e

    async def _dispatch(self, event: BaseEvent) -> None:
        self._bus_started = True
        await self.event_bus.dispatch(event)

    async def _dispatch_error(self, error: BrowserError) -> None:
        await self._dispatch(
            BrowserErrorEvent(
                error_type=type(error).__name__,
                stage=error.stage,
                message=error.message,
                details=error.details or {},
            )
        )

    async def __aenter__(self) -> 'Browser':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.terminate()
