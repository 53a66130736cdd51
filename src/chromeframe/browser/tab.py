"""Logical handle to one browser target.

A Tab owns its own protocol connection to ``ws://<host>:<port>/devtools/page/<id>``.
The connection is established lazily by the first operation (or explicitly via
``connect``), hooks run on every (re)connection, and a dropped connection puts
the tab back into ``UNCONNECTED`` so the next operation reconnects.

State machine:

    UNCONNECTED --connect--> CONNECTING --ok--> CONNECTED
         ^                        |                 |
         +-------- failure -------+   disconnect / connection lost
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

from cdp_use.cdp.target import TargetID
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from websockets.exceptions import ConnectionClosed

from chromeframe.browser.connector import (
    ClientFactory,
    ClientHook,
    ProtocolSession,
    SessionConnector,
    connect_cdp_client,
)
from chromeframe.browser.profile import (
    DEFAULT_DEBUG_PORT,
    DEFAULT_HOST,
    DEFAULT_NAVIGATION_SETTLE_DELAY,
    ScreenshotOptions,
    resolve_screenshot_options,
)
from chromeframe.browser.views import BrowserError, OperationError, OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_TIMEOUT = 30.0

_CONNECTION_LOST = (ConnectionError, ConnectionClosed)


class TabState(str, Enum):
    UNCONNECTED = 'unconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'


class Tab(BaseModel):
    """A browser target and its (lazily established) protocol connection.

    The target id is fixed for the life of the Tab; host and port are plain
    values copied from the browser that created it. Operations on different
    tabs share nothing and can run in parallel. Operations on the same tab
    are not serialized.

    Attributes:
        target_id: CDP target id this tab is bound to.
        host: Host of the browser's debugging endpoint.
        port: Remote debugging port of the browser.
        navigation_settle_delay: Seconds to wait after DOMContentLoaded.

    Example:
        >>> tab = Tab(target_id='7D1A...', port=9222)
        >>> tab.attach_hook(lambda client: client.send.Network.enable())
        >>> await tab.navigate('https://example.com', timeout=30)
        >>> html = await tab.get_html(timeout=10)
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True, extra='forbid', revalidate_instances='never')

    target_id: TargetID
    host: str = DEFAULT_HOST
    port: int = DEFAULT_DEBUG_PORT
    navigation_settle_delay: float = Field(default=DEFAULT_NAVIGATION_SETTLE_DELAY, ge=0)
    client_factory: ClientFactory = Field(default=connect_cdp_client, exclude=True, repr=False)

    _session: ProtocolSession | None = PrivateAttr(default=None)
    _state: TabState = PrivateAttr(default=TabState.UNCONNECTED)
    _hooks: list[ClientHook] = PrivateAttr(default_factory=list)
    _connect_lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)

    @property
    def state(self) -> TabState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is TabState.CONNECTED

    @property
    def hooks(self) -> tuple[ClientHook, ...]:
        return tuple(self._hooks)

    def get_target_id(self) -> TargetID:
        return self.target_id

    def attach_hook(self, hook: ClientHook) -> None:
        """Register a callback to run against the client on every (re)connection.

        Hooks run in registration order. An already established connection is
        not affected until the tab reconnects.
        """
        self._hooks.append(hook)

    # ------------------------------------------------------------------
    # Connection state
    # ------------------------------------------------------------------

    async def connect(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        """Connect to the target and run hooks; no-op if already connected.

        Raises:
            TabConnectError: If the websocket could not be dialed.
            HookError: If a hook failed.
            OperationTimeoutError: If ``timeout`` elapsed first.
        """
        try:
            await asyncio.wait_for(self._ensure_connected(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(
                f'Connecting to target {self.target_id} timed out after {timeout}s',
                step='connect',
                details={'target_id': self.target_id},
            ) from e

    async def disconnect(self) -> None:
        """Close the connection and return to UNCONNECTED. Idempotent."""
        session, self._session = self._session, None
        self._state = TabState.UNCONNECTED
        if session is not None:
            logger.debug(f'Disconnecting from target {self.target_id}')
            await session.close()

    async def _ensure_connected(self) -> Any:
        async with self._connect_lock:
            if self._session is not None:
                return self._session.client

            self._state = TabState.CONNECTING
            connector = SessionConnector(host=self.host, port=self.port, client_factory=self.client_factory)
            try:
                session = await connector.connect_page(self.target_id, hooks=list(self._hooks))
            except BaseException:
                self._state = TabState.UNCONNECTED
                raise

            self._session = session
            self._state = TabState.CONNECTED
            logger.debug(f'Connected to target {self.target_id}')
            return session.client

    async def _run(self, step: str, operation: Callable[[Any], Awaitable[T]], timeout: float) -> T:
        """Run ``operation`` against a connected client under one deadline.

        A connection opened by a failed operation is released again, and a
        connection found to be dead is dropped so the next call reconnects.
        """

        async def connected_operation() -> T:
            client = await self._ensure_connected()
            return await operation(client)

        opened_here = self._session is None
        try:
            return await asyncio.wait_for(connected_operation(), timeout=timeout)
        except BrowserError:
            if opened_here:
                await self.disconnect()
            raise
        except asyncio.TimeoutError as e:
            if opened_here:
                await self.disconnect()
            logger.error(f'{step} on target {self.target_id} timed out after {timeout}s')
            raise OperationTimeoutError(
                f'{step} timed out after {timeout}s',
                step=step,
                details={'target_id': self.target_id},
            ) from e
        except _CONNECTION_LOST as e:
            await self.disconnect()
            raise OperationError(
                f'Connection to target lost during {step}: {e}',
                step=step,
                details={'target_id': self.target_id},
            ) from e
        except Exception as e:
            if opened_here:
                await self.disconnect()
            raise OperationError(
                f'{step} failed: {type(e).__name__}: {e}',
                step=step,
                details={'target_id': self.target_id},
            ) from e

    async def _call(self, step: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except _CONNECTION_LOST:
            raise
        except Exception as e:
            logger.error(f'Unable to {step} on target {self.target_id}: {e}')
            raise OperationError(
                f'Unable to {step}: {type(e).__name__}: {e}',
                step=step,
                details={'target_id': self.target_id},
            ) from e

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def navigate(self, url: str, timeout: float = DEFAULT_TIMEOUT) -> bool:
        """Navigate to ``url`` and wait for DOMContentLoaded.

        After the event fires the tab waits ``navigation_settle_delay``
        seconds so client-side rendering can catch up.

        Args:
            url: Address to load.
            timeout: Deadline in seconds for connecting, the navigate call and
                the DOMContentLoaded wait. It does not include the settle
                delay, so the call may take up to
                ``timeout + navigation_settle_delay`` seconds.

        Returns:
            True once the page has loaded.

        Raises:
            OperationError: If enabling the Page domain, the navigate call or
                the navigation itself failed.
            OperationTimeoutError: If the page did not load within ``timeout``.
        """

        async def operation(client: Any) -> dict[str, Any]:
            loaded: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

            def on_dom_content_event_fired(event: Any, session_id: str | None = None) -> None:
                if not loaded.done():
                    loaded.set_result(event)

            # subscribe before enabling page events so the event can't be missed
            client.register.Page.domContentEventFired(on_dom_content_event_fired)
            await self._call('enable page domain', client.send.Page.enable())

            nav = await self._call('navigate', client.send.Page.navigate(params={'url': url}))
            if nav.get('errorText'):
                raise OperationError(
                    f'Navigation to {url} failed: {nav["errorText"]}',
                    step='navigate',
                    details={'target_id': self.target_id},
                )

            await loaded
            return nav

        nav = await self._run('navigate', operation, timeout)

        if self.navigation_settle_delay:
            await asyncio.sleep(self.navigation_settle_delay)

        logger.info(f'Page loaded with frame ID: {nav.get("frameId")}')
        return True

    async def get_html(self, timeout: float = DEFAULT_TIMEOUT) -> str:
        """Return the outer HTML of the document root."""

        async def operation(client: Any) -> str:
            doc = await self._call('get DOM root node', client.send.DOM.getDocument())
            result = await self._call(
                'get outer html',
                client.send.DOM.getOuterHTML(params={'nodeId': doc['root']['nodeId']}),
            )
            return result['outerHTML']

        return await self._run('get html', operation, timeout)

    async def capture_screenshot(
        self,
        options: ScreenshotOptions | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> str:
        """Capture a PNG of the page as a ``data:image/png;base64,...`` URL.

        Zero-valued options are filled in from defaults, with the height
        taken from the body's box model. A failed device metrics override is
        logged and the capture continues with the current viewport.
        """
        options = options or ScreenshotOptions()

        async def operation(client: Any) -> str:
            doc = await self._call('get DOM root node', client.send.DOM.getDocument())
            body = await self._call(
                'find body element',
                client.send.DOM.querySelector(params={'nodeId': doc['root']['nodeId'], 'selector': 'body'}),
            )
            box = await self._call(
                'get body box model',
                client.send.DOM.getBoxModel(params={'nodeId': body['nodeId']}),
            )

            viewport = resolve_screenshot_options(options, body_height=box['model']['height'])
            try:
                await client.send.Emulation.setDeviceMetricsOverride(
                    params={
                        'width': viewport.width,
                        'height': viewport.height,
                        'deviceScaleFactor': viewport.device_scale_factor,
                        'mobile': viewport.mobile,
                    }
                )
            except _CONNECTION_LOST:
                raise
            except Exception as e:
                logger.warning(f'Unable to override device metrics on target {self.target_id}, capturing anyway: {e}')

            screenshot = await self._call(
                'capture screenshot',
                client.send.Page.captureScreenshot(params={'format': 'png'}),
            )
            return f'data:image/png;base64,{screenshot["data"]}'

        return await self._run('capture screenshot', operation, timeout)

    async def exec(self, script: str, timeout: float = DEFAULT_TIMEOUT) -> dict[str, Any]:
        """Evaluate ``script`` in the page.

        Promises are awaited and results returned by value. The raw
        Runtime.evaluate reply is returned as is, including
        ``exceptionDetails`` when the script threw.
        """

        async def operation(client: Any) -> dict[str, Any]:
            return await self._call(
                'evaluate script',
                client.send.Runtime.evaluate(
                    params={'expression': script, 'awaitPromise': True, 'returnByValue': True}
                ),
            )

        return await self._run('exec', operation, timeout)
