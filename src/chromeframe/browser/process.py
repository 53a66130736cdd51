"""Local browser subprocess lifecycle.

This module provides BrowserProcess, which launches a Chromium-based browser
with remote debugging enabled, reports its liveness and kills it (together
with its renderer/helper children) on request.

Classes:
    BrowserProcess: Owns one browser subprocess for its whole life.
"""

import asyncio
import logging

import psutil
from pydantic import BaseModel, ConfigDict, PrivateAttr

from chromeframe.browser.profile import LaunchOptions, build_launch_args
from chromeframe.browser.views import BrowserLaunchError

logger = logging.getLogger(__name__)


class BrowserProcess(BaseModel):
    """A single browser subprocess.

    A BrowserProcess starts at most once. After it has been terminated a new
    instance is needed to run the browser again.

    Example:
        >>> process = BrowserProcess()
        >>> await process.start(LaunchOptions(path='/usr/bin/chromium'))
        >>> process.port
        9222
        >>> await process.terminate()
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, extra='forbid', revalidate_instances='never')

    _process: asyncio.subprocess.Process | None = PrivateAttr(default=None)
    _port: int | None = PrivateAttr(default=None)
    _args: list[str] = PrivateAttr(default_factory=list)
    _terminated: bool = PrivateAttr(default=False)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def port(self) -> int | None:
        """Debug port the process was launched with, None before start()."""
        return self._port

    @property
    def args(self) -> list[str]:
        return list(self._args)

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    @property
    def started(self) -> bool:
        return self._process is not None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self, options: LaunchOptions) -> None:
        """Spawn the browser.

        Args:
            options: Launch configuration; the debug port is resolved from it.

        Raises:
            BrowserLaunchError: If the process was already started or
                terminated, or the OS refused to spawn it.
        """
        if self._terminated:
            raise BrowserLaunchError('Browser process was terminated and cannot be restarted')
        if self._process is not None:
            raise BrowserLaunchError('Browser process already started', details={'pid': self._process.pid})

        args = build_launch_args(options)
        port = options.resolved_port
        logger.info(f'Starting browser {options.path} on debug port {port}')
        logger.debug(f'Browser launch args: {args}')

        try:
            process = await asyncio.create_subprocess_exec(
                str(options.path),
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.error(f'Unable to launch browser {options.path}: {type(e).__name__}: {e}')
            raise BrowserLaunchError(
                f'Unable to launch browser: {e}',
                details={'path': str(options.path), 'port': port},
            ) from e

        self._process = process
        self._port = port
        self._args = args
        logger.info(f'Browser process started with PID {process.pid}')

    async def wait(self) -> int | None:
        """Block until the process exits.

        A non-zero exit is logged, not raised.

        Returns:
            The exit code, or None if the process was never started.
        """
        if self._process is None:
            return None

        returncode = await self._process.wait()
        if returncode != 0:
            logger.warning(f'Browser process {self._process.pid} exited prematurely with code {returncode}')
        else:
            logger.debug(f'Browser process {self._process.pid} exited')
        return returncode

    async def terminate(self) -> None:
        """Force-kill the browser and its child processes.

        Safe to call more than once, and a no-op if the process never started.
        """
        process = self._process
        if process is None:
            logger.debug('No browser process to terminate')
            return

        self._terminated = True
        if process.returncode is not None:
            return

        logger.info(f'Killing browser process (PID {process.pid})')
        self._kill_children(process.pid)
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()

    @staticmethod
    def _kill_children(pid: int) -> None:
        try:
            children = psutil.Process(pid).children(recursive=True)
        except psutil.NoSuchProcess:
            return

        for child in children:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied as e:
                logger.warning(f'Unable to kill browser child process {child.pid}: {e}')
