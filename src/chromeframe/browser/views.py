"""Browser view models and error types."""

from typing import Any

from cdp_use.cdp.target import TargetID
from pydantic import BaseModel, ConfigDict, Field


class TargetInfo(BaseModel):
    """A live target as reported by Target.getTargets."""

    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    target_id: TargetID = Field(alias='targetId')
    type: str
    title: str = ''
    url: str = ''
    attached: bool = False
    browser_context_id: str | None = Field(default=None, alias='browserContextId')


class BrowserError(Exception):
    """Base error for everything the browser control plane raises.

    Each subclass names the stage that failed (launch, handshake, connect,
    operation or timeout) so callers can tell them apart without parsing
    messages. The underlying exception, when there is one, is chained via
    ``raise ... from``.
    """

    stage: str = 'browser'

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize a BrowserError.

        Args:
            message: Technical error message for logging and debugging
            details: Additional metadata for debugging (port, target id, ...)
        """
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f'{self.message} ({self.details})'
        return self.message


class BrowserLaunchError(BrowserError):
    """The browser process could not be started."""

    stage = 'launch'


class BrowserNotLaunchedError(BrowserError):
    """An operation needed the top-level session before launch() succeeded."""

    stage = 'launch'


class HandshakeError(BrowserError):
    """The initial debugging handshake failed on every attempt."""

    stage = 'handshake'

    def __init__(self, message: str, attempts: int, details: dict[str, Any] | None = None):
        self.attempts = attempts
        super().__init__(message, details)


class TabConnectError(BrowserError):
    """A per-tab connection could not be established."""

    stage = 'connect'


class HookError(TabConnectError):
    """A connection hook failed; later hooks were not run."""

    def __init__(self, message: str, hook: Any = None, details: dict[str, Any] | None = None):
        self.hook = hook
        super().__init__(message, details)


class OperationError(BrowserError):
    """A protocol call failed in the middle of a tab or browser operation."""

    stage = 'operation'

    def __init__(self, message: str, step: str | None = None, details: dict[str, Any] | None = None):
        self.step = step
        super().__init__(message, details)


class OperationTimeoutError(OperationError, TimeoutError):
    """The operation's deadline elapsed before it finished."""

    stage = 'timeout'
