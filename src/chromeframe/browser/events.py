"""Lifecycle events dispatched on the browser's event bus."""

import os
from typing import Any

from bubus import BaseEvent
from cdp_use.cdp.target import TargetID
from pydantic import Field


def _get_timeout(env_var: str, default: float) -> float | None:
    """Parse an event timeout override from the environment.

    Args:
        env_var: Environment variable name (e.g. 'TIMEOUT_TabCreatedEvent')
        default: Default timeout value as float (e.g. 10.0)

    Returns:
        Parsed float value or the default if parsing fails
    """
    env_value = os.getenv(env_var)
    if env_value:
        try:
            parsed = float(env_value)
            if parsed < 0:
                return default
            return parsed
        except (ValueError, TypeError):
            pass

    return default


# ============================================================================
# Browser Lifecycle Events
# ============================================================================


class BrowserLaunchedEvent(BaseEvent[None]):
    """Browser process is running and the top-level session is connected."""

    pid: int | None = None
    port: int
    ws_url: str

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserLaunchedEvent', 10.0)


class BrowserTerminatedEvent(BaseEvent[None]):
    """Browser process was killed (or was never started)."""

    pid: int | None = None
    returncode: int | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserTerminatedEvent', 10.0)


# ============================================================================
# Tab Management Events
# ============================================================================


class TabCreatedEvent(BaseEvent[None]):
    """A new target was created (or discovered at launch)."""

    target_id: TargetID
    url: str = 'about:blank'
    incognito: bool = False
    browser_context_id: str | None = Field(default=None, description='Set for tabs in an isolated context')

    event_timeout: float | None = _get_timeout('TIMEOUT_TabCreatedEvent', 10.0)


class TabClosedEvent(BaseEvent[None]):
    """A target was closed through the top-level session."""

    target_id: TargetID

    event_timeout: float | None = _get_timeout('TIMEOUT_TabClosedEvent', 10.0)


# ============================================================================
# Error Events
# ============================================================================


class BrowserErrorEvent(BaseEvent[None]):
    """A facade-level operation failed."""

    error_type: str
    stage: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserErrorEvent', 10.0)
