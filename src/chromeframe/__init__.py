"""chromeframe - launch a Chromium-based browser and drive its tabs over CDP."""

__version__ = "0.1.0"

from chromeframe.browser.connector import ClientHook, ProtocolSession, RetryPolicy, SessionConnector
from chromeframe.browser.process import BrowserProcess
from chromeframe.browser.profile import LaunchOptions, ScreenshotOptions, build_launch_args
from chromeframe.browser.session import Browser
from chromeframe.browser.tab import Tab, TabState
from chromeframe.browser.views import (
    BrowserError,
    BrowserLaunchError,
    BrowserNotLaunchedError,
    HandshakeError,
    HookError,
    OperationError,
    OperationTimeoutError,
    TabConnectError,
)
from chromeframe.logging_config import setup_logging

__all__ = [
    "Browser",
    "BrowserError",
    "BrowserLaunchError",
    "BrowserNotLaunchedError",
    "BrowserProcess",
    "ClientHook",
    "HandshakeError",
    "HookError",
    "LaunchOptions",
    "OperationError",
    "OperationTimeoutError",
    "ProtocolSession",
    "RetryPolicy",
    "ScreenshotOptions",
    "SessionConnector",
    "Tab",
    "TabConnectError",
    "TabState",
    "build_launch_args",
    "setup_logging",
]
