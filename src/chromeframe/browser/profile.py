"""Launch and capture options for a Chromium-based browser."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_DEBUG_PORT = 9222
DEFAULT_HOST = '127.0.0.1'

DEFAULT_SCREENSHOT_WIDTH = 800
DEFAULT_DEVICE_SCALE_FACTOR = 1.0
DEFAULT_NAVIGATION_SETTLE_DELAY = 5.0


def _default_launch_args(port: int) -> list[str]:
    return [
        '--disable-background-networking',
        '--disable-backgrounding-occluded-windows',
        '--disable-background-timer-throttling',
        '--disable-breakpad',
        '--disable-client-side-phishing-detection',
        '--disable-default-apps',
        '--disable-dev-shm-usage',
        '--disable-extensions',
        '--disable-features=site-per-process,TranslateUI',
        '--disable-gpu',
        '--disable-hang-monitor',
        '--disable-infobars',
        '--disable-ipc-flooding-protection',
        '--disable-popup-blocking',
        '--disable-prompt-on-repost',
        '--disable-renderer-backgrounding',
        '--disable-sync',
        '--disable-translate',
        '--enable-features=NetworkService,NetworkServiceInProcess',
        '--enable-automation',
        '--force-color-profile=srgb',
        '--hide-scrollbars',
        '--ignore-certificate-errors',
        '--metrics-recording-only',
        '--mute-audio',
        '--no-first-run',
        '--no-sandbox',
        '--password-store=basic',
        f'--remote-debugging-port={port}',
        '--safebrowsing-disable-auto-update',
        '--use-mock-keychain',
    ]


DEFAULT_LAUNCH_ARGS: tuple[str, ...] = tuple(_default_launch_args(DEFAULT_DEBUG_PORT))


class LaunchOptions(BaseModel):
    """Browser launch configuration.

    Values are immutable: ``with_arguments`` and ``model_copy(update=...)``
    return new instances, so a configuration shared between callers is never
    changed behind their back.

    Example:
        >>> opts = LaunchOptions(path='/usr/bin/chromium', port=9333)
        >>> opts = opts.with_arguments('--window-size=1280,720')
        >>> build_launch_args(opts)[-1]
        '--headless'
    """

    model_config = ConfigDict(frozen=True, extra='forbid')

    path: str | Path = Field(description='Path to the browser executable')
    port: int | None = Field(
        default=None,
        ge=1,
        le=65535,
        description='Remote debugging port. Defaults to 9222 when unset.',
    )
    arguments: tuple[str, ...] = Field(default=(), description='Extra CLI args appended after the defaults')
    headless: bool = Field(default=True, description='Whether to run the browser without a window')
    host: str = Field(default=DEFAULT_HOST, description='Host the debugging endpoint listens on')
    connect_timeout: float = Field(
        default=120.0,
        gt=0,
        description='Deadline in seconds for the initial debugging handshake',
    )
    navigation_settle_delay: float = Field(
        default=DEFAULT_NAVIGATION_SETTLE_DELAY,
        ge=0,
        description='Seconds to wait after DOMContentLoaded so client-side rendering can catch up',
    )

    @property
    def resolved_port(self) -> int:
        return self.port if self.port is not None else DEFAULT_DEBUG_PORT

    def with_arguments(self, *arguments: str) -> 'LaunchOptions':
        """Return a copy with ``arguments`` appended to the extra args."""
        return self.model_copy(update={'arguments': self.arguments + tuple(arguments)})


def build_launch_args(options: LaunchOptions) -> list[str]:
    """Get the full list of browser CLI args for ``options``.

    Default flags first (with the resolved debug port), then the caller's
    extra args in order, then ``--headless`` if requested.
    """
    args = _default_launch_args(options.resolved_port)
    args.extend(options.arguments)
    if options.headless:
        args.append('--headless')
    return args


class ScreenshotOptions(BaseModel):
    """Viewport parameters for a screenshot.

    Zero values mean "use the default": 800px wide, as tall as the page body,
    scale factor 1.0.
    """

    model_config = ConfigDict(frozen=True, extra='forbid')

    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)
    device_scale_factor: float = Field(default=0.0, ge=0)
    mobile: bool = False


def resolve_screenshot_options(options: ScreenshotOptions, body_height: int) -> ScreenshotOptions:
    """Fill zero-valued fields of ``options`` from the defaults.

    Args:
        options: Caller supplied options, left untouched
        body_height: Height of the page body box model, used when height is 0

    Returns:
        A new ScreenshotOptions with every numeric field set.
    """
    return ScreenshotOptions(
        width=options.width or DEFAULT_SCREENSHOT_WIDTH,
        height=options.height or body_height,
        device_scale_factor=options.device_scale_factor or DEFAULT_DEVICE_SCALE_FACTOR,
        mobile=options.mobile,
    )
