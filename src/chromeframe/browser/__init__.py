"""Browser module for process, session and tab lifecycle."""

from chromeframe.browser.session import Browser
from chromeframe.browser.tab import Tab, TabState

__all__ = ["Browser", "Tab", "TabState"]
