"""
Browser module for Gnezdo.

Provides stealthy browser automation built on top of Playwright (Chromium
persistent contexts) and Camoufox (a hardened Firefox fork).  Key
capabilities:

- **BrowserManager** – lifecycle of the single browser session, with a wiped
  profile directory for every launch.
- **PlaywrightChannel** – the browser-control channel; translates Playwright
  failures into the ``core.errors`` taxonomy.
- **StealthHub** – installs fingerprint-evasion payloads and dismisses the
  location consent prompt.
- **Humanizer** – human-paced typing, scrolling and keep-alive pauses.

Submodules:
    instance: ``BrowserManager`` class.
    channel: ``ControlChannel`` protocol, ``PlaywrightChannel``,
        ``BrowserSession`` and ``LaunchOptions``.
    stealth_hub: ``StealthHub``, ``EvasionReport`` and ``PromptWatcher``.
    stealth_scripts: Raw JS payloads installed by ``StealthHub``.
    humanizer: ``Humanizer`` timing engine.
"""

from .channel import BrowserSession, ControlChannel, PlaywrightChannel
from .humanizer import Humanizer
from .instance import BrowserManager
from .stealth_hub import EvasionReport, StealthHub

__all__ = [
    "BrowserManager",
    "BrowserSession",
    "ControlChannel",
    "EvasionReport",
    "Humanizer",
    "PlaywrightChannel",
    "StealthHub",
]
