"""
Tests for browser stealth scripts module.
"""

import json

import pytest

from browser.stealth_scripts import (
    CHROME_RUNTIME_STUB,
    GEOLOCATION_DENIAL,
    NOTIFICATION_PERMISSION,
    PLUGINS_SPOOF,
    PROMPT_BUTTON_TEXTS,
    PROMPT_HIDE_CSS,
    PROMPT_SELECTORS,
    TOSTRING_TRAP,
    WEBDRIVER_REMOVAL,
    get_prompt_watcher_script,
    get_stealth_payloads,
)
from browser.channel import user_agent_override
from core.config import IdentitySettings, TimingSettings


class TestStealthPayloads:
    """Tests for payload composition."""

    def test_payload_order(self):
        names = [name for name, _ in get_stealth_payloads(
            IdentitySettings(), TimingSettings(),
        )]
        assert names[0] == "webdriver"
        assert names.index("plugins") < names.index("notification_permission")
        assert names.index("geolocation_denial") < names.index("prompt_watcher")
        assert names[-1] == "prompt_watcher"
        assert len(names) == len(set(names))

    def test_identity_values_are_injected(self):
        identity = IdentitySettings(
            languages=["de-DE", "de"],
            hardware_concurrency=6,
            device_memory=4,
            webgl_vendor="Vendor 'Q'",
        )
        payloads = dict(get_stealth_payloads(identity, TimingSettings()))

        assert '["de-DE", "de"]' in payloads["languages"]
        assert "get: () => 6" in payloads["hardware"]
        assert "get: () => 4" in payloads["hardware"]
        # Quotes survive JSON encoding
        assert json.dumps("Vendor 'Q'") in payloads["webgl"]
        assert "37445" in payloads["webgl"]

    def test_no_template_placeholders_left(self):
        for name, script in get_stealth_payloads(
            IdentitySettings(), TimingSettings(),
        ):
            assert "$" not in script, name

    def test_webdriver_hidden(self):
        assert "'webdriver'" in WEBDRIVER_REMOVAL
        assert "undefined" in WEBDRIVER_REMOVAL

    def test_chrome_runtime_stub(self):
        assert "window.chrome" in CHROME_RUNTIME_STUB
        assert "loadTimes" in CHROME_RUNTIME_STUB

    def test_tostring_trap_reports_native_code(self):
        assert "[native code]" in TOSTRING_TRAP
        assert "new Proxy" in TOSTRING_TRAP

    def test_plugins_and_mimetypes(self):
        assert "Chrome PDF Plugin" in PLUGINS_SPOOF
        assert "mimeTypes.length = 4" in PLUGINS_SPOOF

    def test_permission_overrides(self):
        assert "Notification.permission" in NOTIFICATION_PERMISSION
        assert "'denied'" in GEOLOCATION_DENIAL
        assert "getCurrentPosition" in GEOLOCATION_DENIAL


class TestPromptWatcherScript:
    """Tests for the prompt watcher payload."""

    def test_cadence_is_configurable(self):
        timing = TimingSettings(
            prompt_debounce_ms=250,
            prompt_poll_ms=900,
            prompt_watch_lifetime_ms=5000,
        )
        script = get_prompt_watcher_script(timing)

        assert "const DEBOUNCE_MS = 250;" in script
        assert "const POLL_MS = 900;" in script
        assert "const LIFETIME_MS = 5000;" in script

    def test_dismissal_priority(self):
        script = get_prompt_watcher_script(TimingSettings())

        later = script.index("SELECTORS.laterButton")
        close = script.index("SELECTORS.closeButton")
        text = script.index("BUTTON_TEXTS.includes")
        assert later < close < text
        assert "SELECTORS.lightbox" in script

    def test_selectors_and_texts_embedded(self):
        script = get_prompt_watcher_script(TimingSettings())

        assert json.dumps(PROMPT_SELECTORS, ensure_ascii=False) in script
        assert json.dumps(PROMPT_BUTTON_TEXTS, ensure_ascii=False) in script
        assert "後で" in script

    @pytest.mark.parametrize("trigger", [
        "MutationObserver",
        "setInterval(dismiss, POLL_MS)",
        "'visibilitychange'",
        "'focus'",
        "'keydown'",
    ])
    def test_rearm_triggers(self, trigger):
        assert trigger in get_prompt_watcher_script(TimingSettings())

    def test_bounded_lifetime(self):
        script = get_prompt_watcher_script(TimingSettings())
        assert "listen(window, 'pagehide', stop)" in script
        assert "observer.disconnect()" in script
        assert "window.__gnezdoPromptWatcher = state" in script

    def test_hide_css_covers_lightbox(self):
        assert 'div.gTMtLb[id="lb"]' in PROMPT_HIDE_CSS
        assert "display: none !important" in PROMPT_HIDE_CSS


class TestUserAgentOverride:
    """Tests for the DevTools identity override parameters."""

    def test_metadata(self):
        params = user_agent_override(IdentitySettings())
        metadata = params["userAgentMetadata"]

        assert params["acceptLanguage"].startswith("ja-JP")
        assert params["platform"] == "Win32"
        assert metadata["platform"] == "Windows"
        assert metadata["bitness"] == "64"
        assert metadata["fullVersion"] == "143.0.7499.41"
        assert {"brand": "Google Chrome", "version": "143"} in metadata["brands"]
        assert metadata["mobile"] is False
