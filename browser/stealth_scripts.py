"""
Browser fingerprint-evasion and prompt-suppression scripts.

These scripts are registered with ``context.add_init_script()`` so that they
run before any page script on every document of the session.  They are kept
as separate payloads (instead of one blob) so a failure to install one of
them is reported by name and does not take the others down.

Coverage:
- navigator.webdriver removal
- window.chrome runtime stub
- Notification permission query consistency
- plugins / mimeTypes, languages, hardwareConcurrency, deviceMemory
- WebGL vendor / renderer
- Brave / Firefox marker removal
- Function.prototype.toString introspection trap
- CSS suppression of the location consent prompt
- Geolocation API neutralisation (permission state always "denied")
- Prompt watcher: detects and dismisses the location consent prompt
"""

import json
from string import Template
from typing import List, Tuple

from core.config import IdentitySettings, TimingSettings

# ============================================================================
# 1. AUTOMATION MARKERS
# ============================================================================
WEBDRIVER_REMOVAL = """
Object.defineProperty(navigator, 'webdriver', {
    get: () => undefined,
    configurable: true
});
"""

CHROME_RUNTIME_STUB = """
window.chrome = {
    runtime: {
        connect: function() {},
        sendMessage: function() {},
        onMessage: { addListener: function() {} },
        onConnect: { addListener: function() {} },
        PlatformOs: { MAC: 'mac', WIN: 'win', ANDROID: 'android', CROS: 'cros', LINUX: 'linux', OPENBSD: 'openbsd' },
        PlatformArch: { ARM: 'arm', X86_32: 'x86-32', X86_64: 'x86-64', MIPS: 'mips', MIPS64: 'mips64' },
        PlatformNaclArch: { ARM: 'arm', X86_32: 'x86-32', X86_64: 'x86-64', MIPS: 'mips', MIPS64: 'mips64' },
        RequestUpdateCheckStatus: { THROTTLED: 'throttled', NO_UPDATE: 'no_update', UPDATE_AVAILABLE: 'update_available' },
        OnInstalledReason: { INSTALL: 'install', UPDATE: 'update', CHROME_UPDATE: 'chrome_update', SHARED_MODULE_UPDATE: 'shared_module_update' },
        OnRestartRequiredReason: { APP_UPDATE: 'app_update', OS_UPDATE: 'os_update', PERIODIC: 'periodic' }
    },
    csi: function() { return {}; },
    loadTimes: function() { return {}; }
};
"""

NOTIFICATION_PERMISSION = """
(function() {
    const originalQuery = window.navigator.permissions.query;
    window.navigator.permissions.query = (parameters) => (
        parameters.name === 'notifications' ?
            Promise.resolve({ state: Notification.permission }) :
            originalQuery.call(window.navigator.permissions, parameters)
    );
})();
"""

BROWSER_MARKER_REMOVAL = """
Object.defineProperty(navigator, 'brave', { get: () => undefined });
delete window.InstallTrigger;
"""

TOSTRING_TRAP = """
(function() {
    const nativeToString = Function.prototype.toString;
    const customFunctions = new WeakSet();
    const proxyHandler = {
        apply: function(target, thisArg, args) {
            if (customFunctions.has(thisArg)) return 'function () { [native code] }';
            return nativeToString.apply(thisArg, args);
        }
    };
    Function.prototype.toString = new Proxy(nativeToString, proxyHandler);
    customFunctions.add(Function.prototype.toString);
})();
"""

# ============================================================================
# 2. HARDWARE / LOCALE NORMALISATION
# ============================================================================
PLUGINS_SPOOF = """
Object.defineProperty(navigator, 'plugins', {
    get: () => {
        const plugins = [
            { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer', description: 'Portable Document Format' },
            { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai', description: '' },
            { name: 'Native Client', filename: 'internal-nacl-plugin', description: '' }
        ];
        plugins.length = 3;
        return plugins;
    }
});
Object.defineProperty(navigator, 'mimeTypes', {
    get: () => {
        const mimeTypes = [
            { type: 'application/pdf', suffixes: 'pdf', description: 'Portable Document Format' },
            { type: 'application/x-google-chrome-pdf', suffixes: 'pdf', description: 'Portable Document Format' },
            { type: 'application/x-nacl', suffixes: '', description: 'Native Client Executable' },
            { type: 'application/x-pnacl', suffixes: '', description: 'Portable Native Client Executable' }
        ];
        mimeTypes.length = 4;
        return mimeTypes;
    }
});
"""

LANGUAGES_SPOOF = Template("""
Object.defineProperty(navigator, 'languages', { get: () => $languages });
""")

HARDWARE_SPOOF = Template("""
Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => $cores });
Object.defineProperty(navigator, 'deviceMemory', { get: () => $memory });
""")

# 37445 = UNMASKED_VENDOR_WEBGL, 37446 = UNMASKED_RENDERER_WEBGL
WEBGL_SPOOF = Template("""
(function() {
    const patch = (proto) => {
        if (!proto) return;
        const getParameterOriginal = proto.getParameter;
        proto.getParameter = function(parameter) {
            if (parameter === 37445) return $vendor;
            if (parameter === 37446) return $renderer;
            return getParameterOriginal.call(this, parameter);
        };
    };
    patch(window.WebGLRenderingContext && WebGLRenderingContext.prototype);
    patch(window.WebGL2RenderingContext && WebGL2RenderingContext.prototype);
})();
""")

# ============================================================================
# 3. LOCATION PROMPT SUPPRESSION
# ============================================================================
PROMPT_SELECTORS = {
    "dialog": 'div[role="dialog"][aria-labelledby="lcMwfd"]',
    "dialogAlt": 'div.qk7LXc.JHqNkc[role="dialog"]',
    "lightbox": "div.gTMtLb#lb",
    "laterButton": [
        'g-raised-button[jsaction="click:O6N1Pb"]',
        "div.mpQYc g-raised-button",
    ],
    "closeButton": 'a[aria-label="閉じる"]',
}

PROMPT_BUTTON_TEXTS = ["後で", "Later", "Not now"]

PROMPT_HIDE_CSS = """
(function() {
    const install = () => {
        const style = document.createElement('style');
        style.textContent = `
            div.gTMtLb[id="lb"],
            div[role="dialog"][aria-labelledby="lcMwfd"],
            div.qk7LXc.JHqNkc,
            update-location,
            location-snackbar-with-learn-more,
            div.kJFf0c.KUf18 {
                display: none !important;
                visibility: hidden !important;
                opacity: 0 !important;
                pointer-events: none !important;
            }
        `;
        (document.head || document.documentElement).appendChild(style);
    };
    if (document.documentElement) {
        install();
    } else {
        document.addEventListener('DOMContentLoaded', install);
    }
})();
"""

GEOLOCATION_DENIAL = """
(function() {
    if (navigator.geolocation) {
        navigator.geolocation.getCurrentPosition = function(success, error) {
            if (error) error({ code: 1, message: 'User denied Geolocation' });
        };
        navigator.geolocation.watchPosition = function(success, error) {
            if (error) error({ code: 1, message: 'User denied Geolocation' });
            return 0;
        };
        navigator.geolocation.clearWatch = function() {};
    }

    const origPermQuery = navigator.permissions.query.bind(navigator.permissions);
    navigator.permissions.query = function(descriptor) {
        if (descriptor && descriptor.name === 'geolocation') {
            return Promise.resolve({
                state: 'denied',
                onchange: null,
                addEventListener: function() {},
                removeEventListener: function() {}
            });
        }
        return origPermQuery(descriptor);
    };
})();
"""

# Installs window.__gnezdoPromptWatcher = {dismiss(), stop(), active}.
# Dismissal order: "later" button, close control, button text match; the
# lightbox container is removed afterwards.
PROMPT_WATCHER = Template("""
(function() {
    if (window.__gnezdoPromptWatcher) return;

    const SELECTORS = $selectors;
    const BUTTON_TEXTS = $texts;
    const DEBOUNCE_MS = $debounce_ms;
    const POLL_MS = $poll_ms;
    const LIFETIME_MS = $lifetime_ms;

    let lastDismissTime = 0;
    const timers = [];
    const listeners = [];

    const remove = () => {
        const lb = document.querySelector(SELECTORS.lightbox);
        if (lb) {
            lb.style.display = 'none';
            lb.remove();
        }
    };

    const visible = (el) => {
        const style = window.getComputedStyle(el);
        return !(style.display === 'none' ||
                 style.visibility === 'hidden' ||
                 parseFloat(style.opacity) === 0);
    };

    const dismiss = (force) => {
        const now = Date.now();
        if (force !== true && now - lastDismissTime < DEBOUNCE_MS) return false;
        lastDismissTime = now;

        const dialog = document.querySelector(SELECTORS.dialog) ||
                       document.querySelector(SELECTORS.dialogAlt);
        if (!dialog || !visible(dialog)) return false;

        for (const sel of SELECTORS.laterButton) {
            const btn = dialog.querySelector(sel) || document.querySelector(sel);
            if (btn) {
                btn.click();
                btn.dispatchEvent(new MouseEvent('click', { bubbles: true, cancelable: true }));
                setTimeout(remove, 50);
                return true;
            }
        }

        const close = document.querySelector(SELECTORS.closeButton);
        if (close) {
            close.click();
            setTimeout(remove, 50);
            return true;
        }

        const candidates = dialog.querySelectorAll('div[role="button"], button, g-raised-button');
        for (const b of candidates) {
            const text = (b.innerText || '').trim();
            if (BUTTON_TEXTS.includes(text)) {
                b.click();
                setTimeout(remove, 50);
                return true;
            }
        }
        return false;
    };

    const observer = new MutationObserver((mutations) => {
        for (const m of mutations) {
            if (m.type === 'childList' && m.addedNodes.length > 0) {
                dismiss();
                return;
            }
            if (m.type === 'attributes') {
                const t = m.target;
                if (t.id === 'lb' ||
                    (t.matches && t.matches('[role="dialog"]')) ||
                    (t.classList && t.classList.contains('gTMtLb'))) {
                    dismiss();
                    return;
                }
            }
        }
    });

    const listen = (target, event, handler, options) => {
        target.addEventListener(event, handler, options);
        listeners.push([target, event, handler, options]);
    };

    const state = { active: true, dismiss: dismiss, stop: null };

    const stop = () => {
        if (!state.active) return false;
        state.active = false;
        observer.disconnect();
        for (const id of timers) { clearTimeout(id); clearInterval(id); }
        for (const [target, event, handler, options] of listeners) {
            target.removeEventListener(event, handler, options);
        }
        return true;
    };
    state.stop = stop;

    const startObserver = () => {
        if (!state.active || !document.body) return;
        observer.observe(document.body, {
            childList: true,
            subtree: true,
            attributes: true,
            attributeFilter: ['style', 'class', 'aria-hidden', 'hidden']
        });
    };

    for (const delay of [300, 600, 1000]) {
        timers.push(setTimeout(dismiss, delay));
    }
    timers.push(setInterval(dismiss, POLL_MS));

    const deferred = () => { timers.push(setTimeout(dismiss, 50)); };
    for (const event of ['scroll', 'click', 'keydown', 'mousemove']) {
        listen(document, event, deferred, { passive: true, capture: true });
    }
    listen(window, 'focus', dismiss);
    listen(document, 'visibilitychange', () => {
        if (document.visibilityState === 'visible') dismiss();
    });
    listen(window, 'popstate', dismiss);
    listen(window, 'hashchange', dismiss);
    listen(window, 'pagehide', stop);

    let rafActive = true;
    const rafCheck = () => {
        if (!rafActive || !state.active) return;
        dismiss();
        timers.push(setTimeout(() => requestAnimationFrame(rafCheck), 200));
    };
    requestAnimationFrame(rafCheck);
    timers.push(setTimeout(() => { rafActive = false; }, LIFETIME_MS));

    if (document.body) {
        startObserver();
    } else {
        listen(document, 'DOMContentLoaded', () => {
            startObserver();
            dismiss();
        });
    }

    window.__gnezdoPromptWatcher = state;
})();
""")

# Returns true when a prompt was dismissed.  Bypasses the debounce window.
DISMISS_NOW = """
(() => {
    const w = window.__gnezdoPromptWatcher;
    return w ? Boolean(w.dismiss(true)) : false;
})()
"""

STOP_WATCHER = """
(() => {
    const w = window.__gnezdoPromptWatcher;
    return w ? Boolean(w.stop()) : false;
})()
"""

WATCHER_INSTALLED = "Boolean(window.__gnezdoPromptWatcher)"


def get_prompt_watcher_script(timing: TimingSettings) -> str:
    """Return the prompt watcher with the configured cadence filled in."""
    return PROMPT_WATCHER.substitute(
        selectors=json.dumps(PROMPT_SELECTORS, ensure_ascii=False),
        texts=json.dumps(PROMPT_BUTTON_TEXTS, ensure_ascii=False),
        debounce_ms=timing.prompt_debounce_ms,
        poll_ms=timing.prompt_poll_ms,
        lifetime_ms=timing.prompt_watch_lifetime_ms,
    )


def get_stealth_payloads(
    identity: IdentitySettings,
    timing: TimingSettings,
) -> List[Tuple[str, str]]:
    """
    Return the ordered ``(name, script)`` payloads for a fresh session.

    Order matters: automation markers first, then hardware/locale
    normalisation, then the permission overrides, and the prompt
    suppression layer last.

    Args:
        identity: Fingerprint values to present.
        timing: Source of the prompt watcher cadence.

    Returns:
        List of named JavaScript payloads.
    """
    return [
        ("webdriver", WEBDRIVER_REMOVAL),
        ("chrome_runtime", CHROME_RUNTIME_STUB),
        ("tostring_trap", TOSTRING_TRAP),
        ("browser_markers", BROWSER_MARKER_REMOVAL),
        ("plugins", PLUGINS_SPOOF),
        ("languages", LANGUAGES_SPOOF.substitute(
            languages=json.dumps(identity.languages),
        )),
        ("hardware", HARDWARE_SPOOF.substitute(
            cores=int(identity.hardware_concurrency),
            memory=int(identity.device_memory),
        )),
        ("webgl", WEBGL_SPOOF.substitute(
            vendor=json.dumps(identity.webgl_vendor),
            renderer=json.dumps(identity.webgl_renderer),
        )),
        ("notification_permission", NOTIFICATION_PERMISSION),
        ("geolocation_denial", GEOLOCATION_DENIAL),
        ("prompt_css", PROMPT_HIDE_CSS),
        ("prompt_watcher", get_prompt_watcher_script(timing)),
    ]
