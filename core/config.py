"""Run configuration for Gnezdo.

Configuration is built on Pydantic v2.  Values come from, in increasing
priority: field defaults, ``GNEZDO_*`` environment variables (with ``.env``
file support) and the ``Config.toml`` file next to the working directory.

Every key has a documented default.  A missing file yields the defaults, an
unparseable file yields the defaults with a warning, and an invalid single
value falls back to that key's default with a warning.

Key exports:
    RunConfig: Root settings model (immutable once loaded).
    TimingSettings: Tunable sleep ranges and humanisation probabilities.
    TargetSettings: Search engine URLs and CSS selectors.
    IdentitySettings: Fingerprint values presented by the browser.
    load_config: Read ``Config.toml`` and build a ``RunConfig``.
    BASE_DIR / DEFAULT_CONFIG_FILE: Canonical project paths.
"""

# pylint: disable=no-member

import logging
import tomllib
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Tuple

from pydantic import (
    AfterValidator,
    BaseModel,
    Field,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Base Paths
# ---------------------------------------------------------------------------
BASE_DIR: Path = Path.cwd()
"""Directory relative paths are resolved against when no file is loaded."""

DEFAULT_CONFIG_FILE: Path = BASE_DIR / "Config.toml"
"""Configuration file read when ``--config`` is not given."""

ENV_PREFIX = "GNEZDO_"
"""Prefix of the environment variables that override settings."""

logger: logging.Logger = logging.getLogger(__name__)


def _check_range(value: Tuple[int, int]) -> Tuple[int, int]:
    low, high = value
    if low < 0 or high < low:
        raise ValueError(f"invalid range {value!r}: need 0 <= low <= high")
    return value


# Inclusive (low, high) range, e.g. milliseconds or pixels
MsRange = Annotated[Tuple[int, int], AfterValidator(_check_range)]


class ScrollMode(BaseModel):
    """One scroll cadence: pixel step and per-step delay ranges."""

    amount_px: MsRange
    delay_ms: MsRange


class TimingSettings(BaseModel):
    """Sleep ranges and probabilities used by the humanisation layer.

    All durations are in milliseconds and ranges are inclusive.  The values
    were tuned against one specific search front-end.
    """

    # Typing
    type_delay_ms: MsRange = (75, 300)

    # Keep-alive pause slicing
    keepalive_slice_ms: int = Field(default=400, gt=0)

    # Lifecycle
    restart_settle_ms: int = 2000
    launch_settle_ms: int = 500
    inter_query_rest_ms: MsRange = (3600, 7200)

    # Query flow
    neutral_settle_ms: int = 300
    home_settle_ms: int = 960
    pre_submit_ms: int = 450
    post_submit_ms: int = 600

    # Pagination
    page_load_settle_ms: int = 960
    post_scroll_settle_ms: int = 750
    post_next_settle_ms: int = 480

    # Scrolling
    scroll_tolerance_px: int = 10
    scroll_mode_hold_steps: MsRange = (8, 25)
    scroll_modes: List[ScrollMode] = Field(
        default_factory=lambda: [
            ScrollMode(amount_px=(175, 200), delay_ms=(20, 25)),
            ScrollMode(amount_px=(200, 225), delay_ms=(15, 20)),
            ScrollMode(amount_px=(225, 250), delay_ms=(10, 15)),
        ],
        min_length=1,
    )
    pause_chance: float = Field(default=0.30, ge=0.0, le=1.0)
    pause_ms: MsRange = (240, 720)
    reading_chance: float = Field(default=0.20, ge=0.0, le=1.0)
    reading_ms: MsRange = (1200, 2400)
    backscroll_chance: float = Field(default=0.10, ge=0.0, le=1.0)
    backscroll_px: MsRange = (38, 112)
    backscroll_pause_ms: MsRange = (360, 960)
    max_scroll_steps: int = Field(default=5000, gt=0)

    # In-page prompt watcher
    prompt_debounce_ms: int = 100
    prompt_poll_ms: int = 500
    prompt_watch_lifetime_ms: int = 30000


class TargetSettings(BaseModel):
    """Where to search and how to find things on the result pages."""

    neutral_url: str = "about:blank"
    home_url: str = "https://www.google.com"
    search_input_selector: str = "textarea[name='q']"
    submit_key: str = "Enter"
    result_selector: str = 'a[jsname="UWckNb"]'
    title_selector: str = "h3"
    next_page_selector: str = "#pnnext"


class IdentitySettings(BaseModel):
    """Browser identity presented to the target.

    ``user_agent`` and the client-hint fields describe a desktop Chrome on
    Windows; the hardware values are plausible non-default numbers.
    """

    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/143.0.0.0 Safari/537.36"
    )
    accept_language: str = "ja-JP,ja;q=0.9,en-US;q=0.8,en;q=0.7"
    locale: str = "ja-JP"
    languages: List[str] = Field(
        default_factory=lambda: ["ja-JP", "ja", "en-US", "en"]
    )
    platform: str = "Win32"
    ua_platform: str = "Windows"
    ua_platform_version: str = "19.0.0"
    ua_architecture: str = "x86"
    ua_bitness: str = "64"
    browser_full_version: str = "143.0.7499.41"
    hardware_concurrency: int = 12
    device_memory: int = 8
    webgl_vendor: str = "Google Inc. (NVIDIA)"
    webgl_renderer: str = (
        "ANGLE (NVIDIA, NVIDIA GeForce RTX 2080 Ti "
        "Direct3D11 vs_5_0 ps_5_0, D3D11)"
    )
    window_width: int = 1920
    window_height: int = 1080

    @property
    def major_version(self) -> str:
        """Major browser version, e.g. ``"143"``."""
        return self.browser_full_version.split(".", 1)[0]


class RunConfig(BaseSettings):
    """Immutable inputs for one Gnezdo run.

    The first six fields mirror the keys of ``Config.toml``.  Everything
    else is optional tuning with sensible defaults.

    Section overview:
        * **Paths** -- identity store, browser executable, result root.
        * **Run** -- query list, page cap, "likely blocked" threshold,
          retry budget.
        * **Browser** -- engine, headless flag, timeouts.
        * **Nested** -- ``timing``, ``target``, ``identity``.
    """

    # Paths
    profile_dir: str = "chromium/profile"
    # Empty string lets Playwright use its bundled Chromium
    chromium_path: str = "chromium/chrome.exe"
    result_dir: str = "result"

    # Run
    max_pages: int = Field(default=10, ge=1)
    max_consecutive_no_next: int = Field(default=2, ge=1)
    search_queries: List[str] = Field(
        default_factory=lambda: ["1", "2", "3"]
    )
    max_query_retries: int = Field(default=3, ge=1)

    # Browser
    browser_engine: Literal["chromium", "camoufox"] = "chromium"
    headless: bool = False
    log_level: str = "INFO"
    navigation_timeout_ms: int = Field(default=30000, gt=0)
    element_timeout_ms: int = Field(default=10000, gt=0)
    next_page_timeout_ms: int = Field(default=3000, gt=0)
    pause_on_exit: bool = False

    timing: TimingSettings = Field(default_factory=TimingSettings)
    target: TargetSettings = Field(default_factory=TargetSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)

    # Directory relative paths are resolved against
    base_dir: Path = BASE_DIR

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    @field_validator("search_queries")
    @classmethod
    def _drop_blank_queries(cls, value: List[str]) -> List[str]:
        return [q for q in value if q.strip()]

    def resolve(self, relative: str) -> Path:
        """Resolve a configured path against :attr:`base_dir`.

        Args:
            relative: Path string from the configuration.

        Returns:
            Absolute path (absolute inputs are returned unchanged).
        """
        path = Path(relative)
        if path.is_absolute():
            return path
        return self.base_dir / path

    @property
    def profile_path(self) -> Path:
        """Absolute path of the identity store directory."""
        return self.resolve(self.profile_dir)

    @property
    def result_root(self) -> Path:
        """Absolute path of the result root directory."""
        return self.resolve(self.result_dir)

    @property
    def browser_executable(self) -> Optional[Path]:
        """Absolute browser executable path, or ``None`` for the bundled one."""
        if not self.chromium_path:
            return None
        return self.resolve(self.chromium_path)

    def summary(self) -> Dict[str, Any]:
        """Return the user-facing settings for the start-up banner."""
        return {
            "profile_dir": self.profile_dir,
            "chromium_path": self.chromium_path,
            "result_dir": self.result_dir,
            "max_pages": self.max_pages,
            "max_consecutive_no_next": self.max_consecutive_no_next,
            "search_queries": list(self.search_queries),
            "browser_engine": self.browser_engine,
            "headless": self.headless,
        }


def _read_toml(path: Path) -> Optional[Dict[str, Any]]:
    """Parse *path* as TOML, returning ``None`` when unusable."""
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning(
            "Failed to read %s: %s. Using defaults.", path, exc,
        )
        return None


def load_config(
    path: Optional[Path] = None,
    **overrides: Any,
) -> RunConfig:
    """Load ``Config.toml`` and build the immutable run configuration.

    Keys whose values fail validation are dropped one by one (and logged)
    so that a single typo does not discard the whole file.

    Args:
        path: Configuration file.  Defaults to :data:`DEFAULT_CONFIG_FILE`.
        **overrides: Values that take precedence over the file (CLI flags).

    Returns:
        A frozen :class:`RunConfig`.
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_FILE
    data: Dict[str, Any] = {}

    if config_path.exists():
        logger.info("Loading configuration: %s", config_path)
        parsed = _read_toml(config_path)
        if parsed is not None:
            data = parsed
    else:
        logger.info(
            "Configuration file %s not found. Using defaults.", config_path,
        )

    data.update({k: v for k, v in overrides.items() if v is not None})
    data.setdefault("base_dir", config_path.resolve().parent)

    # Keys pinned to their default because the environment value is bad
    pinned: Set[str] = set()
    while True:
        try:
            return RunConfig(**data)
        except ValidationError as exc:
            bad_keys = {
                err["loc"][0] for err in exc.errors()
                if err.get("loc") and err["loc"][0] in RunConfig.model_fields
            } - pinned
            if not bad_keys:
                raise
            for key in sorted(bad_keys, key=str):
                if key in data:
                    logger.warning(
                        "Invalid value for %r in %s (%r). Using default.",
                        key, config_path, data.pop(key),
                    )
                    continue
                # Explicit init values take precedence over the environment
                logger.warning(
                    "Invalid value for %r in the environment (%s%s). "
                    "Using default.",
                    key, ENV_PREFIX, key.upper(),
                )
                data[key] = RunConfig.model_fields[key].get_default(
                    call_default_factory=True,
                )
                pinned.add(key)
