"""Configuration models and loader for the visual regression runner."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from vrt.errors import ConfigurationError
from vrt.url_utils import is_http_url

CONFIG_FILE_NAMES = (".vrtrc.json", "vrt.config.json", ".vrtrc")

ENV_OVERRIDES = {
    "VRT_ENDPOINT": "endpoint",
    "VRT_TOKEN": "token",
    "VRT_OUTPUT_DIR": "outputDir",
    "VRT_BASELINE_DIR": "baselineDir",
    "VRT_DIFF_DIR": "diffDir",
    "VRT_BASELINE_DOMAIN": "baselineDomain",
    "VRT_TEST_DOMAIN": "testDomain",
}


class _CamelModel(BaseModel):
    """Reads and writes the camelCase keys used in .vrtrc.json."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ComparisonConfig(_CamelModel):
    threshold: float = Field(default=0.1, ge=0, le=1)
    max_diff_pixels: int = Field(default=100, ge=0)
    max_diff_pixel_ratio: float = Field(default=0.01, ge=0, le=1)
    # warn: soft pass flagged "dimension-mismatch"; overlap: diff the shared region
    dimension_mismatch: Literal["warn", "overlap"] = "warn"
    include_antialiasing: bool = False


class BrowserConfig(_CamelModel):
    headless: bool = True
    timeout: int = Field(default=30000, ge=0)
    navigation_timeout: int = Field(default=30000, ge=0)
    screenshot_timeout: int = Field(default=10000, ge=0)
    workers: int = Field(default=1, ge=1)


class RetryConfig(_CamelModel):
    max_retries: int = Field(default=2, ge=0)
    retry_delay: int = Field(default=1000, ge=0)


class LazyLoadRule(_CamelModel):
    """Promote a deferred attribute to a live one, e.g. data-src -> src."""
    selector: str
    source_attribute: str = ""
    target_attribute: str = ""
    background: bool = False  # write url(...) into style.backgroundImage
    value: Optional[str] = None  # fixed value instead of copying source_attribute


def _default_lazy_load_rules() -> list[LazyLoadRule]:
    return [
        LazyLoadRule(selector="img[data-src]", source_attribute="data-src", target_attribute="src"),
        LazyLoadRule(selector="[data-srcset]", source_attribute="data-srcset", target_attribute="srcset"),
        LazyLoadRule(selector="[data-bg]", source_attribute="data-bg", background=True),
        LazyLoadRule(selector="[data-background-image]", source_attribute="data-background-image",
                     background=True),
        LazyLoadRule(selector="img[loading='lazy']", target_attribute="loading", value="eager"),
    ]


class StabilizationConfig(_CamelModel):
    disable_animations: bool = True
    freeze_videos: bool = True
    video_seek_timeout: int = Field(default=2000, ge=0)
    network_idle_timeout: int = Field(default=10000, ge=0)
    font_timeout: int = Field(default=5000, ge=0)
    lazy_load_rules: list[LazyLoadRule] = Field(default_factory=_default_lazy_load_rules)
    scroll_step: int = Field(default=400, gt=0)
    scroll_delay: int = Field(default=100, ge=0)
    max_scroll_distance: int = Field(default=50000, ge=0)
    scroll_timeout: int = Field(default=15000, ge=0)
    image_timeout: int = Field(default=10000, ge=0)
    height_poll_interval: int = Field(default=250, gt=0)
    height_stable_readings: int = Field(default=3, ge=1)
    height_timeout: int = Field(default=5000, ge=0)
    settle_delay: int = Field(default=500, ge=0)
    viewport_settle_delay: int = Field(default=250, ge=0)
    mask_selectors: list[str] = Field(
        default_factory=lambda: [
            "iframe[src*='youtube.com']",
            "iframe[src*='youtube-nocookie.com']",
            "iframe[src*='vimeo.com']",
            "iframe[src*='wistia']",
        ]
    )
    max_full_page_height: int = Field(default=30000, gt=0)  # Chromium caps textures near 32767px
    default_viewport_height: int = Field(default=800, gt=0)


class VrtConfig(_CamelModel):
    # API
    endpoint: str
    token: str = ""
    insecure: bool = False

    # Domain substitution
    baseline_domain: Optional[str] = None
    test_domain: Optional[str] = None

    # Directories
    output_dir: str = "./screenshots"
    baseline_dir: str = "./baselines"
    diff_dir: str = "./diffs"
    report_dir: str = "./vrt-report"
    failed_tests_file: str = ".vrt-failed.json"

    comparison: ComparisonConfig = Field(default_factory=ComparisonConfig)
    playwright: BrowserConfig = Field(default_factory=BrowserConfig)
    retries: RetryConfig = Field(default_factory=RetryConfig)
    stabilization: StabilizationConfig = Field(default_factory=StabilizationConfig)

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if not v:
            raise ValueError("Missing required field: endpoint")
        if not is_http_url(v):
            raise ValueError(f"Invalid endpoint URL: {v}")
        return v

    @field_validator("baseline_domain", "test_domain")
    @classmethod
    def validate_domain(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        if not is_http_url(v.strip()):
            raise ValueError(f"Invalid domain URL: {v}")
        return v.strip()

    @classmethod
    def load(cls, path: str | Path | None = None) -> "VrtConfig":
        """Load config from a JSON file (searched upward when no path is given)."""
        return load_config(path)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(by_alias=True), f, indent=2)
            f.write("\n")


def find_config_file(start_dir: str | Path | None = None) -> Path | None:
    """Search the start directory and its parents for a known config file name."""
    current = Path(start_dir or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    return None


def config_exists(start_dir: str | Path | None = None) -> bool:
    return find_config_file(start_dir) is not None


def get_config_path(start_dir: str | Path | None = None) -> Path:
    """Path of the active config file, or where a new one would be created."""
    found = find_config_file(start_dir)
    return found or Path(start_dir or Path.cwd()) / CONFIG_FILE_NAMES[0]


def _format_validation_errors(exc: ValidationError) -> list[str]:
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"])
        message = err["msg"].removeprefix("Value error, ")
        if err["type"] == "missing":
            message = f"Missing required field: {location}"
        elif location and location not in message:
            message = f"{location}: {message}"
        messages.append(message)
    return messages


def load_config(path: str | Path | None = None, env: dict[str, str] | None = None) -> VrtConfig:
    """Load, merge and validate configuration.

    Precedence (highest first): environment variables, config file, defaults.
    Raises ConfigurationError listing every validation problem.
    """
    env = os.environ if env is None else env
    data: dict = {}

    resolved = Path(path) if path else find_config_file()
    if resolved is not None:
        if not resolved.exists():
            raise ConfigurationError(f"Config file not found: {resolved}")
        try:
            with open(resolved, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in config file: {resolved} ({e})") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must contain a JSON object: {resolved}")

    for var, key in ENV_OVERRIDES.items():
        if env.get(var):
            data[key] = env[var]

    data.setdefault("endpoint", "")

    try:
        return VrtConfig.model_validate(data)
    except ValidationError as e:
        errors = _format_validation_errors(e)
        raise ConfigurationError(
            "Configuration validation failed:\n  - " + "\n  - ".join(errors), errors
        ) from e


def create_default_config(path: str | Path | None = None) -> Path:
    """Write a starter configuration file and return its path."""
    config_path = Path(path) if path else Path.cwd() / CONFIG_FILE_NAMES[0]
    config = VrtConfig(endpoint="https://example.org/api/vrt/pages")
    config.save(config_path)
    return config_path
