"""Runtime configuration loaded from TOML plus environment overrides.

Lookup order for the config file:
1. ``RECEIPTSCAN_CONFIG`` environment variable
2. ``receiptscan.toml`` in the working directory
3. Built-in defaults

Environment variables applied on top of the file:
    RECEIPTSCAN_OCR_BACKEND    "tesseract" or "service"
    RECEIPTSCAN_OCR_URL        OCR service base URL
    RECEIPTSCAN_OCR_TIMEOUT    Engine timeout in seconds
    RECEIPTSCAN_MAX_ENGINES    Engine pool size
    RECEIPTSCAN_TESSERACT_CMD  Path to the tesseract binary

Example receiptscan.toml:

    [ocr]
    backend = "service"
    url = "http://localhost:8001"
    alternate_page_seg_modes = ["uniform_block"]

    [preprocess]
    preset = "standard"

    [parser]
    known_merchants = ["COSTCO", "WALMART"]

    [policy]
    min_item_confidence = 0.65
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Literal, get_args

from receiptscan.domain.errors import ConfigInvalid
from receiptscan.domain.ocr import EngineMode, OcrOptions, PageSegMode
from receiptscan.receipt.acceptance import PolicyConfig
from receiptscan.receipt.ocr_result_parser import ParserConfig
from receiptscan.receipt.preprocessing import DEFAULT_PRESET, PRESET_NAMES, ResizeOptions
from receiptscan.runtime.logging import get_logger

logger = get_logger(__name__)

OcrBackend = Literal["tesseract", "service"]
OCR_BACKENDS: tuple[OcrBackend, ...] = get_args(OcrBackend)

CONFIG_ENV_VAR = "RECEIPTSCAN_CONFIG"
DEFAULT_CONFIG_FILENAME = "receiptscan.toml"


@dataclass(frozen=True)
class OcrSettings:
    """Which engine to run and how."""

    backend: OcrBackend = "tesseract"
    service_url: str = "http://localhost:8001"
    timeout: float = 60.0
    max_engines: int = 2
    tesseract_cmd: str | None = None
    language: str = "eng"
    page_seg_mode: PageSegMode = "single_column"
    engine_mode: EngineMode = "neural_only"
    alternate_page_seg_modes: tuple[PageSegMode, ...] = ()

    def __post_init__(self) -> None:
        if self.backend not in OCR_BACKENDS:
            raise ConfigInvalid(f"Unknown OCR backend {self.backend!r}; expected one of {', '.join(OCR_BACKENDS)}")
        if self.timeout <= 0:
            raise ConfigInvalid(f"OCR timeout must be positive, got {self.timeout}")
        if self.max_engines < 1:
            raise ConfigInvalid(f"max_engines must be at least 1, got {self.max_engines}")
        # Validates language and modes
        self.options()
        for mode in self.alternate_page_seg_modes:
            OcrOptions(language=self.language, page_seg_mode=mode, engine_mode=self.engine_mode)

    def options(self) -> OcrOptions:
        return OcrOptions(language=self.language, page_seg_mode=self.page_seg_mode, engine_mode=self.engine_mode)


@dataclass(frozen=True)
class PreprocessSettings:
    preset: str = DEFAULT_PRESET
    resize_threshold_px: int = 2000
    resize_scale_factor: float = 0.5

    def __post_init__(self) -> None:
        if self.preset not in PRESET_NAMES:
            raise ConfigInvalid(f"Unknown preprocessing preset {self.preset!r}; expected one of {', '.join(PRESET_NAMES)}")
        self.resize_options()

    def resize_options(self) -> ResizeOptions:
        return ResizeOptions(threshold_px=self.resize_threshold_px, scale_factor=self.resize_scale_factor)


@dataclass(frozen=True)
class Settings:
    """All runtime settings, resolved and validated."""

    ocr: OcrSettings = field(default_factory=OcrSettings)
    preprocess: PreprocessSettings = field(default_factory=PreprocessSettings)
    parser: ParserConfig = field(default_factory=ParserConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    source: Path | None = None


def _build_section(cls: type, section: str, data: dict[str, Any], renames: dict[str, str] | None = None) -> Any:
    """Instantiate a settings dataclass from a TOML table, rejecting unknown keys."""
    renames = renames or {}
    allowed = {f.name for f in fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        name = renames.get(key, key)
        if name not in allowed:
            raise ConfigInvalid(f"Unknown key {key!r} in [{section}]")
        if isinstance(value, list):
            value = tuple(value)
        kwargs[name] = value
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ConfigInvalid(f"Invalid value in [{section}]: {e}") from e


def _parser_section(data: dict[str, Any]) -> ParserConfig:
    data = dict(data)
    if "reconciliation_tolerance" in data:
        try:
            data["reconciliation_tolerance"] = Decimal(str(data["reconciliation_tolerance"]))
        except InvalidOperation as e:
            raise ConfigInvalid(f"Invalid reconciliation_tolerance: {data['reconciliation_tolerance']!r}") from e
    return _build_section(ParserConfig, "parser", data)


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if value := environ.get("RECEIPTSCAN_OCR_BACKEND"):
        overrides["backend"] = value.strip().lower()
    if value := environ.get("RECEIPTSCAN_OCR_URL"):
        overrides["service_url"] = value.strip()
    if value := environ.get("RECEIPTSCAN_TESSERACT_CMD"):
        overrides["tesseract_cmd"] = value.strip()
    try:
        if value := environ.get("RECEIPTSCAN_OCR_TIMEOUT"):
            overrides["timeout"] = float(value)
        if value := environ.get("RECEIPTSCAN_MAX_ENGINES"):
            overrides["max_engines"] = int(value)
    except ValueError as e:
        raise ConfigInvalid(f"Invalid numeric environment override: {e}") from e
    return overrides


def resolve_config_path(environ: Mapping[str, str] | None = None) -> Path | None:
    """Return the config file to load, or None to use defaults."""
    environ = os.environ if environ is None else environ
    explicit = environ.get(CONFIG_ENV_VAR)
    if explicit:
        path = Path(explicit).expanduser()
        if not path.exists():
            raise ConfigInvalid(f"{CONFIG_ENV_VAR} points to a missing file: {path}")
        return path
    local = Path.cwd() / DEFAULT_CONFIG_FILENAME
    return local if local.exists() else None


def load_settings(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """
    Load settings from a TOML file and environment overrides.

    Args:
        config_path: Explicit config file; if None, resolved from the environment
        environ: Environment mapping (defaults to os.environ)

    Raises:
        ConfigInvalid: Unreadable TOML, unknown keys, or out-of-range values
    """
    environ = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(environ)

    data: dict[str, Any] = {}
    if config_path is not None:
        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigInvalid(f"Invalid TOML in {config_path}: {e}") from e
        except OSError as e:
            raise ConfigInvalid(f"Cannot read config file {config_path}: {e}") from e
        logger.debug("Loaded config from %s", config_path)

    unknown = set(data) - {"ocr", "preprocess", "parser", "policy"}
    if unknown:
        raise ConfigInvalid(f"Unknown config table(s): {', '.join(sorted(unknown))}")

    ocr_data = {**data.get("ocr", {}), **_env_overrides(environ)}
    return Settings(
        ocr=_build_section(OcrSettings, "ocr", ocr_data, renames={"url": "service_url"}),
        preprocess=_build_section(PreprocessSettings, "preprocess", data.get("preprocess", {})),
        parser=_parser_section(data.get("parser", {})),
        policy=_build_section(PolicyConfig, "policy", data.get("policy", {})),
        source=config_path,
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or load the process-wide settings.

    Subsequent calls return the same instance until reset_settings() is called.
    """
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Clear cached settings so the next get_settings() reloads them. Useful for testing."""
    global _settings
    _settings = None
