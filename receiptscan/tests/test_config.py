from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from receiptscan.domain.errors import ConfigInvalid
from receiptscan.runtime.config import get_settings, load_settings, reset_settings, resolve_config_path


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "receiptscan.toml"
    path.write_text(text)
    return path


def test_defaults_without_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    settings = load_settings(environ={})

    assert settings.source is None
    assert settings.ocr.backend == "tesseract"
    assert settings.ocr.page_seg_mode == "single_column"
    assert settings.ocr.max_engines == 2
    assert settings.preprocess.preset == "minimal"
    assert settings.policy.min_item_confidence == 0.6


def test_toml_sections_are_loaded(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[ocr]
backend = "service"
url = "http://ocr.local:9000"
timeout = 15
alternate_page_seg_modes = ["uniform_block"]

[preprocess]
preset = "standard"
resize_threshold_px = 1600

[parser]
known_merchants = ["COSTCO"]
reconciliation_tolerance = 0.02

[policy]
min_item_confidence = 0.65
""",
    )

    settings = load_settings(path, environ={})

    assert settings.source == path
    assert settings.ocr.backend == "service"
    assert settings.ocr.service_url == "http://ocr.local:9000"
    assert settings.ocr.timeout == 15
    assert settings.ocr.alternate_page_seg_modes == ("uniform_block",)
    assert settings.preprocess.preset == "standard"
    assert settings.preprocess.resize_options().threshold_px == 1600
    assert settings.parser.known_merchants == ("COSTCO",)
    assert settings.parser.reconciliation_tolerance == Decimal("0.02")
    assert settings.policy.min_item_confidence == 0.65


def test_environment_overrides_file(tmp_path: Path) -> None:
    path = _write(tmp_path, '[ocr]\nbackend = "tesseract"\ntimeout = 30\n')
    environ = {
        "RECEIPTSCAN_OCR_BACKEND": "SERVICE",
        "RECEIPTSCAN_OCR_URL": "http://override:8001",
        "RECEIPTSCAN_OCR_TIMEOUT": "5",
        "RECEIPTSCAN_MAX_ENGINES": "4",
        "RECEIPTSCAN_TESSERACT_CMD": "/opt/bin/tesseract",
    }

    settings = load_settings(path, environ=environ)

    assert settings.ocr.backend == "service"
    assert settings.ocr.service_url == "http://override:8001"
    assert settings.ocr.timeout == 5.0
    assert settings.ocr.max_engines == 4
    assert settings.ocr.tesseract_cmd == "/opt/bin/tesseract"


@pytest.mark.parametrize(
    "text",
    [
        "[ocr]\nbogus = 1\n",
        "[storage]\npath = 'x'\n",
        "[ocr]\nbackend = 'cloud'\n",
        "[ocr]\nmax_engines = 0\n",
        "[preprocess]\npreset = 'extreme'\n",
        "[policy]\nmin_item_confidence = 2.0\n",
        "[parser]\nreconciliation_tolerance = 'lots'\n",
        "[ocr\n",
    ],
)
def test_invalid_config_is_rejected(tmp_path: Path, text: str) -> None:
    with pytest.raises(ConfigInvalid):
        load_settings(_write(tmp_path, text), environ={})


def test_invalid_numeric_override_is_rejected() -> None:
    with pytest.raises(ConfigInvalid):
        load_settings(environ={"RECEIPTSCAN_MAX_ENGINES": "many"})


def test_config_path_from_environment(tmp_path: Path) -> None:
    path = _write(tmp_path, "")

    assert resolve_config_path({"RECEIPTSCAN_CONFIG": str(path)}) == path
    with pytest.raises(ConfigInvalid):
        resolve_config_path({"RECEIPTSCAN_CONFIG": str(tmp_path / "missing.toml")})


def test_config_file_in_working_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write(tmp_path, "[preprocess]\npreset = 'raw'\n")
    monkeypatch.chdir(tmp_path)

    assert resolve_config_path({}) == path
    assert load_settings(environ={}).preprocess.preset == "raw"


def test_get_settings_is_cached_until_reset(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("RECEIPTSCAN_MAX_ENGINES", "3")
    assert get_settings().ocr.max_engines == 2
    reset_settings()
    assert get_settings().ocr.max_engines == 3
