"""CLI tests driving receiptscan.cli.main with fake OCR engines."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from PIL import Image

from receiptscan.application.receipts import process as process_module
from receiptscan.cli.main import main
from receiptscan.cli.receipt import EXIT_INVALID_INPUT, EXIT_OCR_FAILED, EXIT_OK
from receiptscan.domain.errors import OcrEngineError


@pytest.fixture
def receipt_file(tmp_path: Path, receipt_png: bytes) -> Path:
    path = tmp_path / "receipt.png"
    path.write_bytes(receipt_png)
    return path


@pytest.fixture
def fake_ocr(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, fake_engine) -> dict:
    """Route process_receipt's private engine pool to FakeEngines.

    Returns the modes called and the per-mode outcomes, which tests may edit.
    """
    monkeypatch.chdir(tmp_path)
    state: dict = {"calls": [], "outcomes": {}}

    def factory(settings):
        return lambda: fake_engine(outcomes=state["outcomes"], calls=state["calls"])

    monkeypatch.setattr(process_module, "create_engine_factory", factory)
    return state


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == 1
    assert "Receipt scanning CLI" in capsys.readouterr().out


def test_presets_marks_default(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["presets"]) == EXIT_OK

    out = capsys.readouterr().out
    assert "* minimal" in out
    assert "steps: grayscale, resize, deskew, noise_reduction, contrast, sharpen" in out
    assert "steps: (none)" in out


def test_scan_prints_review(receipt_file: Path, fake_ocr: dict, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["scan", str(receipt_file), "--text"]) == EXIT_OK

    out = capsys.readouterr().out
    assert "Merchant: WALMART" in out
    assert "BREAD" in out
    assert "OCR text:" in out
    assert fake_ocr["calls"] == ["single_column"]


def test_scan_json_output(receipt_file: Path, fake_ocr: dict, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["scan", str(receipt_file), "--json", "--psm", "uniform_block", "--alt-psm", "raw_line"]) == EXIT_OK

    payload = json.loads(capsys.readouterr().out)
    assert payload["merchantName"]["value"] == "WALMART"
    assert payload["total"]["value"] == "7.00"
    assert fake_ocr["calls"] == ["uniform_block", "raw_line"]


def test_scan_ocr_failure_exit_code(
    receipt_file: Path, fake_ocr: dict, capsys: pytest.CaptureFixture[str]
) -> None:
    failure = OcrEngineError("engine_failure", "crashed")
    fake_ocr["outcomes"].update(single_column=failure, uniform_block=failure)

    assert main(["scan", str(receipt_file)]) == EXIT_OCR_FAILED
    assert "OCR failed (engine_failure)" in capsys.readouterr().out


def test_scan_missing_image(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["scan", str(tmp_path / "missing.jpg")]) == EXIT_INVALID_INPUT
    assert "cannot read image" in capsys.readouterr().out


def test_scan_invalid_image(tmp_path: Path, fake_ocr: dict, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("not a receipt")

    assert main(["scan", str(path)]) == EXIT_INVALID_INPUT
    assert "Invalid image" in capsys.readouterr().out
    assert fake_ocr["calls"] == []


def test_scan_invalid_threshold(receipt_file: Path, fake_ocr: dict) -> None:
    assert main(["scan", str(receipt_file), "--min-item-confidence", "1.5"]) == EXIT_INVALID_INPUT


def test_scan_invalid_price_threshold(
    receipt_file: Path, fake_ocr: dict, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["scan", str(receipt_file), "--min-price-confidence", "1.5"]) == EXIT_INVALID_INPUT
    assert "min_price_confidence must be within [0, 1]" in capsys.readouterr().out
    assert fake_ocr["calls"] == []


def test_scan_price_threshold_is_applied(
    receipt_file: Path, fake_ocr: dict, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["scan", str(receipt_file), "--json", "--min-price-confidence", "1.0"]) == EXIT_OK

    payload = json.loads(capsys.readouterr().out)
    assert [item["name"] for item in payload["items"]] == ["MILK 2%", "BREAD"]


def test_scan_saves_ocr_json(receipt_file: Path, tmp_path: Path, fake_ocr: dict) -> None:
    output = tmp_path / "debug" / "ocr.json"

    assert main(["scan", str(receipt_file), "--save-ocr", str(output)]) == EXIT_OK

    saved = json.loads(output.read_text())
    assert saved["page_seg_mode"] == "single_column"
    assert [line["text"] for line in saved["lines"]][:1] == ["WALMART"]


def test_invalid_config_file(
    receipt_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    config = tmp_path / "bad.toml"
    config.write_text("[ocr]\nbackend = 'cloud'\n")
    monkeypatch.setenv("RECEIPTSCAN_CONFIG", str(config))

    assert main(["preprocess", str(receipt_file), str(tmp_path / "out.png")]) == EXIT_INVALID_INPUT
    assert "Unknown OCR backend" in capsys.readouterr().out


def test_preprocess_writes_output(
    receipt_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.chdir(tmp_path)
    output = tmp_path / "out" / "processed.png"

    assert main(["preprocess", str(receipt_file), str(output), "--preset", "standard"]) == EXIT_OK

    out = capsys.readouterr().out
    assert "Preset: standard" in out
    assert "Steps: grayscale, resize, contrast:linear_stretch" in out
    with Image.open(output) as img:
        assert img.mode == "L"
        assert img.size == (800, 600)
