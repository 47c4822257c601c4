from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from bse_pipeline import main_bse


def _write_inputs(tmp_path: Path) -> tuple:
    subject = np.zeros((96, 96, 4), dtype=np.uint8)
    subject[20:80, 24:72] = (150, 95, 70, 255)
    rng = np.random.default_rng(2)
    background = rng.integers(30, 220, size=(120, 160, 3), dtype=np.uint8)
    source_path = tmp_path / "subject.png"
    background_path = tmp_path / "background.jpg"
    Image.fromarray(subject).save(source_path)
    Image.fromarray(background).save(background_path, quality=92)
    return source_path, background_path


def test_parse_args_debug_flags() -> None:
    base = ["--source", "a.png", "--background", "b.png"]
    assert main_bse.parse_args(base).debug is None
    assert main_bse.parse_args(base + ["--debug"]).debug is True
    assert main_bse.parse_args(base + ["--debug", "off"]).debug is False
    assert main_bse.parse_args(base + ["--no-debug"]).debug is False


def test_build_payload_merges_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"shadow": {"enabled": False}, "debug": {"return_stage_outputs": True}}))
    args = main_bse.parse_args(
        ["--source", "a.png", "--background", "b.png", "--config", str(config_path), "--no-debug", "--job-id", "j1"]
    )
    payload = main_bse.build_payload(args)
    assert payload["job_id"] == "j1"
    assert payload["config"]["shadow"] == {"enabled": False}
    assert payload["config"]["debug"] == {"return_stage_outputs": False}


def test_main_writes_response_and_image(tmp_path: Path) -> None:
    source_path, background_path = _write_inputs(tmp_path)
    response_path = tmp_path / "out" / "response.json"
    image_path = tmp_path / "out" / "swapped.png"
    code = main_bse.main(
        [
            "--source",
            str(source_path),
            "--background",
            str(background_path),
            "--output-json",
            str(response_path),
            "--save-image",
            str(image_path),
            "--no-debug",
            "--workers",
            "2",
        ]
    )
    assert code == 0
    response = json.loads(response_path.read_text(encoding="utf-8"))
    assert response["status"] == "success"
    assert "debug" not in response
    with Image.open(image_path) as image:
        assert image.size == (96, 96)


def test_main_reports_failures(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = main_bse.main(["--source", str(tmp_path / "missing.png"), "--background", str(tmp_path / "nope.png")])
    assert code == 1
    response = json.loads(capsys.readouterr().out)
    assert response["status"] == "error"
    assert response["code"] == "IO_ERROR"
