from __future__ import annotations

import json
from pathlib import Path

import pytest

from onnx2net.flows.pipeline import export_report, fetch_model


def test_fetch_model_local_path(tmp_path: Path) -> None:
    model = tmp_path / "m.onnx"
    model.write_bytes(b"placeholder")
    assert fetch_model.fn(str(model)) == model


def test_fetch_model_missing_local_path(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        fetch_model.fn(str(tmp_path / "missing.onnx"))


def test_export_report_writes_json(tmp_path: Path) -> None:
    results = {"model": "m.onnx", "support": {"fully_supported": True, "subgraphs": []}}
    out = export_report.fn(str(tmp_path / "out"), results)
    assert Path(out).name == "report.json"
    assert json.loads(Path(out).read_text()) == results
