from __future__ import annotations

from pathlib import Path

import onnx
import pytest
from onnx import TensorProto, helper
from typer.testing import CliRunner

from onnx2net.cli.main import app
from onnx2net.config import ImporterConfig

runner = CliRunner()


def _save_chain(tmp_path: Path, op_types: list[str]) -> Path:
    names = ["x"] + [f"t{i}" for i in range(len(op_types) - 1)] + ["y"]
    nodes = [helper.make_node(op, [names[i]], [names[i + 1]]) for i, op in enumerate(op_types)]
    graph = helper.make_graph(
        nodes,
        "g",
        [helper.make_tensor_value_info("x", TensorProto.FLOAT, [1, 3])],
        [helper.make_tensor_value_info("y", TensorProto.FLOAT, [1, 3])],
    )
    path = tmp_path / "model.onnx"
    onnx.save(helper.make_model(graph), str(path))
    return path


def test_parse_prints_summary(tmp_path: Path) -> None:
    path = _save_chain(tmp_path, ["Relu", "Sigmoid"])
    result = runner.invoke(app, ["parse", str(path), "--input-dims", "4x3"])
    assert result.exit_code == 0
    assert "Inputs:  ['x']" in result.stdout
    assert "Layers:  2" in result.stdout


def test_parse_failure_exits_nonzero(tmp_path: Path) -> None:
    path = _save_chain(tmp_path, ["NoSuchOp"])
    result = runner.invoke(app, ["parse", str(path)])
    assert result.exit_code == 1


def test_check_fully_supported(tmp_path: Path) -> None:
    path = _save_chain(tmp_path, ["Relu", "Tanh"])
    result = runner.invoke(app, ["check", str(path)])
    assert result.exit_code == 0
    assert "Subgraph 0 [supported]: [0, 1]" in result.stdout
    assert "Fully supported" in result.stdout


def test_check_partitions(tmp_path: Path) -> None:
    path = _save_chain(tmp_path, ["Relu", "NoSuchOp", "Relu"])
    result = runner.invoke(app, ["check", str(path)])
    assert result.exit_code == 1
    assert "Subgraph 0 [unknown]: [0]" in result.stdout
    assert "Subgraph 1 [unknown]: [2]" in result.stdout
    assert "Not fully supported" in result.stdout


def test_check_single_operator() -> None:
    result = runner.invoke(app, ["check", "unused.onnx", "--op", "Relu"])
    assert result.exit_code == 0
    assert "Relu: supported" in result.stdout
    result = runner.invoke(app, ["check", "unused.onnx", "--op", "Loop"])
    assert result.exit_code == 1


def test_bad_input_dims_rejected(tmp_path: Path) -> None:
    path = _save_chain(tmp_path, ["Relu"])
    result = runner.invoke(app, ["parse", str(path), "--input-dims", "1xfoo"])
    assert result.exit_code != 0


@pytest.mark.parametrize(
    "text, expected",
    [("1x3x224x224", [1, 3, 224, 224]), ("?x3", [-1, 3]), ("-1X8", [-1, 8])],
)
def test_parse_dims(text: str, expected: list[int]) -> None:
    assert ImporterConfig.parse_dims(text) == expected
