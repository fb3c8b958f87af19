from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Any, cast

import boto3
from prefect import flow, get_run_logger, task

from onnx2net.importer import ModelImporter


@task
def fetch_model(model_uri: str) -> Path:
    """
    Resolve a model to a local file. S3 URIs (s3://bucket/key) are downloaded
    to a temporary file and require AWS credentials in the environment.
    """
    if not model_uri.startswith("s3://"):
        path = Path(model_uri)
        if not path.is_file():
            raise FileNotFoundError(f"Model not found: {model_uri}")
        return path
    logger = get_run_logger()
    _, rest = model_uri.split("s3://", 1)
    bucket, key = rest.split("/", 1)
    s3 = boto3.client("s3")
    tmp = Path(tempfile.mkstemp(prefix="onnx2net_model_", suffix=".onnx")[1])
    s3.download_file(bucket, key, str(tmp))
    logger.info(f"Downloaded {model_uri} to {tmp}")
    return tmp


def _error_dicts(importer: ModelImporter) -> list[dict[str, Any]]:
    return [
        {
            "code": e.code.value,
            "node": e.node,
            "input": e.input_name,
            "desc": e.desc,
            "func": e.func,
        }
        for e in importer.errors
    ]


@task
def analyze_support(local_path: Path) -> dict[str, Any]:
    logger = get_run_logger()
    logger.info(f"Analyzing support for {local_path}")
    importer = ModelImporter()
    result = importer.supports_model(local_path)
    return {
        "fully_supported": result.fully_supported,
        "subgraphs": [{"nodes": s.nodes, "supported": s.supported} for s in result.subgraphs],
        "errors": _error_dicts(importer),
    }


@task
def import_network(local_path: Path) -> dict[str, Any]:
    logger = get_run_logger()
    logger.info(f"Importing {local_path}")
    importer = ModelImporter()
    ok = importer.parse(local_path)
    summary: dict[str, Any] = {"success": ok, "errors": _error_dicts(importer)}
    if ok and importer.network is not None:
        network = importer.network
        summary["inputs"] = [t.name for t in network.inputs]
        summary["outputs"] = [t.name for t in network.outputs]
        summary["layers"] = len(network.layers)
    return summary


@task
def export_report(output_dir: str, results: dict[str, Any]) -> str:
    out_path = Path(output_dir)
    out_path.mkdir(parents=True, exist_ok=True)
    result_file = out_path / "report.json"
    result_file.write_text(json.dumps(results, indent=2))
    return str(result_file)


@flow(name="onnx2net-support-report")
def support_report_flow(model_uri: str, output_dir: str) -> str:
    """
    Orchestrates: fetch -> support analysis -> import -> report.
    The import runs against its own network, independent of the analysis.
    """
    path = fetch_model(model_uri)
    support = analyze_support(path)
    imported = import_network(path)
    out = export_report(output_dir, {"model": model_uri, "support": support, "import": imported})
    return cast(str, out)
