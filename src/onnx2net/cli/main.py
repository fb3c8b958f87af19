from __future__ import annotations

import logging
from typing import Optional

import typer

from onnx2net.config import ImporterConfig
from onnx2net.importer import ModelImporter
from onnx2net.utils import set_verbosity

app = typer.Typer(help="onnx2net CLI")


def _config(input_dims: list[str]) -> ImporterConfig:
    try:
        dims = [ImporterConfig.parse_dims(text) for text in input_dims]
    except ValueError as exc:
        raise typer.BadParameter(f"invalid --input-dims value: {exc}") from exc
    return ImporterConfig(input_dims=dims)


def _echo_errors(importer: ModelImporter) -> None:
    for error in importer.errors:
        typer.echo(f"ERROR: {error}", err=True)


@app.command()
def parse(
    model: str = typer.Argument(..., help="Path to an ONNX model (binary or text)"),
    input_dims: list[str] = typer.Option([], "--input-dims", help="Input shape override, e.g. 1x3x224x224"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log import progress"),
) -> None:
    """
    Import a model into an engine network and print a summary.
    """
    if verbose:
        set_verbosity(logging.DEBUG)
    importer = ModelImporter(_config(input_dims))
    network = importer.network if importer.parse_from_file(model) else None
    if network is None:
        _echo_errors(importer)
        raise typer.Exit(code=1)
    typer.echo(f"Inputs:  {[t.name for t in network.inputs]}")
    typer.echo(f"Outputs: {[t.name for t in network.outputs]}")
    typer.echo(f"Layers:  {len(network.layers)}")


@app.command()
def check(
    model: str = typer.Argument(..., help="Path to an ONNX model (binary or text)"),
    input_dims: list[str] = typer.Option([], "--input-dims", help="Input shape override, e.g. 1x3x224x224"),
    op: Optional[str] = typer.Option(None, "--op", help="Only report whether this operator type is supported"),
) -> None:
    """
    Report the maximal runs of nodes that can be imported.
    """
    importer = ModelImporter(_config(input_dims))
    if op is not None:
        supported = importer.supports_operator(op)
        typer.echo(f"{op}: {'supported' if supported else 'not supported'}")
        raise typer.Exit(code=0 if supported else 1)

    result = importer.supports_model(model)
    for i, subgraph in enumerate(result.subgraphs):
        status = "supported" if subgraph.supported else "unknown"
        typer.echo(f"Subgraph {i} [{status}]: {subgraph.nodes}")
    _echo_errors(importer)
    typer.echo("Fully supported" if result.fully_supported else "Not fully supported")
    if not result.fully_supported:
        raise typer.Exit(code=1)


@app.command()
def run(
    model_uri: str = typer.Argument(..., help="Local path or S3 URI to a model, e.g. s3://bucket/key"),
    output_dir: str = typer.Option("./outputs", help="Directory to write results"),
) -> None:
    """
    Run the Prefect flow that analyzes and imports a model and writes a report.
    """
    from onnx2net.flows.pipeline import support_report_flow

    result_path = support_report_flow(model_uri=model_uri, output_dir=output_dir)
    typer.echo(f"Results written to: {result_path}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
