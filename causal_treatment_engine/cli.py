"""
Command-line interface for the Causal Treatment Engine.

Each sub-command reads a JSON or YAML request file and prints the JSON
response.

Usage:
    python -m causal_treatment_engine analyze request.json
    causal-engine --config configs/default.yaml optimize request.yaml --summary
"""

import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict

import click
import yaml

from . import __version__
from .config import EngineConfig
from .pipelines import (
    BayesianInferenceRequest,
    CausalAnalysisRequest,
    CausalAnalysisService,
    CounterfactualRequest,
    PersonalizedModelRequest,
    TreatmentOptimizationRequest,
)


def _load_request(path: str) -> Dict[str, Any]:
    request_path = Path(path)
    with open(request_path, "r") as f:
        if request_path.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f) or {}


def _run(
    ctx: click.Context,
    request_file: str,
    parse: Callable[[Dict[str, Any]], Any],
    operation: Callable[[CausalAnalysisService, Any], Any],
    summary: bool = False,
) -> None:
    try:
        request = parse(_load_request(request_file))
        with CausalAnalysisService(ctx.obj["config"]) as service:
            response = operation(service, request)
    except (ValueError, KeyError, TypeError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if summary and hasattr(response, "summary"):
        click.echo(response.summary)
    else:
        click.echo(json.dumps(response.to_dict(), indent=2, default=str))


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    default=None,
    help="Path to YAML engine configuration",
)
@click.option(
    "--verbose/--quiet",
    "-v/-q",
    default=False,
    help="Enable/disable verbose logging",
)
@click.version_option(version=__version__, prog_name="causal-treatment-engine")
@click.pass_context
def main(ctx: click.Context, config: str, verbose: bool) -> None:
    """
    Causal Treatment Engine - personalized causal analysis

    Example:
        causal-engine analyze request.json
    """
    engine_config = EngineConfig.from_yaml(config) if config else EngineConfig()
    engine_config.verbose = verbose
    ctx.ensure_object(dict)
    ctx.obj["config"] = engine_config


@main.command()
@click.argument("request_file", type=click.Path(exists=True))
@click.option("--summary", is_flag=True, help="Print a text summary instead of JSON")
@click.pass_context
def analyze(ctx: click.Context, request_file: str, summary: bool) -> None:
    """Estimate treatment effects on outcomes."""
    _run(
        ctx, request_file,
        CausalAnalysisRequest.from_dict,
        lambda service, request: service.perform_causal_analysis(request),
        summary,
    )


@main.command()
@click.argument("request_file", type=click.Path(exists=True))
@click.pass_context
def counterfactual(ctx: click.Context, request_file: str) -> None:
    """Simulate what-if treatment scenarios."""
    _run(
        ctx, request_file,
        CounterfactualRequest.from_dict,
        lambda service, request: service.generate_counterfactuals(request),
    )


@main.command()
@click.argument("request_file", type=click.Path(exists=True))
@click.option("--summary", is_flag=True, help="Print a text summary instead of JSON")
@click.pass_context
def optimize(ctx: click.Context, request_file: str, summary: bool) -> None:
    """Find the best treatment pathway."""
    _run(
        ctx, request_file,
        TreatmentOptimizationRequest.from_dict,
        lambda service, request: service.optimize_treatment_pathway(request),
        summary,
    )


@main.command()
@click.argument("request_file", type=click.Path(exists=True))
@click.pass_context
def personalize(ctx: click.Context, request_file: str) -> None:
    """Learn a personalized causal model from patient history."""
    _run(
        ctx, request_file,
        PersonalizedModelRequest.from_dict,
        lambda service, request: service.create_personalized_model(request),
    )


@main.command()
@click.argument("request_file", type=click.Path(exists=True))
@click.pass_context
def infer(ctx: click.Context, request_file: str) -> None:
    """Run Bayesian inference with uncertainty estimates."""
    _run(
        ctx, request_file,
        BayesianInferenceRequest.from_dict,
        lambda service, request: service.perform_bayesian_inference(request),
    )


if __name__ == "__main__":
    main()
