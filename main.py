#!/usr/bin/env python3
"""
CONVOY - Static Analysis Provider Orchestrator

Main entry point for the analysis CLI.

Usage:
    convoy analyze --input ./app --output ./out --rules ./rules --engine my_engine:create
    convoy analyze --input ./app --output ./out --target cloud-readiness --source eap7 ...
    convoy analyze --list-targets --rules ./rules
"""

import asyncio
import importlib
import sys
from pathlib import Path
from typing import Any, List, Optional

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from convoy import __version__
from convoy.core import AnalysisConfig, AnalysisOrchestrator, load_provider_settings
from convoy.core.label_selector import SOURCE_LABEL, TARGET_LABEL
from convoy.core.logging_config import configure_logging
from convoy.core.settings import ConfigurationError
from convoy.providers import AnalysisMode
from convoy.rules import RuleParseError, list_label_values


console = Console()


def load_object(spec: str) -> Any:
    """
    Resolve a "module:attribute" reference.

    Args:
        spec: Import path, e.g. "my_engine:create_engine"

    Returns:
        The referenced object
    """
    module_name, _, attribute = spec.partition(":")
    if not module_name or not attribute:
        raise click.BadParameter(f"expected 'module:attribute', got {spec!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(f"cannot import {module_name}: {e}")
    try:
        return getattr(module, attribute)
    except AttributeError:
        raise click.BadParameter(f"{module_name} has no attribute {attribute}")


def print_labels(values: List[str], label: str):
    if label == SOURCE_LABEL:
        console.print("available source technologies:")
    else:
        console.print("available target technologies:")
    for value in values:
        console.print(value)


@click.group()
@click.version_option(version=__version__, prog_name="CONVOY")
def cli():
    """
    CONVOY - Static Analysis Provider Orchestrator

    Runs rules against analysis providers and writes the results.
    """
    pass


@cli.command()
@click.option('--input', '-i', 'input_path', type=click.Path(), help='Path to application source code or a binary')
@click.option('--output', '-o', 'output_dir', type=click.Path(), help='Directory for analysis output')
@click.option('--source', '-s', 'sources', multiple=True, help='Source technology to consider for analysis')
@click.option('--target', '-t', 'targets', multiple=True, help='Target technology to consider for analysis')
@click.option('--rules', 'rules', multiple=True, type=click.Path(exists=True), help='Rule file or directory')
@click.option('--mode', '-m', default=AnalysisMode.FULL.value,
              type=click.Choice([m.value for m in AnalysisMode]), help='Analysis mode (default: full)')
@click.option('--provider-settings', type=click.Path(exists=True, dir_okay=False),
              help='JSON/YAML list of provider configurations')
@click.option('--context-lines', default=100, type=int, help='Number of lines of source code to include in output (default: 100)')
@click.option('--http-proxy', help='HTTP proxy string URL')
@click.option('--https-proxy', help='HTTPS proxy string URL')
@click.option('--no-proxy', help='Proxy excluded URLs')
@click.option('--analyze-known-libraries', is_flag=True, help='Analyze known open-source libraries')
@click.option('--json-output', is_flag=True, help='Also write JSON copies of the output')
@click.option('--skip-static-report', is_flag=True, help='Do not generate the static report')
@click.option('--engine', 'engine_spec', help='Rule engine factory as module:attribute')
@click.option('--report-builder', 'report_builder_spec', help='Report builder factory as module:attribute')
@click.option('--list-sources', is_flag=True, help='List rules for available migration sources')
@click.option('--list-targets', is_flag=True, help='List rules for available migration targets')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def analyze(
    input_path: Optional[str],
    output_dir: Optional[str],
    sources: tuple,
    targets: tuple,
    rules: tuple,
    mode: str,
    provider_settings: Optional[str],
    context_lines: int,
    http_proxy: Optional[str],
    https_proxy: Optional[str],
    no_proxy: Optional[str],
    analyze_known_libraries: bool,
    json_output: bool,
    skip_static_report: bool,
    engine_spec: Optional[str],
    report_builder_spec: Optional[str],
    list_sources: bool,
    list_targets: bool,
    verbose: bool,
):
    """
    Analyze application source code.

    This runs the complete CONVOY pipeline:
    1. Provider configuration merging
    2. Rule loading and provider start-up
    3. Rule evaluation alongside dependency collection
    4. Output writing and report hand-off

    Example:
        convoy analyze -i ./app -o ./out --rules ./rules --engine my_engine:create
    """
    if list_sources or list_targets:
        configure_logging(verbose=verbose)
        label = SOURCE_LABEL if list_sources else TARGET_LABEL
        try:
            values = list_label_values(rules, label)
        except RuleParseError as e:
            console.print(f"[bold red]Failed to read rule labels:[/bold red] {e}")
            sys.exit(1)
        print_labels(values, label)
        return

    if not input_path or not output_dir:
        raise click.UsageError("--input and --output are required for analysis")
    if not engine_spec:
        raise click.UsageError("--engine is required for analysis")

    try:
        provider_configs = load_provider_settings(provider_settings) if provider_settings else []
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(1)

    config = AnalysisConfig(
        input_path=input_path,
        output_dir=output_dir,
        mode=AnalysisMode(mode),
        sources=list(sources),
        targets=list(targets),
        rules=list(rules),
        provider_configs=provider_configs,
        context_lines=context_lines,
        http_proxy=http_proxy,
        https_proxy=https_proxy,
        no_proxy=no_proxy,
        analyze_known_libraries=analyze_known_libraries,
        json_output=json_output,
        skip_static_report=skip_static_report,
    )

    engine_factory = load_object(engine_spec)
    report_builder = load_object(report_builder_spec)() if report_builder_spec else None

    Path(output_dir).mkdir(parents=True, exist_ok=True)
    configure_logging(verbose=verbose, log_file=Path(output_dir) / "analysis.log")

    console.print(f"[green]Input:[/green] {input_path}")
    console.print(f"[green]Output:[/green] {output_dir}")
    console.print(f"[green]Mode:[/green] {mode}")
    console.print(f"[green]Sources:[/green] {', '.join(sources) or '-'}")
    console.print(f"[green]Targets:[/green] {', '.join(targets) or '-'}")
    console.print()

    asyncio.run(run_analysis(config, engine_factory, report_builder))


async def run_analysis(config: AnalysisConfig, engine_factory, report_builder=None):
    """
    Run the analysis pipeline.
    """
    orchestrator = AnalysisOrchestrator(
        config,
        engine_factory=engine_factory,
        report_builder=report_builder,
    )

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:

            task = progress.add_task("[cyan]Evaluating rules...", total=None)
            artifacts = await orchestrator.run()
            progress.update(task, description="[green]Analysis complete!")

    except KeyboardInterrupt:
        console.print("\n\n[yellow]Analysis interrupted by user[/yellow]")
        sys.exit(1)

    except Exception as e:
        console.print(f"\n[bold red]Error during analysis:[/bold red] {e}")
        sys.exit(1)

    console.print(f"\n[green]Analysis results saved to:[/green] {artifacts.analysis_output}")
    if artifacts.dependency_output:
        console.print(f"[green]Dependencies saved to:[/green] {artifacts.dependency_output}")
    else:
        console.print("[yellow]No dependency output was produced[/yellow]")

    return artifacts


@cli.command()
def version():
    """Show version information and components"""
    console.print(f"\n[bold cyan]CONVOY v{__version__}[/bold cyan]")
    console.print("[cyan]Static Analysis Provider Orchestrator[/cyan]\n")

    table = Table(title="Components")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Role", style="green")

    table.add_row("ConfigMerger", "Provider configuration merging")
    table.add_row("LabelSelectorBuilder", "Rule selection expression")
    table.add_row("ProviderLifecycleManager", "Provider start-up and shutdown")
    table.add_row("DependencyCollector", "Concurrent dependency inventory")
    table.add_row("RuleEvaluationCoordinator", "Rule engine hand-off")
    table.add_row("OutputAggregator", "Deterministic artifacts")

    console.print(table)
    console.print()


if __name__ == '__main__':
    cli()
