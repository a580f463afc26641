"""Command line interface for wfgen."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import click
from pydantic import ValidationError

from wfgen.cli.logging_config import configure_logging
from wfgen.core.exceptions import SettingsError, WfgenError, WorkflowDocumentError
from wfgen.core.models import (
    GenerationResult,
    ValidationResult,
    WorkflowEnhancement,
    WorkflowGraph,
    WorkflowMetadata,
    WorkflowRequirements,
)
from wfgen.core.settings import AISettings, CacheSettings, SettingsManager, WfgenSettings
from wfgen.generation.analysis import WorkflowAnalyzer
from wfgen.generation.generator import WorkflowGenerator
from wfgen.registry.templates import TemplateRegistry

REQUIREMENT_TYPES = [
    "automation",
    "data-processing",
    "api-integration",
    "notification",
    "monitoring",
    "template",
    "enhancement",
]


def _parse_typed_names(values: tuple[str, ...], option: str) -> list[dict[str, str]]:
    """Parse ``type:name`` pairs; a bare ``type`` is named after itself."""
    parsed = []
    for value in values:
        kind, _, name = value.partition(":")
        kind = kind.strip()
        if not kind:
            raise click.BadParameter(f"expected type:name, got '{value}'", param_hint=option)
        parsed.append({"type": kind, "name": name.strip() or kind})
    return parsed


def _load_settings(model: Optional[str] = None, base_url: Optional[str] = None, no_cache: bool = False) -> WfgenSettings:
    """Stored settings with command line overrides, validated like file values.

    Raises:
        pydantic.ValidationError: If an override is out of range
    """
    settings = SettingsManager().load()
    ai_updates = {key: value for key, value in (("model", model), ("base_url", base_url)) if value}
    updates: dict[str, Any] = {}
    if ai_updates:
        updates["ai"] = AISettings.model_validate({**settings.ai.model_dump(), **ai_updates})
    if no_cache:
        updates["cache"] = CacheSettings.model_validate({**settings.cache.model_dump(), "enabled": False})
    return settings.model_copy(update=updates)


def _write_document(document: dict[str, Any], output: Optional[str]) -> None:
    text = json.dumps(document, indent=2, ensure_ascii=False)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        click.echo(f"Wrote {output}", err=True)
    else:
        click.echo(text)


def _echo_validation(metadata: WorkflowMetadata, validation: ValidationResult) -> None:
    status = "valid" if validation.is_valid else "INVALID"
    click.echo(
        f"Workflow is {status}: {metadata.node_count} nodes, {metadata.connection_count} connections, "
        f"complexity {metadata.complexity}/10, depth {metadata.max_depth}"
        + (", contains cycles" if metadata.has_loops else ""),
        err=True,
    )
    for issue in validation.errors:
        click.echo(f"  error: {issue}", err=True)
    for issue in validation.warnings:
        click.echo(f"  warning: {issue}", err=True)


def _read_document(file: str) -> dict[str, Any]:
    try:
        data = json.loads(Path(file).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        click.echo(f"Error: {file} is not valid JSON: {e}", err=True)
        sys.exit(1)
    if not isinstance(data, dict):
        click.echo(f"Error: {file} does not hold a workflow object", err=True)
        sys.exit(1)
    return data


@click.group()
@click.version_option(package_name="wfgen")
def cli() -> None:
    """Generate and validate automation workflow graphs."""
    pass


@cli.command()
@click.argument("description")
@click.option("--type", "requirement_type", type=click.Choice(REQUIREMENT_TYPES), default="automation")
@click.option("--name", help="Workflow display name")
@click.option("--step", "steps", multiple=True, help="Ordered processing step (repeatable)")
@click.option("--input", "inputs", multiple=True, help="Declared input as type:name (repeatable)")
@click.option("--output", "outputs", multiple=True, help="Declared output as type:name (repeatable)")
@click.option("--max-nodes", type=click.IntRange(min=1))
@click.option("--max-complexity", type=click.IntRange(1, 10))
@click.option("--tag", "tags", multiple=True)
@click.option("--model", help="Model id for the generation service")
@click.option("--base-url", help="Generation service base URL")
@click.option("--no-cache", is_flag=True, help="Do not reuse cached model responses")
@click.option("-o", "--output-file", "output_file", type=click.Path(dir_okay=False), help="Write the document here")
@click.option("--stats", is_flag=True, help="Print cache statistics and request metrics")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs")
def generate(
    description: str,
    requirement_type: str,
    name: Optional[str],
    steps: tuple[str, ...],
    inputs: tuple[str, ...],
    outputs: tuple[str, ...],
    max_nodes: Optional[int],
    max_complexity: Optional[int],
    tags: tuple[str, ...],
    model: Optional[str],
    base_url: Optional[str],
    no_cache: bool,
    output_file: Optional[str],
    stats: bool,
    verbose: bool,
) -> None:
    """Generate a workflow from a natural-language DESCRIPTION."""
    configure_logging(verbose)

    try:
        requirements = WorkflowRequirements.model_validate(
            {
                "description": description,
                "type": requirement_type,
                "name": name,
                "steps": list(steps),
                "inputs": _parse_typed_names(inputs, "--input"),
                "outputs": _parse_typed_names(outputs, "--output"),
                "constraints": {"maxNodes": max_nodes, "maxComplexity": max_complexity},
                "tags": list(tags),
            }
        )
    except ValidationError as e:
        click.echo(f"Error: invalid requirements:\n{e}", err=True)
        sys.exit(1)

    try:
        settings = _load_settings(model, base_url, no_cache)
    except (SettingsError, ValidationError) as e:
        click.echo(f"Error: invalid settings: {e}", err=True)
        sys.exit(1)

    async def _run() -> tuple[GenerationResult, Optional[dict[str, Any]], dict[str, Any]]:
        async with WorkflowGenerator(settings) as generator:
            result = await generator.generate(requirements)
            return result, generator.get_cache_stats(), generator.get_metrics()

    try:
        result, cache_stats, metrics = asyncio.run(_run())
    except WfgenError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    _write_document(result.workflow.to_document(), output_file)
    _echo_validation(result.metadata, result.validation)
    for fallback in result.fallbacks:
        click.echo(f"  fallback: {fallback['stage']}: {fallback['message']}", err=True)
    if stats:
        click.echo(json.dumps({"cache": cache_stats, "requests": metrics, "timings": result.timings}, indent=2), err=True)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def validate(file: str, output_json: bool) -> None:
    """Validate a workflow document FILE; exits 1 when it is invalid."""
    configure_logging(False)
    data = _read_document(file)
    try:
        graph = WorkflowGraph.from_document(data)
    except (WorkflowDocumentError, ValidationError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    metadata, validation = WorkflowAnalyzer(_registry()).evaluate(graph)

    if output_json:
        click.echo(
            json.dumps({"metadata": metadata.model_dump(), "validation": validation.model_dump(exclude_none=True)}, indent=2)
        )
    else:
        _echo_validation(metadata, validation)

    if not validation.is_valid:
        sys.exit(1)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--error-handling", "targets", multiple=True, required=True, help="Node (name or id) to guard")
@click.option("-o", "--output-file", "output_file", type=click.Path(dir_okay=False))
def enhance(file: str, targets: tuple[str, ...], output_file: Optional[str]) -> None:
    """Add error handling after nodes of the workflow document FILE."""
    configure_logging(False)
    data = _read_document(file)
    enhancements = [WorkflowEnhancement(type="add-error-handling", target=target) for target in targets]

    async def _run() -> tuple[WorkflowGraph, WorkflowMetadata, ValidationResult]:
        async with WorkflowGenerator(_load_settings()) as generator:
            return generator.enhance(data, enhancements)

    try:
        graph, metadata, validation = asyncio.run(_run())
    except (WfgenError, ValidationError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    _write_document(graph.to_document(), output_file)
    _echo_validation(metadata, validation)


@cli.command()
@click.option("--category", help="Only list templates of this category")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def templates(category: Optional[str], output_json: bool) -> None:
    """List the node templates graphs can be built from."""
    registry = _registry()
    if category and category not in registry.categories():
        click.echo(f"Error: unknown category '{category}'", err=True)
        click.echo(f"  Available: {', '.join(registry.categories())}", err=True)
        sys.exit(1)

    selected = registry.by_category(category) if category else [registry.get(t) for t in registry.types()]
    if output_json:
        click.echo(json.dumps([t.model_dump(mode="json") for t in selected if t is not None], indent=2))
        return

    for template in selected:
        if template is None:
            continue
        flags = []
        if template.requires_credentials:
            flags.append("credentials")
        if template.branching:
            flags.append("branching")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"{template.type} (v{template.type_version}, {template.category}){suffix}")
        if template.description:
            click.echo(f"    {template.description}")


def _registry() -> TemplateRegistry:
    try:
        settings = SettingsManager().load()
    except (SettingsError, ValidationError):
        settings = WfgenSettings()
    path = Path(settings.templates_path) if settings.templates_path else None
    return TemplateRegistry.with_extra_templates(path)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
