"""Thin CLI wrapper for image_builder.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from functools import partial
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from image_builder import __version__
from image_builder.config import Settings, get_settings, print_settings_json
from image_builder.errors import ConsistencyError, ImageBuilderError

app = typer.Typer(
    name="imagebuilder",
    help="Container image builder - staleness checks, cached builds and ledger merging",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"image-builder version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def fail(error: ImageBuilderError) -> typer.Exit:
    """Report an error and build the matching exit."""
    err_console.print(f"[red]Error ({error.code}): {error}[/red]")
    return typer.Exit(code=2 if isinstance(error, ConsistencyError) else 1)


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Container image builder - staleness checks, cached builds and ledger merging."""
    configure_logging("DEBUG" if verbose else get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings))
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Manifest:[/bold]")
        console.print(f"  Manifest path:       {settings.manifest_path}")
        console.print(f"  Registry override:   {settings.registry_override or '(none)'}")
        console.print(f"  Repo prefix:         {settings.repo_prefix or '(none)'}")
        console.print(f"  Source repo prefix:  {settings.source_repo_prefix or '(none)'}")
        console.print(f"  Source repo URL:     {settings.source_repo_url or '(none)'}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Push:                {settings.push_enabled}")
        console.print(f"  Skip pulling:        {settings.skip_pulling}")
        console.print(f"  No cache:            {settings.no_cache}")
        console.print(f"  Dry run:             {settings.dry_run}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Registry timeout:    {settings.registry_timeout}")
        console.print(f"  Build timeout:       {settings.build_timeout}")


def _manifest_filter(
    architecture: str | None,
    os_type: str | None,
    os_versions: list[str] | None,
    paths: list[str] | None,
    product_versions: list[str] | None,
    repos: list[str] | None,
):
    from image_builder.manifest.filter import ManifestFilter

    return ManifestFilter(
        architecture=architecture,
        os_type=os_type,
        os_versions=os_versions or [],
        paths=paths or [],
        product_versions=product_versions or [],
        repos=repos or [],
    )


def _write_output(content: str, output: Path | None) -> None:
    if output is None:
        typer.echo(content, nl=not content.endswith("\n"))
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content, encoding="utf-8")
    console.print(f"[green]Wrote {output}[/green]")


@app.command()
def stale(
    subscriptions_path: Annotated[
        Path, typer.Argument(help="JSON file listing the subscriptions to check")
    ],
    os_type: Annotated[
        str,
        typer.Option("--os-type", help="Only check subscriptions for this OS type (glob)"),
    ] = "*",
    variables: Annotated[
        list[str] | None,
        typer.Option("--var", help="Manifest variable override 'name=value' (can be repeated)"),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the result to a file instead of stdout"),
    ] = None,
) -> None:
    """List the Dockerfiles whose base images changed since the last publish.

    The result is a JSON list of {subscriptionId, imagePaths} objects.
    """
    from image_builder.builds.digests import DigestCache, registry_lookup
    from image_builder.builds.stale import (
        get_stale_images,
        load_subscription,
        load_subscriptions,
    )
    from image_builder.engine.registry import HttpRegistryClient
    from image_builder.manifest.variables import parse_variable_overrides

    settings = get_settings()
    registry = HttpRegistryClient(timeout=settings.registry_timeout)
    try:
        overrides = parse_variable_overrides(variables)
        subscriptions = load_subscriptions(subscriptions_path)
        results = get_stale_images(
            subscriptions,
            DigestCache(registry_lookup(registry)),
            os_type=os_type,
            loader=partial(load_subscription, variable_overrides=overrides),
        )
    except ImageBuilderError as e:
        raise fail(e) from None
    finally:
        registry.close()

    _write_output(json.dumps([r.to_dict() for r in results], indent=2) + "\n", output)


@app.command()
def build(
    manifest: Annotated[
        Path | None,
        typer.Option("--manifest", "-m", help="Manifest file (defaults to settings)"),
    ] = None,
    ledger: Annotated[
        Path | None,
        typer.Option("--ledger", help="Ledger of the previous publish, used for caching"),
    ] = None,
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Ledger file written for this build"),
    ] = Path("image-info.json"),
    architecture: Annotated[
        str | None,
        typer.Option("--architecture", help="Only build this architecture (glob)"),
    ] = None,
    os_type: Annotated[
        str | None,
        typer.Option("--os-type", help="Only build this OS type (glob)"),
    ] = None,
    os_versions: Annotated[
        list[str] | None,
        typer.Option("--os-version", help="Only build these OS versions (can be repeated)"),
    ] = None,
    paths: Annotated[
        list[str] | None,
        typer.Option("--path", help="Only build these Dockerfile paths (can be repeated)"),
    ] = None,
    product_versions: Annotated[
        list[str] | None,
        typer.Option("--version-filter", help="Only build these product versions"),
    ] = None,
    repos: Annotated[
        list[str] | None,
        typer.Option("--repo", help="Only build these repos (can be repeated)"),
    ] = None,
    variables: Annotated[
        list[str] | None,
        typer.Option("--var", help="Manifest variable override 'name=value' (can be repeated)"),
    ] = None,
    push: Annotated[
        bool | None,
        typer.Option("--push/--no-push", help="Push built images"),
    ] = None,
    skip_pulling: Annotated[
        bool | None,
        typer.Option("--skip-pulling", help="Do not pull base images before building"),
    ] = None,
    no_cache: Annotated[
        bool | None,
        typer.Option("--no-cache", help="Always build, never reuse previous images"),
    ] = None,
    dry_run: Annotated[
        bool | None,
        typer.Option("--dry-run", "-n", help="Log docker commands without running them"),
    ] = None,
) -> None:
    """Build the manifest's platforms, reusing unchanged images."""
    from image_builder.builds.service import BuildOptions, BuildService, load_graph
    from image_builder.engine.docker import DockerCli
    from image_builder.engine.git import GitCli
    from image_builder.ledger.io import load_bound_ledger, write_ledger
    from image_builder.manifest.variables import parse_variable_overrides

    settings = _override_settings(
        get_settings(),
        push_enabled=push,
        skip_pulling=skip_pulling,
        no_cache=no_cache,
        dry_run=dry_run,
    )
    manifest_path = manifest or settings.manifest_path
    manifest_filter = _manifest_filter(
        architecture, os_type, os_versions, paths, product_versions, repos
    )

    try:
        graph, name_resolver = load_graph(
            manifest_path,
            settings,
            manifest_filter=manifest_filter,
            variable_overrides=parse_variable_overrides(variables),
        )
        prior_ledger = load_bound_ledger(ledger, graph) if ledger is not None else None
        service = BuildService(
            graph,
            DockerCli(
                settings.docker_executable,
                dry_run=settings.dry_run,
                build_timeout=settings.build_timeout,
            ),
            GitCli(settings.git_executable),
            prior_ledger=prior_ledger,
            options=BuildOptions.from_settings(settings),
            name_resolver=name_resolver,
        )
        summary = service.run()
        write_ledger(summary.ledger, output)
    except ImageBuilderError as e:
        raise fail(e) from None

    console.print(
        f"[green]Built {len(summary.built)} platform(s), "
        f"reused {len(summary.reused)} platform(s)[/green]"
    )
    for decision in summary.decisions:
        state = decision.state.value
        console.print(f"  {decision.platform.dockerfile}: {state} ({decision.reason})")
    console.print(f"Ledger written to {output}")


def _override_settings(settings: Settings, **overrides: bool | None) -> Settings:
    update = {name: value for name, value in overrides.items() if value is not None}
    return settings.model_copy(update=update)


@app.command()
def merge(
    source_dir: Annotated[
        Path, typer.Argument(help="Folder holding the ledger files to merge")
    ],
    destination: Annotated[Path, typer.Argument(help="Merged ledger file to write")],
    manifest: Annotated[
        Path | None,
        typer.Option("--manifest", "-m", help="Manifest the ledgers belong to"),
    ] = None,
    initial: Annotated[
        Path | None,
        typer.Option("--initial", help="Ledger used as the merge target"),
    ] = None,
    publish: Annotated[
        bool,
        typer.Option(
            "--publish",
            help="Remove content no longer in the manifest and replace tags",
        ),
    ] = False,
    commit_override: Annotated[
        str | None,
        typer.Option("--commit-override", help="Commit SHA recorded for updated platforms"),
    ] = None,
    variables: Annotated[
        list[str] | None,
        typer.Option("--var", help="Manifest variable override 'name=value' (can be repeated)"),
    ] = None,
) -> None:
    """Merge a folder of ledger files into one ledger."""
    from image_builder.builds.service import load_graph
    from image_builder.ledger.io import write_ledger
    from image_builder.ledger.service import merge_ledger_files
    from image_builder.manifest.variables import parse_variable_overrides

    settings = get_settings()
    try:
        graph = None
        if manifest is not None:
            graph, _ = load_graph(
                manifest, settings, variable_overrides=parse_variable_overrides(variables)
            )
        merged = merge_ledger_files(
            source_dir,
            graph=graph,
            initial_path=initial,
            publish=publish,
            commit_override=commit_override,
        )
        write_ledger(merged, destination)
    except ImageBuilderError as e:
        raise fail(e) from None

    console.print(f"[green]Merged ledger written to {destination}[/green]")


@app.command()
def trim(
    ledger: Annotated[Path, typer.Argument(help="Ledger file to trim in place")],
) -> None:
    """Remove platforms that were reused unchanged from a ledger."""
    from image_builder.ledger.io import load_ledger, write_ledger
    from image_builder.ledger.service import trim_unchanged_platforms

    try:
        write_ledger(trim_unchanged_platforms(load_ledger(ledger)), ledger)
    except ImageBuilderError as e:
        raise fail(e) from None

    console.print(f"[green]Trimmed {ledger}[/green]")


if __name__ == "__main__":
    app()
