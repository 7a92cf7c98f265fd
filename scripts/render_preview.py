#!/usr/bin/env python3
"""
Preview Rendering CLI

Renders a LaTeX file to per-page SVG images through the compilation queue and
reports on the host toolchain.

Commands:
    render - Compile a .tex file and print the page image locations
    doctor - Check toolchain binaries and sandbox capability

Examples:\n

    render_preview.py render paper.tex                      # Render a document

    render_preview.py render paper.tex --verbose            # Show raw diagnostics

    render_preview.py render paper.tex --config my.yaml     # Use a config file

    render_preview.py doctor                                # Check the toolchain
"""

from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from texview.contexts.rendering import (
    CompilationPipeline,
    CompilationQueue,
    CompileRequest,
    ConfigError,
    load_config,
)
from texview.contexts.rendering.logger import setup_rendering_logger
from texview.utils.environment import check_dependencies, detect_sandbox_restrictions
from texview.utils.timestamp import format_timestamp, now

app = typer.Typer(
    help="Render LaTeX documents to SVG pages with the sandboxed texview pipeline",
    add_completion=False,
    invoke_without_command=True,
)


@app.callback()
def main(ctx: typer.Context):
    """Show help by default when no command is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _load_or_exit(config_path: Optional[Path]):
    try:
        return load_config(config_path)
    except ConfigError as e:
        typer.secho(f"Error: {e}\n", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)


@app.command("render")
def render_command(
    tex_file: Annotated[
        Path,
        typer.Argument(help="LaTeX source file", exists=True, dir_okay=False, readable=True),
    ],
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="YAML rendering configuration"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging and full diagnostics"),
    ] = False,
    log_dir: Annotated[
        Optional[Path],
        typer.Option("--log-dir", help="Directory for render.log (default: outs/logs/render_<ts>)"),
    ] = None,
):
    """
    Render a LaTeX file to SVG pages.

    Examples:\n

        $ render_preview.py render paper.tex

        $ render_preview.py render paper.tex --verbose
    """
    config = _load_or_exit(config_path)
    if log_dir is None:
        log_dir = Path("outs") / "logs" / f"render_{now()}"
    setup_rendering_logger(log_dir, latex_compiler=config.latex_compiler, verbose=verbose)

    request = CompileRequest(
        text=tex_file.read_text(encoding="utf-8", errors="replace"),
        source_dir=tex_file.resolve().parent,
    )

    typer.secho(f"\nRendering: {tex_file}", fg=typer.colors.BLUE, bold=True)
    typer.echo(f"Submitted: {format_timestamp(request.submitted_at)}")
    typer.echo("")

    with CompilationQueue(CompilationPipeline(config, verbose=verbose)) as queue:
        submission = queue.submit(request)
        if not submission.accepted:
            typer.secho(
                f"Queue rejected the request: {submission.reason.value}", fg=typer.colors.RED
            )
            raise typer.Exit(code=1)
        result = submission.future.result()

    typer.echo("")
    if result.success:
        typer.secho(
            f"✓ Rendered {result.page_count} pages in {result.primary_passes} passes",
            fg=typer.colors.GREEN,
            bold=True,
        )
        for page in result.pages:
            typer.echo(f"  {page}")
        for note in result.advisories:
            typer.secho(f"  ! {note.kind.value}: {note.message}", fg=typer.colors.YELLOW)
        if verbose and result.warnings:
            typer.echo("\nWarnings:")
            for warning in result.warnings[:10]:
                typer.echo(f"  - {warning}")
            if len(result.warnings) > 10:
                typer.echo(f"  ... and {len(result.warnings) - 10} more")
    else:
        typer.secho(
            f"✗ Rendering failed: {result.failure_kind.value}", fg=typer.colors.RED, bold=True
        )
        if result.errors:
            typer.echo("\nErrors:")
            for error in result.errors[:10]:
                typer.secho(f"  - {error}", fg=typer.colors.RED)
        if verbose or not result.errors:
            typer.echo(f"\n{result.diagnostic}")

    typer.echo(f"  Log: {log_dir / 'render.log'}")
    typer.echo("")
    raise typer.Exit(code=0 if result.success else 1)


@app.command("doctor")
def doctor_command(
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="YAML rendering configuration"),
    ] = None,
):
    """Check that the toolchain is installed and report sandbox capability."""
    config = _load_or_exit(config_path)

    missing = check_dependencies(config.latex_compiler, config.rasterizer, config.biber_tool)
    if missing:
        typer.secho("✗ Missing toolchain binaries:", fg=typer.colors.RED, bold=True)
        for name in missing:
            typer.echo(f"  - {name}")
    else:
        typer.secho("✓ Toolchain complete", fg=typer.colors.GREEN, bold=True)

    probe = detect_sandbox_restrictions()
    if probe.disabled:
        typer.secho(f"! Sandbox unavailable: {probe.reason}", fg=typer.colors.YELLOW)
    else:
        typer.echo("  Sandbox available")

    raise typer.Exit(code=1 if missing else 0)


if __name__ == "__main__":
    app()
