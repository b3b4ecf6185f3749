"""Command-line interface for streakflow."""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import numpy as np
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

app = typer.Typer(
    name="streakflow",
    help="Animated streak-line meshes for 2D velocity fields",
    add_completion=False,
)
console = Console()

# Demo vortex centres (lon, lat), matching the continental US demo view
DEMO_VORTICES = [(-98.0, 39.0), (-78.0, 39.0), (-108.0, 29.0)]


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load_grid(path: Path):
    from streakflow.models.grid import VelocityGrid

    with np.load(path) as archive:
        return VelocityGrid(
            data=archive["data"],
            columns=int(archive["columns"]),
            rows=int(archive["rows"]),
            cell_size=float(archive["cell_size"]) if "cell_size" in archive else 1.0,
        )


def _build(grid, smoothing, seed, lines, worker):
    from streakflow.core.config import get_settings
    from streakflow.pipeline.processors import create_processor

    settings = get_settings()
    if lines is not None:
        settings.trace.lines_per_visualization = lines
    if worker:
        settings.use_worker = True

    async def _run():
        async with create_processor(settings) as processor:
            return await processor.create_stream_lines_mesh(grid, smoothing, seed=seed)

    return asyncio.run(_run())


def _report(mesh, output: Path) -> None:
    table = Table(title="Streamline Mesh")
    table.add_column("Property")
    table.add_column("Value")
    table.add_row("Vertices", f"{mesh.vertex_count:,}")
    table.add_row("Triangles", f"{mesh.triangle_count:,}")
    table.add_row("Segments", f"{mesh.segment_count:,}")
    if mesh.vertex_count:
        total_time = mesh.attribute("total_time")
        speed = mesh.attribute("speed")
        table.add_row("Longest line", f"{float(total_time.max()):.1f} s")
        table.add_row("Speed range", f"{float(speed.min()):.4f} – {float(speed.max()):.4f}")
    console.print(table)
    console.print(f"[green]Mesh saved to {output}[/green]")


@app.command()
def mesh(
    input_path: Annotated[Path, typer.Argument(help="Grid archive (.npz with data, columns, rows, cell_size)")],
    output: Annotated[Path, typer.Argument(help="Output mesh archive (.npz)")],
    smoothing: Annotated[Optional[float], typer.Option(help="Gaussian sigma in cells")] = None,
    seed: Annotated[Optional[int], typer.Option(help="Random seed")] = None,
    lines: Annotated[Optional[int], typer.Option(min=1, help="Number of streamlines")] = None,
    worker: Annotated[bool, typer.Option(help="Run in a worker process")] = False,
    debug: Annotated[bool, typer.Option(help="Verbose logging")] = False,
):
    """Build a streamline mesh from a velocity grid."""
    from streakflow.core.errors import FlowError

    _configure_logging(debug)

    try:
        grid = _load_grid(input_path)
        console.print(f"[bold]Tracing {grid.columns}x{grid.rows} grid...[/bold]")
        result = _build(grid, smoothing, seed, lines, worker)
    except FlowError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    result.save(output)
    _report(result, output)


@app.command()
def vortices(
    output: Annotated[Path, typer.Argument(help="Output mesh archive (.npz)")] = Path("vortices.npz"),
    columns: Annotated[int, typer.Option(min=1, help="Grid columns")] = 240,
    rows: Annotated[int, typer.Option(min=1, help="Grid rows")] = 120,
    cell_size: Annotated[float, typer.Option(help="Pixels per cell")] = 4.0,
    spacing: Annotated[float, typer.Option(help="Degrees per cell")] = 0.25,
    smoothing: Annotated[Optional[float], typer.Option(help="Gaussian sigma in cells")] = 2.0,
    seed: Annotated[Optional[int], typer.Option(help="Random seed")] = None,
    lines: Annotated[Optional[int], typer.Option(min=1, help="Number of streamlines")] = None,
    worker: Annotated[bool, typer.Option(help="Run in a worker process")] = False,
    debug: Annotated[bool, typer.Option(help="Verbose logging")] = False,
):
    """Build the mesh of a three-vortex demo field."""
    from streakflow.core.errors import FlowError
    from streakflow.models.field import create_vortex_field
    from streakflow.models.sources import sample_field

    _configure_logging(debug)
    field = create_vortex_field(DEMO_VORTICES)
    origin = (-98.0 - columns * spacing / 2, 39.0 - rows * spacing / 2)

    try:
        grid = sample_field(
            field,
            columns,
            rows,
            cell_size=cell_size,
            origin=origin,
            spacing=(spacing, spacing),
        )
        console.print(f"[bold]Tracing vortex field ({columns}x{rows})...[/bold]")
        result = _build(grid, smoothing, seed, lines, worker)
    except FlowError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    result.save(output)
    _report(result, output)


@app.command()
def version():
    """Show version information."""
    from streakflow import __version__
    console.print(f"streakflow v{__version__}")


if __name__ == "__main__":
    app()
