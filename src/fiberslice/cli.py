"""
Command-line interface for fiberslice.

Provides commands for slicing meshes to G-code, validating print profiles
and inspecting the layer schedule.
"""

from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from fiberslice import __version__
from fiberslice.core.config import PrintProfile, load_profile, validate_profile
from fiberslice.core.exceptions import FiberSliceError
from fiberslice.core.logging import configure_logging
from fiberslice.geometry.mesh import Mesh
from fiberslice.pipeline import SlicePipeline
from fiberslice.slicing.resolver import LayerSchedule

console = Console()


def _profile(path: Optional[Path]) -> PrintProfile:
    return load_profile(path) if path is not None else PrintProfile()


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default="WARNING", help="Log level")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
def main(log_level: str, json_logs: bool) -> None:
    """fiberslice - continuous fiber slicer."""
    configure_logging(level=log_level, json_output=json_logs)


@main.command("slice")
@click.argument("meshes", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--profile", "-p", "profile_path", type=click.Path(exists=True, path_type=Path), help="Profile YAML")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Output G-code file")
@click.option("--workers", "-w", type=int, default=None, help="Worker threads for slicing")
@click.option("--on-bed/--as-is", default=True, help="Drop meshes onto the bed before slicing")
def slice_command(
    meshes: Tuple[Path, ...],
    profile_path: Optional[Path],
    output: Optional[Path],
    workers: Optional[int],
    on_bed: bool,
) -> None:
    """Slice one or more meshes into a G-code program."""
    try:
        profile = _profile(profile_path)
        loaded = [Mesh.load(path) for path in meshes]
        if on_bed:
            loaded = [mesh.on_bed() for mesh in loaded]

        with console.status("Slicing..."):
            result = SlicePipeline(profile, workers=workers).run(loaded)

        output = output or meshes[0].with_suffix(".gcode")
        output.write_text(result.gcode)

        console.print(f"[green]✓[/green] Wrote {output} ({len(result.schedule)} layers)")
        for step, seconds in result.timings.items():
            console.print(f"  {step}: {seconds:.2f}s")
        if result.warnings:
            console.print(f"[yellow]![/yellow] {len(result.warnings)} warnings")
            for warning in result.warnings[:20]:
                layer = "" if warning.layer is None else f"layer {warning.layer}: "
                console.print(f"  {layer}{warning.message}")
    except FiberSliceError as e:
        console.print(f"[red]✗[/red] Slicing failed: {e}")
        raise SystemExit(1)


@main.command("validate")
@click.argument("profile_path", type=click.Path(exists=True, path_type=Path))
def validate_command(profile_path: Path) -> None:
    """Validate a print profile."""
    try:
        profile = load_profile(profile_path)
        warnings = validate_profile(profile)
    except FiberSliceError as e:
        console.print(f"[red]✗[/red] Invalid profile: {e}")
        raise SystemExit(1)

    if not warnings:
        console.print(f"[green]✓[/green] {profile_path} is valid")
        return

    table = Table(title=f"Warnings: {profile_path.name}")
    table.add_column("Layer", style="cyan")
    table.add_column("Message")
    for warning in warnings:
        table.add_row("-" if warning.layer is None else str(warning.layer), warning.message)
    console.print(table)


@main.command("layers")
@click.argument("mesh_path", type=click.Path(exists=True, path_type=Path))
@click.option("--profile", "-p", "profile_path", type=click.Path(exists=True, path_type=Path), help="Profile YAML")
def layers_command(mesh_path: Path, profile_path: Optional[Path]) -> None:
    """Show the resolved layer schedule of a mesh."""
    try:
        profile = _profile(profile_path)
        mesh = Mesh.load(mesh_path).on_bed()
        schedule = LayerSchedule.build(profile, mesh.max_z)
    except FiberSliceError as e:
        console.print(f"[red]✗[/red] Failed to build layers: {e}")
        raise SystemExit(1)

    table = Table(title=f"Layers: {mesh_path.name}")
    table.add_column("Layer", style="cyan")
    table.add_column("Bottom")
    table.add_column("Top")
    table.add_column("Height")
    table.add_column("Extruder")
    table.add_column("Bed")
    for layer in schedule:
        table.add_row(
            str(layer.index),
            f"{layer.bottom:.3f}",
            f"{layer.top:.3f}",
            f"{layer.height:.3f}",
            f"{layer.profile.filament.extruder_temp:.1f}",
            f"{layer.profile.filament.bed_temp:.1f}",
        )
    console.print(table)


if __name__ == "__main__":
    main()
