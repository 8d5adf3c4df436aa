"""CLI entry point for the rangefuse pipeline.

Usage:
    rangefuse run                              # Run full pipeline
    rangefuse run-step s01_frame_odometry      # Run single step
    rangefuse info                             # Show pipeline info
    rangefuse align source.npz target.npz      # Align two frames
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import typer
from rich.console import Console
from rich.table import Table

from rangefuse.core.logging import setup_logging

app = typer.Typer(name="rangefuse", help="Range-data registration and surfel fusion")
console = Console()

DEFAULT_CONFIG = Path("configs/pipeline.yaml")


@app.command()
def run(config: Path = typer.Option(DEFAULT_CONFIG, help="Pipeline config path")) -> None:
    """Run the full pipeline."""
    setup_logging()
    from rangefuse.core.pipeline_runner import run_pipeline

    run_pipeline(config)


@app.command()
def run_step(
    step_name: str = typer.Argument(..., help="Step name (e.g. s01_frame_odometry)"),
    config: Path = typer.Option(DEFAULT_CONFIG, help="Pipeline config path"),
    input_json: str = typer.Option(None, "--input", "-i", help="Input as JSON string"),
) -> None:
    """Run a single pipeline step."""
    import json

    setup_logging()
    from rangefuse.core.pipeline_runner import load_pipeline_config, import_step_class, load_step_config

    pipeline_cfg = load_pipeline_config(config)
    entry = next((s for s in pipeline_cfg.steps if s.name == step_name), None)
    if entry is None:
        console.print(f"[red]Step '{step_name}' not found in pipeline config[/red]")
        raise typer.Exit(1)

    step_cls = import_step_class(entry.module)
    step_config = load_step_config(Path(entry.config_file), step_cls.config_type)
    step_instance = step_cls(config=step_config, data_root=pipeline_cfg.data_root)

    input_data = dict(entry.inputs)
    if input_json:
        input_data.update(json.loads(input_json))
    else:
        schema = step_cls.input_type.model_json_schema()
        missing = [name for name in schema.get("required", []) if name not in input_data]
        if missing:
            console.print(f"[yellow]Step '{step_name}' requires input fields: {missing}[/yellow]")
            console.print("[yellow]Use --input/-i with JSON string, e.g.:[/yellow]")
            console.print(f'  rangefuse run-step {step_name} -i \'{{"field": "value"}}\'')
            raise typer.Exit(1)

    console.print(f"[green]Running step: {step_name}[/green]")
    step_input = step_cls.input_type(**input_data)
    output = step_instance.execute(step_input)
    console.print(f"[green]Done. Output:[/green] {output.model_dump_json(indent=2)}")


@app.command()
def info(config: Path = typer.Option(DEFAULT_CONFIG, help="Pipeline config path")) -> None:
    """Show pipeline steps and their status."""
    from rangefuse.core.pipeline_runner import load_pipeline_config

    pipeline_cfg = load_pipeline_config(config)
    table = Table(title=f"Pipeline: {pipeline_cfg.project_name}")
    table.add_column("#", style="dim")
    table.add_column("Step", style="cyan")
    table.add_column("Module", style="green")
    table.add_column("Enabled", style="yellow")
    table.add_column("Depends On", style="dim")

    for i, step in enumerate(pipeline_cfg.steps, 1):
        table.add_row(
            str(i),
            step.name,
            step.module,
            "Y" if step.enabled else "N",
            ", ".join(step.depends_on) if step.depends_on else "-",
        )
    console.print(table)


@app.command()
def align(
    source: Path = typer.Argument(..., help="Source frame (.npz)"),
    target: Path = typer.Argument(..., help="Target frame (.npz)"),
    levels: int = typer.Option(3, help="Pyramid levels"),
    point_to_point: bool = typer.Option(False, "--point-to-point", help="Use point-to-point residuals"),
    voxel_size: float = typer.Option(None, help="Voxel edge of pyramid level 1 (default: stride sampling)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log per-iteration residuals"),
) -> None:
    """Align SOURCE onto TARGET and print the estimated transform."""
    setup_logging("DEBUG" if verbose else "INFO")
    from rangefuse.geometry.pointcloud import PointCloudPyramid
    from rangefuse.icp import MultiscaleIcp, MultiscaleIcpConfig
    from rangefuse.utils.io import load_frame

    icp_config = MultiscaleIcpConfig(
        residual="point_to_point" if point_to_point else "point_to_plane",
    )
    source_pyr = PointCloudPyramid.build(load_frame(source), num_levels=levels, voxel_size=voxel_size)
    target_pyr = PointCloudPyramid.build(load_frame(target), num_levels=levels, voxel_size=voxel_size)
    result = MultiscaleIcp(icp_config).align(source_pyr, target_pyr)

    table = Table(title="ICP levels (coarse to fine)")
    table.add_column("Level", style="cyan")
    table.add_column("Status", style="yellow")
    table.add_column("Iterations")
    table.add_column("Pairs")
    table.add_column("MSE", style="dim")
    for report in result.levels:
        table.add_row(
            str(report.level),
            report.status.value,
            str(report.iterations),
            str(report.num_correspondences),
            f"{report.mean_squared_residual:.3e}",
        )
    console.print(table)

    color = "green" if result.converged else "red"
    console.print(f"[{color}]Converged: {result.converged}[/{color}]")
    console.print(np.array2string(result.transform.as_matrix(), precision=6, suppress_small=True))


if __name__ == "__main__":
    app()
