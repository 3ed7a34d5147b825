"""CLI entry point for the voxfusion pipeline.

Usage:
    voxfusion run                          # Run full pipeline
    voxfusion run-step tsdf_integrate -i '{...}'  # Run single step
    voxfusion info                         # Show pipeline info
    voxfusion decode-depth frame.png       # Decode one encoded depth image
    voxfusion decode-labels scene.bin      # Decode one ground-truth stream
    voxfusion inspect scene_tsdf.npz       # Summarize a fused volume
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from voxfusion.core.errors import VoxFusionError
from voxfusion.core.logging import setup_logging

app = typer.Typer(name="voxfusion", help="Depth-to-TSDF fusion and ground-truth voxel decoding")
console = Console()

DEFAULT_CONFIG = Path("configs/pipeline.yaml")


@app.command()
def run(
    config: Path = typer.Option(DEFAULT_CONFIG, help="Pipeline config path"),
    log_level: str = typer.Option("INFO", help="Logging level"),
) -> None:
    """Run the full pipeline."""
    setup_logging(log_level)
    from voxfusion.core.pipeline_runner import run_pipeline

    try:
        run_pipeline(config)
    except VoxFusionError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)


@app.command()
def run_step(
    step_name: str = typer.Argument(..., help="Step name (e.g. tsdf_integrate)"),
    config: Path = typer.Option(DEFAULT_CONFIG, help="Pipeline config path"),
    input_json: str = typer.Option(None, "--input", "-i", help="Input as JSON string"),
) -> None:
    """Run a single pipeline step."""
    import json

    setup_logging()
    from voxfusion.core.pipeline_runner import load_pipeline_config, import_step_class, load_step_config

    pipeline_cfg = load_pipeline_config(config)
    entry = next((s for s in pipeline_cfg.steps if s.name == step_name), None)
    if entry is None:
        console.print(f"[red]Step '{step_name}' not found in pipeline config[/red]")
        raise typer.Exit(1)

    step_cls = import_step_class(entry.module)
    step_config = load_step_config(Path(entry.config_file), step_cls.config_type)
    step_instance = step_cls(config=step_config, data_root=pipeline_cfg.data_root)

    if input_json:
        input_data = json.loads(input_json)
    else:
        required = step_cls.get_input_schema().get("required", [])
        if required:
            console.print(f"[yellow]Step '{step_name}' requires input fields: {required}[/yellow]")
            console.print("[yellow]Use --input/-i with JSON string, e.g.:[/yellow]")
            console.print(f'  voxfusion run-step {step_name} -i \'{{"field": "value"}}\'')
            raise typer.Exit(1)
        input_data = {}

    console.print(f"[green]Running step: {step_name}[/green]")
    step_input = step_cls.input_type(**input_data)
    try:
        output = step_instance.execute(step_input)
    except VoxFusionError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Done. Output:[/green] {output.model_dump_json(indent=2)}")


@app.command()
def info(config: Path = typer.Option(DEFAULT_CONFIG, help="Pipeline config path")) -> None:
    """Show pipeline steps and their status."""
    from voxfusion.core.pipeline_runner import load_pipeline_config

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
def decode_depth(
    image: Path = typer.Argument(..., help="Encoded 16-bit depth PNG"),
    width: int = typer.Option(640, help="Frame width"),
    height: int = typer.Option(480, help="Frame height"),
    out: Path = typer.Option(None, help="Output .npy (default: next to the image)"),
) -> None:
    """Decode one encoded depth image to meters."""
    import numpy as np

    from voxfusion.utils.io import read_depth_image

    try:
        depth = read_depth_image(image, width, height)
    except VoxFusionError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    out = out or image.with_suffix(".npy")
    np.save(str(out), depth)
    valid = depth[depth > 0]
    console.print(f"[green]Decoded {image.name}[/green] -> {out}")
    if valid.size:
        console.print(f"  valid pixels: {valid.size}/{depth.size}, range {valid.min():.3f}-{valid.max():.3f} m")
    else:
        console.print("  no valid depth")


@app.command()
def decode_labels(
    stream: Path = typer.Argument(..., help="RLE ground-truth .bin file"),
    vox_size: tuple[int, int, int] = typer.Option((240, 144, 240), help="Grid dims nx ny nz"),
    out: Path = typer.Option(None, help="Output .npz (default: next to the stream)"),
) -> None:
    """Decode one ground-truth label stream."""
    import numpy as np

    from voxfusion.steps.s02_decode_labels.config import SUNCG_CLASS_MAP
    from voxfusion.utils.io import read_label_stream

    nx, ny, nz = vox_size
    try:
        labels = read_label_stream(stream, SUNCG_CLASS_MAP, nx * ny * nz)
    except VoxFusionError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    out = out or stream.with_suffix(".npz")
    np.savez_compressed(
        out,
        vox_origin=labels.vox_origin,
        cam_pose=labels.cam_pose,
        occupancy=labels.occupancy,
        segmentation=labels.segmentation,
    )
    console.print(f"[green]Decoded {stream.name}[/green] -> {out}")
    console.print(f"  origin: {np.round(labels.vox_origin, 4).tolist()}")
    console.print(f"  occupied: {int(labels.occupancy.sum())}/{labels.occupancy.size}")
    classes, counts = np.unique(labels.segmentation, return_counts=True)
    table = Table(title="Semantic classes")
    table.add_column("Class", style="cyan")
    table.add_column("Voxels", style="green")
    for cls_id, count in zip(classes, counts):
        table.add_row(str(int(cls_id)), str(int(count)))
    console.print(table)


@app.command()
def inspect(volume_path: Path = typer.Argument(..., help="Fused volume (.npz)")) -> None:
    """Summarize a fused TSDF volume."""
    from voxfusion.core.volume import TSDF_SENTINEL, VoxelVolume

    try:
        volume = VoxelVolume.load(volume_path)
    except VoxFusionError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    observed = volume.weight > 0
    table = Table(title=f"Volume: {volume_path.name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("vox_size", str(volume.grid.vox_size))
    table.add_row("vox_unit", f"{volume.grid.vox_unit:g}")
    table.add_row("vox_margin", f"{volume.grid.vox_margin:g}")
    table.add_row("precision", volume.precision)
    table.add_row("observed voxels", str(int(observed.sum())))
    table.add_row("sentinel voxels", str(int((volume.tsdf == TSDF_SENTINEL).sum())))
    table.add_row("max weight", f"{float(volume.weight.max()):g}")
    table.add_row("has height", "Y" if volume.height is not None else "N")
    console.print(table)


if __name__ == "__main__":
    app()
