"""Click CLI entry point for dsonrig."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import click

from dsonrig import __version__
from dsonrig.errors import DsonError
from dsonrig.exporter import export_baked_glb, export_glb
from dsonrig.loader import DsonAsset, LoaderSettings, load_asset
from dsonrig.pose import PosedSkeleton, load_pose
from dsonrig.skin_buffer import BackendLimits, SkinBufferPacker
from dsonrig.warning_policy import WarningPolicy, parse_code_list


def _build_warning_policy(
    warn_as_error: str | None, suppress_warning: str | None
) -> WarningPolicy | None:
    """Parse CLI warning options into a WarningPolicy, or None if unset."""
    if warn_as_error is None and suppress_warning is None:
        return None
    try:
        wae = parse_code_list(warn_as_error) if warn_as_error else frozenset()
        sup = parse_code_list(suppress_warning) if suppress_warning else frozenset()
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    return WarningPolicy(warn_as_error=wae, suppress=sup)


def _load_options(func: Callable) -> Callable:
    """Options shared by every command that loads a DSON file."""
    options = [
        click.argument("input_file", type=click.Path(exists=True, path_type=Path)),
        click.option(
            "--unit-scale",
            type=float,
            default=LoaderSettings.unit_scale,
            show_default=True,
            help="Scale applied to positions and translations (DSON uses centimetres).",
        ),
        click.option(
            "--strict",
            is_flag=True,
            default=False,
            help="Fail on the first load diagnostic instead of dropping the offending data.",
        ),
        click.option(
            "--warn-as-error",
            "warn_as_error",
            type=str,
            default=None,
            help="Comma-separated W-codes to treat as errors (e.g. W01,W02).",
        ),
        click.option(
            "--suppress-warning",
            "suppress_warning",
            type=str,
            default=None,
            help="Comma-separated W-codes to suppress (e.g. W05).",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _load(
    input_file: Path,
    unit_scale: float,
    strict: bool,
    warn_as_error: str | None,
    suppress_warning: str | None,
) -> DsonAsset:
    policy = _build_warning_policy(warn_as_error, suppress_warning)
    settings = LoaderSettings(unit_scale=unit_scale, strict=strict)
    return load_asset(input_file, settings=settings, policy=policy)


def _strip_suffix(path: Path, new_suffix: str) -> Path:
    stem = path.name
    for suffix in [".dsf", ".duf", ".json"]:
        if stem.endswith(suffix):
            stem = stem[: -len(suffix)]
            break
    return path.parent / f"{stem}{new_suffix}"


def summarize(asset: DsonAsset) -> dict:
    """JSON-serializable overview of a loaded asset."""
    hierarchy = asset.hierarchy
    return {
        "file_version": asset.document.file_version,
        "asset_id": asset.document.asset_info.id if asset.document.asset_info else None,
        "unit_scale": hierarchy.unit_scale,
        "nodes": [
            {
                "id": node.id,
                "type": node.type,
                "parent": node.parent,
                "depth": depth,
                "world_position": [round(float(v), 6) for v in node.world[:3, 3]],
            }
            for depth, node in hierarchy.walk()
        ],
        "dropped": [{"id": d.id, "reason": d.reason} for d in hierarchy.dropped],
        "bones": list(asset.bones),
        "meshes": [
            {
                "id": mesh.id,
                "node": mesh.node,
                "vertices": mesh.vertex_count,
                "triangles": len(mesh.indices) // 3,
                "uv_set": mesh.uv_set,
                "skin": mesh.skin,
                "overflowing_vertices": len(mesh.influences.excess) if mesh.influences else 0,
            }
            for mesh in asset.meshes.values()
        ],
    }


def _render_text(summary: dict) -> str:
    lines = [f"file_version: {summary['file_version']}"]
    if summary["asset_id"]:
        lines.append(f"asset: {summary['asset_id']}")
    lines.append(f"nodes: {len(summary['nodes'])} ({len(summary['bones'])} bones)")
    for node in summary["nodes"]:
        lines.append(f"{'  ' * (node['depth'] + 1)}{node['id']} [{node['type']}]")
    for dropped in summary["dropped"]:
        lines.append(f"dropped: {dropped['id']} ({dropped['reason']})")
    lines.append(f"meshes: {len(summary['meshes'])}")
    for mesh in summary["meshes"]:
        skin = f", skin {mesh['skin']}" if mesh["skin"] else ""
        lines.append(
            f"  {mesh['id']}: {mesh['vertices']} vertices, {mesh['triangles']} triangles{skin}"
        )
    return "\n".join(lines) + "\n"


@click.group()
@click.version_option(version=__version__, prog_name="dsonrig")
def main() -> None:
    """dsonrig: load DSON characters and pack dual quaternion skins."""


@main.command()
@_load_options
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Inspection output format.",
)
def inspect(
    input_file: Path,
    unit_scale: float,
    strict: bool = False,
    warn_as_error: str | None = None,
    suppress_warning: str | None = None,
    output_format: str = "text",
) -> None:
    """Show the resolved node tree, meshes and skin bindings of a DSON file."""
    try:
        asset = _load(input_file, unit_scale, strict, warn_as_error, suppress_warning)
    except DsonError as e:
        raise click.ClickException(str(e))

    summary = summarize(asset)
    if output_format == "json":
        click.echo(json.dumps(summary, indent=2))
    else:
        click.echo(_render_text(summary), nl=False)


@main.command()
@_load_options
@click.option(
    "--pose",
    "pose_file",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="YAML pose applied before packing. Defaults to the rest pose.",
)
@click.option(
    "--max-joints",
    type=int,
    default=BackendLimits.max_joints,
    show_default=True,
    help="Joint array length declared by the shader.",
)
@click.option(
    "--alignment",
    type=int,
    default=BackendLimits.min_uniform_buffer_offset_alignment,
    show_default=True,
    help="min_uniform_buffer_offset_alignment of the target backend, in bytes.",
)
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    default=None,
    help="Output buffer file. Defaults to input name with .skin.bin extension.",
)
def pack(
    input_file: Path,
    unit_scale: float,
    strict: bool = False,
    warn_as_error: str | None = None,
    suppress_warning: str | None = None,
    pose_file: Path | None = None,
    max_joints: int = 256,
    alignment: int = 256,
    output: Path | None = None,
) -> None:
    """Pack one frame of joint dual quaternions for every skinned mesh."""
    if output is None:
        output = _strip_suffix(input_file, ".skin.bin")

    try:
        limits = BackendLimits(max_joints=max_joints, min_uniform_buffer_offset_alignment=alignment)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    try:
        asset = _load(input_file, unit_scale, strict, warn_as_error, suppress_warning)
        pose = load_pose(pose_file) if pose_file is not None else None
        world = PosedSkeleton(asset.hierarchy, pose)
        instances = [asset.skinned_instance(mesh.id) for mesh in asset.skinned_meshes()]
        packed = SkinBufferPacker(limits).pack(instances, world)
        output.write_bytes(packed.to_bytes())
    except DsonError as e:
        raise click.ClickException(str(e))
    except OSError as e:
        raise click.ClickException(f"Cannot write {output}: {e}") from e

    for handle, index in packed.indices.items():
        click.echo(
            f"{handle}: offset {index.offset} ({index.byte_offset} bytes), "
            f"{index.joint_count} joints"
        )
    for handle in packed.skipped:
        click.echo(f"{handle}: skipped", err=True)
    click.echo(f"Packed {len(packed)} records: {output}")


@main.command()
@_load_options
@click.option(
    "--pose",
    "pose_file",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="YAML pose to bake into the geometry. The baked GLB has no skin.",
)
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    default=None,
    help="Output GLB file path. Defaults to input name with .glb extension.",
)
def export(
    input_file: Path,
    unit_scale: float,
    strict: bool = False,
    warn_as_error: str | None = None,
    suppress_warning: str | None = None,
    pose_file: Path | None = None,
    output: Path | None = None,
) -> None:
    """Export a DSON file's rig and skinned meshes to GLB, or bake a pose into it."""
    if output is None:
        output = _strip_suffix(input_file, ".glb")

    try:
        asset = _load(input_file, unit_scale, strict, warn_as_error, suppress_warning)
        if pose_file is not None:
            export_baked_glb(asset, load_pose(pose_file), output)
        else:
            export_glb(asset, output)
    except DsonError as e:
        raise click.ClickException(str(e))
    click.echo(f"Exported: {output}")
