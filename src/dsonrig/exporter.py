"""glTF/GLB export of a loaded asset via pygltflib."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pygltflib

from dsonrig.dqs import skin_transforms, skin_vertices
from dsonrig.errors import ExportError
from dsonrig.loader import DsonAsset, MeshData
from dsonrig.pose import Pose, PosedSkeleton


def export_glb(asset: DsonAsset, output_path: Path) -> None:
    """Write the resolved node tree, meshes and skins of ``asset`` as GLB."""
    try:
        gltf = build_gltf(asset)
        output_path.write_bytes(b"".join(gltf.save_to_bytes()))
    except Exception as e:
        if isinstance(e, ExportError):
            raise
        raise ExportError(f"Failed to export glTF: {e}") from e


def export_baked_glb(asset: DsonAsset, pose: Pose | None, output_path: Path) -> None:
    """Export a baked (pose-evaluated) GLB with skinning removed.

    Skinned meshes are deformed on the CPU with dual quaternion skinning and
    written without JOINTS_0/WEIGHTS_0/Skin/IBM data. Meshes the pose hides
    are left out.
    """
    try:
        gltf = build_baked_gltf(asset, pose)
        output_path.write_bytes(b"".join(gltf.save_to_bytes()))
    except Exception as e:
        if isinstance(e, ExportError):
            raise
        raise ExportError(f"Failed to export baked glTF: {e}") from e


def _column_major(mat: np.ndarray) -> list[float]:
    return [float(v) for v in np.asarray(mat, dtype=np.float32).T.reshape(16)]


def build_gltf(asset: DsonAsset) -> pygltflib.GLTF2:
    """Build the glTF2 structure for an asset.

    Every resolved node becomes a glTF node carrying its parent-relative
    matrix. Mesh vertices are in figure space, so mesh nodes sit at the
    scene root; skinned meshes reference one skin over all bones.
    """
    gltf = pygltflib.GLTF2(
        scene=0,
        scenes=[pygltflib.Scene(nodes=[])],
        nodes=[],
        meshes=[],
        accessors=[],
        bufferViews=[],
        buffers=[],
        skins=[],
    )
    blob_data = bytearray()
    hierarchy = asset.hierarchy

    # Node tree; arena indices equal glTF node indices
    for node in hierarchy.nodes:
        gltf_node = pygltflib.Node(name=node.name, matrix=_column_major(node.local))
        if node.children:
            gltf_node.children = list(node.children)
        gltf.nodes.append(gltf_node)
    scene_nodes = list(hierarchy.roots)

    skin_idx = None
    if asset.bones and asset.skinned_meshes():
        inverse_binds = np.stack(
            [np.linalg.inv(hierarchy[bone].world) for bone in asset.bones]
        ).astype(np.float32)
        ibm_acc_idx = _write_buffer_view_and_accessor(
            gltf,
            blob_data,
            np.ascontiguousarray(inverse_binds.transpose(0, 2, 1)),
            pygltflib.FLOAT,
            pygltflib.MAT4,
        )
        skin_idx = len(gltf.skins)
        gltf.skins.append(
            pygltflib.Skin(
                joints=[hierarchy.index[bone] for bone in asset.bones],
                inverseBindMatrices=ibm_acc_idx,
            )
        )

    for mesh in asset.meshes.values():
        if mesh.vertex_count == 0 or mesh.indices.size == 0:
            continue
        mesh_idx = _build_mesh(gltf, blob_data, mesh)
        mesh_node = pygltflib.Node(name=mesh.name or mesh.id, mesh=mesh_idx)
        if mesh.is_skinned and skin_idx is not None:
            mesh_node.skin = skin_idx
        scene_nodes.append(len(gltf.nodes))
        gltf.nodes.append(mesh_node)

    gltf.scenes[0].nodes = scene_nodes
    gltf.buffers = [pygltflib.Buffer(byteLength=len(blob_data))]
    gltf.set_binary_blob(bytes(blob_data))
    return gltf


def build_baked_gltf(asset: DsonAsset, pose: Pose | None = None) -> pygltflib.GLTF2:
    """Build baked glTF2 structure: deformed geometry, no node tree, no skin."""
    gltf = pygltflib.GLTF2(
        scene=0,
        scenes=[pygltflib.Scene(nodes=[])],
        nodes=[],
        meshes=[],
        accessors=[],
        bufferViews=[],
        buffers=[],
        skins=[],
    )
    blob_data = bytearray()
    skeleton = PosedSkeleton(asset.hierarchy, pose)

    for mesh in asset.meshes.values():
        if mesh.vertex_count == 0 or mesh.indices.size == 0:
            continue
        if not skeleton.is_visible(mesh.id):
            continue

        positions = mesh.positions
        normals = mesh.normals
        if mesh.is_skinned:
            transforms = skin_transforms(asset.skinned_instance(mesh.id), skeleton)
            positions, normals = skin_vertices(
                positions, normals, mesh.influences, transforms
            )

        mesh_idx = _build_mesh(gltf, blob_data, mesh, positions, normals, include_skin=False)
        gltf.scenes[0].nodes.append(len(gltf.nodes))
        gltf.nodes.append(pygltflib.Node(name=mesh.name or mesh.id, mesh=mesh_idx))

    gltf.buffers = [pygltflib.Buffer(byteLength=len(blob_data))]
    gltf.set_binary_blob(bytes(blob_data))
    return gltf


def _build_mesh(
    gltf: pygltflib.GLTF2,
    blob_data: bytearray,
    mesh: MeshData,
    positions: np.ndarray | None = None,
    normals: np.ndarray | None = None,
    *,
    include_skin: bool = True,
) -> int:
    positions = mesh.positions if positions is None else positions
    normals = mesh.normals if normals is None else normals
    pos_acc_idx = _write_buffer_view_and_accessor(
        gltf,
        blob_data,
        positions.astype(np.float32),
        pygltflib.FLOAT,
        pygltflib.VEC3,
        pygltflib.ARRAY_BUFFER,
        include_min_max=True,
    )
    norm_acc_idx = _write_buffer_view_and_accessor(
        gltf,
        blob_data,
        normals.astype(np.float32),
        pygltflib.FLOAT,
        pygltflib.VEC3,
        pygltflib.ARRAY_BUFFER,
    )
    idx_acc_idx = _write_buffer_view_and_accessor(
        gltf,
        blob_data,
        mesh.indices.astype(np.uint32),
        pygltflib.UNSIGNED_INT,
        pygltflib.SCALAR,
        pygltflib.ELEMENT_ARRAY_BUFFER,
    )

    attributes = pygltflib.Attributes(POSITION=pos_acc_idx, NORMAL=norm_acc_idx)

    if mesh.uvs is not None:
        # DSON UVs are bottom-left origin; glTF samples from the top-left
        uvs = mesh.uvs.astype(np.float32).copy()
        uvs[:, 1] = 1.0 - uvs[:, 1]
        attributes.TEXCOORD_0 = _write_buffer_view_and_accessor(
            gltf, blob_data, uvs, pygltflib.FLOAT, pygltflib.VEC2, pygltflib.ARRAY_BUFFER
        )

    if include_skin and mesh.influences is not None:
        attributes.JOINTS_0 = _write_buffer_view_and_accessor(
            gltf,
            blob_data,
            mesh.influences.joints.astype(np.uint16),
            pygltflib.UNSIGNED_SHORT,
            pygltflib.VEC4,
            pygltflib.ARRAY_BUFFER,
        )
        attributes.WEIGHTS_0 = _write_buffer_view_and_accessor(
            gltf,
            blob_data,
            mesh.influences.weights.astype(np.float32),
            pygltflib.FLOAT,
            pygltflib.VEC4,
            pygltflib.ARRAY_BUFFER,
        )

    mesh_idx = len(gltf.meshes)
    gltf.meshes.append(
        pygltflib.Mesh(
            name=mesh.name or mesh.id,
            primitives=[pygltflib.Primitive(attributes=attributes, indices=idx_acc_idx)],
        )
    )
    return mesh_idx


def _write_buffer_view_and_accessor(
    gltf: pygltflib.GLTF2,
    blob_data: bytearray,
    data_array: np.ndarray,
    component_type: int,
    accessor_type: str,
    target: int | None = None,
    *,
    include_min_max: bool = False,
) -> int:
    """Write a 4-byte aligned buffer view and accessor, returning the accessor index."""
    blob_data.extend(b"\x00" * ((4 - len(blob_data) % 4) % 4))
    offset = len(blob_data)
    data_bytes = data_array.tobytes()
    blob_data.extend(data_bytes)

    bv_idx = len(gltf.bufferViews)
    bv = pygltflib.BufferView(
        buffer=0,
        byteOffset=offset,
        byteLength=len(data_bytes),
    )
    if target is not None:
        bv.target = target
    gltf.bufferViews.append(bv)

    acc_kwargs: dict = {
        "bufferView": bv_idx,
        "byteOffset": 0,
        "componentType": component_type,
        "count": len(data_array),
        "type": accessor_type,
    }
    if include_min_max:
        acc_kwargs["min"] = data_array.min(axis=0).tolist()
        acc_kwargs["max"] = data_array.max(axis=0).tolist()

    acc_idx = len(gltf.accessors)
    gltf.accessors.append(pygltflib.Accessor(**acc_kwargs))
    return acc_idx
