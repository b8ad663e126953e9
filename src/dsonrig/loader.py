"""Load a DSON document into a resolved, render-ready character asset.

Pipeline: parse -> resolve hierarchy -> triangulate geometry -> attach UV
sets -> assign skin influences -> attach meshes to nodes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from dsonrig.dual_quat import DualQuat
from dsonrig.errors import ValidationError
from dsonrig.hierarchy import ResolvedHierarchy, resolve_hierarchy
from dsonrig.models import DsonDocument, Geometry, Modifier, UvSet
from dsonrig.parser import parse_dson
from dsonrig.skin_buffer import SkinnedInstance, inverse_bind_pose
from dsonrig.skin_weights import MAX_INFLUENCES, VertexInfluences, assign_influences
from dsonrig.uri import fragment_id, parse_uri
from dsonrig.warning_policy import WarningPolicy, emit_warning

_FALLBACK_NORMAL = np.array([0.0, 1.0, 0.0], dtype=np.float64)


@dataclass(frozen=True)
class LoaderSettings:
    """Load-time options.

    Attributes:
        unit_scale: Factor applied to positions and translations. DSON is
            authored in centimetres; the default converts to metres.
        strict: Turn every load diagnostic into a ``ValidationError``.
    """

    unit_scale: float = 0.01
    strict: bool = False


@dataclass
class MeshData:
    """Triangulated geometry with its optional UVs and skin influences."""

    id: str
    name: str | None
    positions: np.ndarray  # (N, 3) float64
    normals: np.ndarray  # (N, 3) float64
    indices: np.ndarray  # (M,) uint32
    uvs: np.ndarray | None = None  # (N, 2) float32
    uv_set: str | None = None
    influences: VertexInfluences | None = None
    skin: str | None = None  # id of the modifier the influences came from
    node: str | None = None

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def is_skinned(self) -> bool:
        return self.influences is not None


@dataclass
class DsonAsset:
    document: DsonDocument
    hierarchy: ResolvedHierarchy
    meshes: dict[str, MeshData] = field(default_factory=dict)
    bones: list[str] = field(default_factory=list)  # joint index -> node id
    settings: LoaderSettings = field(default_factory=LoaderSettings)

    def skinned_meshes(self) -> list[MeshData]:
        return [mesh for mesh in self.meshes.values() if mesh.is_skinned]

    def inverse_bind_poses(self, mesh_id: str) -> list[DualQuat]:
        return inverse_bind_poses(self, mesh_id)

    def skinned_instance(self, mesh_id: str, handle: object | None = None) -> SkinnedInstance:
        """What a spawning host registers with the packer for one mesh instance."""
        return SkinnedInstance(
            handle=mesh_id if handle is None else handle,
            joints=list(self.bones),
            inverse_bind_poses=self.inverse_bind_poses(mesh_id),
        )


def inverse_bind_poses(asset: DsonAsset, mesh_id: str) -> list[DualQuat]:
    """Per-joint inverse bind poses of a skinned mesh, in joint index order.

    Bind poses are the joints' rest world transforms.
    """
    mesh = asset.meshes.get(mesh_id)
    if mesh is None:
        raise KeyError(mesh_id)
    if not mesh.is_skinned:
        raise ValidationError(f"Mesh {mesh_id!r} has no skin binding")
    return [inverse_bind_pose(asset.hierarchy[bone].world) for bone in asset.bones]


def load_asset(
    source: str | bytes | Path,
    *,
    settings: LoaderSettings | None = None,
    policy: WarningPolicy | None = None,
) -> DsonAsset:
    """Parse a DSON document and resolve it into a ``DsonAsset``.

    Recoverable problems are reported as ``DsonWarning`` diagnostics and the
    offending node, geometry, joint or binding is left out. With
    ``settings.strict`` the first diagnostic aborts the load instead.

    Raises:
        ParseError: Malformed input.
        ValidationError: A diagnostic escalated by strict mode or the policy.
    """
    settings = settings or LoaderSettings()
    if settings.strict:
        policy = WarningPolicy.strict()

    document = parse_dson(source)
    hierarchy = resolve_hierarchy(
        document.node_library, unit_scale=settings.unit_scale, policy=policy
    )
    bones = [node.id for node in hierarchy.nodes if node.type == "bone"]

    uv_sets = {uv_set.id: uv_set for uv_set in document.uv_set_library}
    meshes: dict[str, MeshData] = {}
    for geometry in document.geometry_library:
        mesh = _build_mesh(geometry, settings.unit_scale, policy)
        if mesh is None:
            continue
        _attach_uv_set(mesh, geometry, uv_sets, policy)
        meshes[mesh.id] = mesh

    bone_index = {node_id: i for i, node_id in enumerate(bones)}
    for modifier in document.modifier_library:
        if modifier.skin is not None:
            _bind_skin(modifier, meshes, bone_index, policy)

    for geometry in document.geometry_library:
        mesh = meshes.get(geometry.id)
        if mesh is not None:
            mesh.node = _attachment_node(geometry, mesh, document, hierarchy)

    return DsonAsset(
        document=document,
        hierarchy=hierarchy,
        meshes=meshes,
        bones=bones,
        settings=settings,
    )


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


def _build_mesh(
    geometry: Geometry, unit_scale: float, policy: WarningPolicy | None
) -> MeshData | None:
    positions = np.asarray(geometry.vertices.values, dtype=np.float64).reshape(-1, 3) * unit_scale
    triangles = [tri for poly in geometry.polylist.values for tri in poly.triangles()]
    indices = np.asarray(triangles, dtype=np.uint32).reshape(-1)

    if indices.size and int(indices.max()) >= len(positions):
        emit_warning(
            "W06",
            f"Geometry {geometry.id!r} dropped: polygon references vertex {int(indices.max())} "
            f"(vertex count: {len(positions)})",
            policy=policy,
        )
        return None

    return MeshData(
        id=geometry.id,
        name=geometry.name,
        positions=positions,
        normals=vertex_normals(positions, indices),
        indices=indices,
    )


def vertex_normals(positions: np.ndarray, indices: np.ndarray) -> np.ndarray:
    """Area-weighted vertex normals of an indexed triangle list.

    Vertices not used by any (non-degenerate) triangle get +Y.
    """
    normals = np.zeros_like(positions, dtype=np.float64)
    if indices.size:
        tris = indices.reshape(-1, 3)
        v0, v1, v2 = positions[tris[:, 0]], positions[tris[:, 1]], positions[tris[:, 2]]
        face = np.cross(v1 - v0, v2 - v0)
        for corner in range(3):
            np.add.at(normals, tris[:, corner], face)

    lengths = np.linalg.norm(normals, axis=1)
    valid = lengths > 1e-12
    normals[valid] /= lengths[valid, None]
    normals[~valid] = _FALLBACK_NORMAL
    return normals


def _attach_uv_set(
    mesh: MeshData,
    geometry: Geometry,
    uv_sets: dict[str, UvSet],
    policy: WarningPolicy | None,
) -> None:
    if not geometry.default_uv_set:
        return

    ref = parse_uri(geometry.default_uv_set)
    uv_id = fragment_id(geometry.default_uv_set)
    uv_set = uv_sets.get(uv_id)
    if uv_set is None:
        if ref.is_local:
            emit_warning(
                "W06",
                f"UV set {uv_id!r} referenced by geometry {geometry.id!r} is not in this file",
                policy=policy,
            )
        # References into other files are resolved by the content library, not here.
        return

    if len(uv_set.uvs.values) < mesh.vertex_count:
        emit_warning(
            "W06",
            f"UV set {uv_id!r} has {len(uv_set.uvs.values)} UVs for "
            f"{mesh.vertex_count} vertices of geometry {geometry.id!r}",
            policy=policy,
        )
        return

    mesh.uvs = np.asarray(uv_set.uvs.values[: mesh.vertex_count], dtype=np.float32)
    mesh.uv_set = uv_id


# ---------------------------------------------------------------------------
# Skin bindings
# ---------------------------------------------------------------------------


def _bind_skin(
    modifier: Modifier,
    meshes: dict[str, MeshData],
    bone_index: dict[str, int],
    policy: WarningPolicy | None,
) -> None:
    skin = modifier.skin
    geometry_id = fragment_id(skin.geometry)
    mesh = meshes.get(geometry_id)
    if mesh is None:
        emit_warning(
            "W01",
            f"Skin binding {modifier.id!r} dropped: geometry {geometry_id!r} not found",
            policy=policy,
        )
        return
    if skin.vertex_count != mesh.vertex_count:
        emit_warning(
            "W01",
            f"Skin binding {modifier.id!r} dropped: vertex_count {skin.vertex_count} "
            f"does not match geometry {geometry_id!r} ({mesh.vertex_count} vertices)",
            policy=policy,
        )
        return
    if mesh.influences is not None:
        emit_warning(
            "W01",
            f"Skin binding {modifier.id!r} dropped: geometry {geometry_id!r} "
            f"is already bound by {mesh.skin!r}",
            policy=policy,
        )
        return

    joint_weights: list[tuple[int, list[tuple[int, float]]]] = []
    for joint in skin.joints or []:
        node_id = fragment_id(joint.node)
        idx = bone_index.get(node_id)
        if idx is None:
            emit_warning(
                "W02",
                f"Joint {joint.id!r} of {modifier.id!r} skipped: {node_id!r} is not a bone",
                policy=policy,
            )
            continue
        if joint.node_weights is None:
            emit_warning(
                "W02",
                f"Joint {joint.id!r} of {modifier.id!r} skipped: no node_weights",
                policy=policy,
            )
            continue
        joint_weights.append((idx, joint.node_weights.values))

    try:
        influences = assign_influences(mesh.vertex_count, joint_weights)
    except ValidationError as e:
        emit_warning("W01", f"Skin binding {modifier.id!r} dropped: {e}", policy=policy)
        return

    if influences.excess:
        emit_warning(
            "W05",
            f"{len(influences.excess)} vertices of geometry {geometry_id!r} have more than "
            f"{MAX_INFLUENCES} influences; {influences.discarded_claims} weights were discarded",
            policy=policy,
        )

    mesh.influences = influences
    mesh.skin = modifier.id


def _attachment_node(
    geometry: Geometry,
    mesh: MeshData,
    document: DsonDocument,
    hierarchy: ResolvedHierarchy,
) -> str | None:
    if geometry.name and geometry.name in hierarchy:
        return geometry.name
    # Skinned geometry without a same-named node hangs off its figure.
    for modifier in document.modifier_library:
        if modifier.id == mesh.skin and modifier.skin is not None:
            node_id = fragment_id(modifier.skin.node)
            if node_id in hierarchy:
                return node_id
    return None
