"""Pydantic v2 schema models for DSON (.dsf/.duf) documents.

Only the subset of the format needed to rebuild node hierarchies, polygon
geometry, primary UV sets and skin bindings is typed. Morphs, formulas and
presentation blocks are carried through as opaque JSON values.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

T = TypeVar("T")

NonNegInt = Annotated[int, Field(ge=0)]

ChannelType = Literal["alias", "bool", "color", "enum", "float", "image", "int", "string"]
NodeType = Literal["node", "bone", "figure", "camera", "light"]
RotationOrder = Literal["XYZ", "YZX", "ZYX", "ZXY", "XZY", "YXZ"]
GeometryType = Literal["polygon_mesh", "subdivision_surface"]
EdgeInterpolationMode = Literal["no_interpolation", "edges_and_corners", "edges_only"]


class DsonModel(BaseModel):
    # DSON files carry many application-specific keys we do not model.
    model_config = ConfigDict(extra="ignore", frozen=True)


class CountedArray(DsonModel, Generic[T]):
    """A DSON ``{"count": n, "values": [...]}`` array."""

    count: NonNegInt
    values: list[T]

    @model_validator(mode="after")
    def _count_matches_values(self) -> CountedArray[T]:
        if self.count != len(self.values):
            raise ValueError(
                f"Array count {self.count} does not match number of values ({len(self.values)})"
            )
        return self


class ChannelFloat(DsonModel):
    id: str
    type: ChannelType
    name: str
    label: str | None = None
    visible: bool = True
    locked: bool = False
    auto_follow: bool = False
    value: float = 0.0
    current_value: float = 0.0
    min: float = 0.0
    max: float = 1.0
    clamped: bool = False
    display_as_percent: bool = False
    step_size: float = 1.0
    mappable: bool = False


ChannelTriple = tuple[ChannelFloat, ChannelFloat, ChannelFloat]


def _channel_triple(prefix: str, value: float = 0.0) -> ChannelTriple:
    return (
        ChannelFloat(id="x", type="float", name=f"x{prefix}", value=value, current_value=value),
        ChannelFloat(id="y", type="float", name=f"y{prefix}", value=value, current_value=value),
        ChannelFloat(id="z", type="float", name=f"z{prefix}", value=value, current_value=value),
    )


def _general_scale_default() -> ChannelFloat:
    return ChannelFloat(
        id="general_scale",
        type="float",
        name="Scale",
        label="Scale",
        value=1.0,
        current_value=1.0,
        min=-10000.0,
        max=10000.0,
        step_size=0.005,
    )


def channel_values(channels: ChannelTriple) -> tuple[float, float, float]:
    """Return the (x, y, z) values of a channel triple."""
    return (channels[0].value, channels[1].value, channels[2].value)


class Node(DsonModel):
    """A node in a node hierarchy: a bone, a figure root, a camera, ...

    Parents must appear above their children in the file. The transform
    channels are composed by ``dsonrig.hierarchy``.
    """

    id: str
    name: str
    label: str
    type: NodeType = "node"
    source: str = ""
    parent: str | None = None
    rotation_order: RotationOrder = "XYZ"
    inherits_scale: bool = True
    center_point: ChannelTriple = Field(default_factory=lambda: _channel_triple("Origin"))
    end_point: ChannelTriple = Field(default_factory=lambda: _channel_triple("End"))
    orientation: ChannelTriple = Field(default_factory=lambda: _channel_triple("Orientation"))
    rotation: ChannelTriple = Field(default_factory=lambda: _channel_triple("Rotation"))
    translation: ChannelTriple = Field(default_factory=lambda: _channel_triple("Translation"))
    scale: ChannelTriple = Field(default_factory=lambda: _channel_triple("Scale", 1.0))
    general_scale: ChannelFloat = Field(default_factory=_general_scale_default)
    presentation: Any | None = None
    formulas: list[Any] | None = None
    extra: list[Any] | None = None


class Polygon(DsonModel):
    """An indexed face with three or four vertices.

    Serialized as a flat ``[group, material_group, v0, v1, v2(, v3)]`` list.
    """

    groups_index: NonNegInt
    material_groups_index: NonNegInt
    vertex_indices: tuple[NonNegInt, ...]

    @model_validator(mode="before")
    @classmethod
    def _from_flat_sequence(cls, data: Any) -> Any:
        if isinstance(data, (list, tuple)):
            if len(data) < 5:
                raise ValueError(f"Polygon needs at least 5 integers, got {len(data)}")
            if len(data) > 6:
                raise ValueError(f"Polygon accepts at most 6 integers, got {len(data)}")
            return {
                "groups_index": data[0],
                "material_groups_index": data[1],
                "vertex_indices": tuple(data[2:]),
            }
        return data

    @field_validator("vertex_indices")
    @classmethod
    def _three_or_four(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        if len(v) not in (3, 4):
            raise ValueError(f"Polygon must have 3 or 4 vertices, got {len(v)}")
        return v

    def triangles(self) -> list[tuple[int, int, int]]:
        """Split into triangles: quads become (v0, v1, v2), (v0, v2, v3)."""
        vi = self.vertex_indices
        if len(vi) == 3:
            return [(vi[0], vi[1], vi[2])]
        return [(vi[0], vi[1], vi[2]), (vi[0], vi[2], vi[3])]


class Geometry(DsonModel):
    id: str
    name: str | None = None
    label: str | None = None
    type: GeometryType | None = None
    source: str | None = None
    edge_interpolation_mode: EdgeInterpolationMode | None = None
    vertices: CountedArray[tuple[float, float, float]]
    polygon_groups: CountedArray[str]
    polygon_material_groups: CountedArray[str]
    polylist: CountedArray[Polygon]
    default_uv_set: str | None = None
    root_region: Any | None = None
    graft: Any | None = None
    rigidity: Any | None = None
    extra: list[Any] | None = None


class UvSet(DsonModel):
    id: str
    name: str | None = None
    label: str | None = None
    source: str | None = None
    vertex_count: NonNegInt
    uvs: CountedArray[tuple[float, float]]
    # [polygon_index, polygon_vertex_index, uv_index]
    polygon_vertex_indices: list[tuple[NonNegInt, NonNegInt, NonNegInt]] | None = None


class LocalWeights(DsonModel):
    x: CountedArray[tuple[NonNegInt, float]] | None = None
    y: CountedArray[tuple[NonNegInt, float]] | None = None
    z: CountedArray[tuple[NonNegInt, float]] | None = None


class WeightedJoint(DsonModel):
    """One joint of a skin binding with its sparse vertex weight maps."""

    id: str
    node: str
    node_weights: CountedArray[tuple[NonNegInt, float]] | None = None
    scale_weights: CountedArray[tuple[NonNegInt, float]] | None = None
    local_weights: LocalWeights | None = None
    bulge_weights: Any | None = None


class SkinBinding(DsonModel):
    node: str
    geometry: str
    vertex_count: NonNegInt
    joints: list[WeightedJoint] | None = None
    selection_sets: list[Any] | None = None


class Modifier(DsonModel):
    id: str
    name: str = ""
    label: str | None = None
    source: str = ""
    parent: str | None = None
    presentation: Any | None = None
    channel: Any | None = None
    region: Any | None = None
    group: str = "/"
    formulas: list[Any] | None = None
    morph: Any | None = None
    skin: SkinBinding | None = None
    extra: list[Any] | None = None


class Contributor(DsonModel):
    author: str
    email: str | None = None
    website: str | None = None


class AssetInfo(DsonModel):
    id: str
    type: str | None = None
    contributor: Contributor | None = None
    revision: str = "1.0"
    modified: datetime | None = None


class DsonDocument(DsonModel):
    """Top-level DSON object."""

    file_version: str
    asset_info: AssetInfo | None = None
    geometry_library: list[Geometry] = []
    node_library: list[Node] = []
    uv_set_library: list[UvSet] = []
    modifier_library: list[Modifier] = []
    image_library: list[Any] = []
    material_library: list[Any] = []
    scene: Any | None = None
