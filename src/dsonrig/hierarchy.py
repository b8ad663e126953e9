"""Node hierarchy reconstruction and transform propagation.

Nodes arrive as a flat, id-referenced list. ``resolve_hierarchy`` links them
into an arena of ``ResolvedNode`` objects (children are owned index lists,
parents are looked up by id), drops malformed subtrees, and computes world
and parent-relative transforms.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field

import numpy as np

from dsonrig.models import Node, channel_values
from dsonrig.transforms import (
    quat_conj,
    quat_from_euler_degrees,
    rotation_matrix,
    scale_matrix,
    translation_matrix,
)
from dsonrig.uri import fragment_id
from dsonrig.warning_policy import WarningPolicy, emit_warning


@dataclass(frozen=True)
class ChannelState:
    """Values of a node's animatable transform channels."""

    rotation: tuple[float, float, float]
    translation: tuple[float, float, float]
    scale: tuple[float, float, float]
    general_scale: float = 1.0

    @classmethod
    def rest(cls, record: Node) -> ChannelState:
        return cls(
            rotation=channel_values(record.rotation),
            translation=channel_values(record.translation),
            scale=channel_values(record.scale),
            general_scale=record.general_scale.value,
        )


@dataclass
class ResolvedNode:
    record: Node
    parent: str | None
    local: np.ndarray  # 4x4, relative to parent
    world: np.ndarray  # 4x4, rest pose; also the bind pose of bones
    end_point: np.ndarray  # world space
    children: list[int] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def type(self) -> str:
        return self.record.type


@dataclass(frozen=True)
class DroppedNode:
    id: str
    reason: str


@dataclass
class ResolvedHierarchy:
    nodes: list[ResolvedNode]
    index: dict[str, int]
    roots: list[int]
    dropped: list[DroppedNode] = field(default_factory=list)
    unit_scale: float = 1.0

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.index

    def __getitem__(self, node_id: str) -> ResolvedNode:
        return self.nodes[self.index[node_id]]

    def get(self, node_id: str) -> ResolvedNode | None:
        idx = self.index.get(node_id)
        return None if idx is None else self.nodes[idx]

    def parent_of(self, node: ResolvedNode) -> ResolvedNode | None:
        return None if node.parent is None else self.get(node.parent)

    def root_nodes(self) -> list[ResolvedNode]:
        return [self.nodes[i] for i in self.roots]

    def walk(self) -> Iterator[tuple[int, ResolvedNode]]:
        """Depth-first pre-order traversal yielding (depth, node)."""
        stack = [(0, i) for i in reversed(self.roots)]
        while stack:
            depth, idx = stack.pop()
            node = self.nodes[idx]
            yield depth, node
            stack.extend((depth + 1, c) for c in reversed(node.children))


# ---------------------------------------------------------------------------
# Transform composition
# ---------------------------------------------------------------------------


def scale_chain(record: Node, state: ChannelState, *, inverse: bool = False) -> np.ndarray:
    """``O * S * general_scale * O^-1`` for a node, or its inverse."""
    orient = quat_from_euler_degrees(channel_values(record.orientation), "XYZ")
    s = np.array(state.scale, dtype=np.float64) * state.general_scale
    if inverse:
        s = np.divide(1.0, s, out=np.zeros_like(s), where=np.abs(s) > 1e-12)
    return rotation_matrix(orient) @ scale_matrix(s) @ rotation_matrix(quat_conj(orient))


def local_transform(
    record: Node,
    state: ChannelState,
    parent: Node | None = None,
    parent_state: ChannelState | None = None,
    *,
    unit_scale: float = 1.0,
) -> np.ndarray:
    """Parent-relative transform of a node.

    ``T(center_offset + translation) * O * R * O^-1 * scale_chain`` where
    the center offset is measured from the parent's center point. When the
    node does not inherit scale, the parent's local scale chain is undone
    before this node's own scale is applied.
    """
    center = np.array(channel_values(record.center_point), dtype=np.float64)
    if parent is not None:
        center = center - np.array(channel_values(parent.center_point), dtype=np.float64)
    offset = (center + np.array(state.translation, dtype=np.float64)) * unit_scale

    orient = quat_from_euler_degrees(channel_values(record.orientation), "XYZ")
    rot = quat_from_euler_degrees(state.rotation, record.rotation_order)

    scaling = scale_chain(record, state)
    if parent is not None and not record.inherits_scale:
        p_state = parent_state if parent_state is not None else ChannelState.rest(parent)
        scaling = scale_chain(parent, p_state, inverse=True) @ scaling

    return (
        translation_matrix(offset)
        @ rotation_matrix(orient)
        @ rotation_matrix(rot)
        @ rotation_matrix(quat_conj(orient))
        @ scaling
    )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _parent_id(record: Node) -> str | None:
    if record.parent is None or record.parent == "":
        return None
    return fragment_id(record.parent)


def resolve_hierarchy(
    nodes: list[Node],
    *,
    unit_scale: float = 1.0,
    policy: WarningPolicy | None = None,
) -> ResolvedHierarchy:
    """Rebuild the node tree from a flat node list.

    Malformed entries are reported (W03/W04) and dropped together with their
    descendants instead of failing the whole document:

    - later duplicates of an id,
    - nodes whose parent id does not exist,
    - nodes taking part in a parent cycle,
    - nodes whose parent appears later in the file.

    Returns:
        ResolvedHierarchy whose arena keeps the input order of surviving nodes.
    """
    dropped: list[DroppedNode] = []
    dropped_at: set[int] = set()

    def _drop(idx: int, code: str, reason: str) -> None:
        node_id = nodes[idx].id
        emit_warning(code, f"Node {node_id!r} dropped: {reason}", policy=policy)
        dropped.append(DroppedNode(id=node_id, reason=reason))
        dropped_at.add(idx)

    # Id map in input order
    index: dict[str, int] = {}
    for i, record in enumerate(nodes):
        if record.id in index:
            _drop(i, "W03", f"duplicate id (first defined at position {index[record.id]})")
            continue
        index[record.id] = i

    # Link parents by id
    parent_of: dict[int, int | None] = {}
    for i in index.values():
        pid = _parent_id(nodes[i])
        if pid is None:
            parent_of[i] = None
        elif pid not in index:
            _drop(i, "W03", f"parent {pid!r} does not exist")
        else:
            parent_of[i] = index[pid]

    pending: dict[int, set[int]] = {i: set() for i in parent_of}
    for i, p in parent_of.items():
        if p is not None and p in pending:
            pending[p].add(i)

    # Finalize leaves first; a node is dequeued once all its children are.
    # Cycle members never reach an empty child set.
    queue = deque(i for i in sorted(parent_of) if not pending[i])
    finalized: set[int] = set()
    while queue:
        i = queue.popleft()
        finalized.add(i)
        p = parent_of[i]
        if p is not None and p in pending:
            pending[p].discard(i)
            if not pending[p]:
                queue.append(p)

    for i in sorted(parent_of):
        if i not in finalized:
            _drop(i, "W04", "part of a parent cycle")

    children: dict[int, list[int]] = {i: [] for i in finalized}
    for i in sorted(finalized):
        p = parent_of[i]
        if p is not None and p in children:
            children[p].append(i)

    # Walk down from the roots; forward references and everything below a
    # dropped node are cut off here.
    reachable: set[int] = set()
    walk = deque(i for i in sorted(finalized) if parent_of[i] is None)
    while walk:
        i = walk.popleft()
        reachable.add(i)
        for c in children[i]:
            if c < i:
                _drop(c, "W03", f"parent {nodes[i].id!r} appears later in the file")
                continue
            walk.append(c)

    for i in sorted(finalized - reachable - dropped_at):
        _drop(i, "W03", "an ancestor was dropped")

    # Arena in file order; parents always precede children now.
    survivors = sorted(reachable)
    arena_index = {nodes[i].id: n for n, i in enumerate(survivors)}
    resolved: list[ResolvedNode] = []
    roots: list[int] = []
    for i in survivors:
        record = nodes[i]
        p = parent_of[i]
        parent_record = nodes[p] if p is not None else None
        local = local_transform(
            record, ChannelState.rest(record), parent_record, unit_scale=unit_scale
        )
        if p is None:
            world = local
            roots.append(arena_index[record.id])
        else:
            world = resolved[arena_index[parent_record.id]].world @ local
        node = ResolvedNode(
            record=record,
            parent=parent_record.id if parent_record is not None else None,
            local=local,
            world=world,
            end_point=np.array(channel_values(record.end_point), dtype=np.float64) * unit_scale,
            children=[arena_index[nodes[c].id] for c in children[i] if c in reachable],
        )
        resolved.append(node)

    return ResolvedHierarchy(
        nodes=resolved,
        index=arena_index,
        roots=roots,
        dropped=dropped,
        unit_scale=unit_scale,
    )
