"""Tests for loading DSON documents into assets."""

from __future__ import annotations

import gzip
import json
import warnings

import numpy as np
import numpy.testing as npt
import pytest

from dson_builders import counted, node
from dsonrig.errors import ParseError, ValidationError
from dsonrig.loader import LoaderSettings, load_asset, vertex_normals
from dsonrig.warning_policy import DsonWarning, WarningPolicy


def _load(document: dict, **kwargs):
    with warnings.catch_warnings(record=True) as w:
        warnings.simplefilter("always")
        asset = load_asset(json.dumps(document), **kwargs)
    codes = [x.message.code for x in w if issubclass(x.category, DsonWarning)]
    return asset, codes


def _skin(document: dict) -> dict:
    return document["modifier_library"][0]["skin"]


class TestLoadAsset:
    def test_sample_loads_cleanly(self, sample_document):
        asset, codes = _load(sample_document)
        assert codes == []
        assert [n.id for n in asset.hierarchy.nodes] == ["Figure", "hip", "spine", "l_arm"]
        assert asset.bones == ["hip", "spine", "l_arm"]
        assert list(asset.meshes) == ["body"]

    def test_from_gzip_file(self, sample_json, tmp_path):
        f = tmp_path / "figure.dsf"
        f.write_bytes(gzip.compress(sample_json.encode("utf-8")))
        asset = load_asset(f)
        assert asset.meshes["body"].vertex_count == 6

    def test_unit_scale(self, sample_document):
        asset, _ = _load(sample_document, settings=LoaderSettings(unit_scale=1.0))
        npt.assert_allclose(asset.meshes["body"].positions[5], [10.0, 140.0, 0.0])
        npt.assert_allclose(asset.hierarchy["hip"].world[:3, 3], [0.0, 100.0, 0.0])

    def test_default_unit_scale(self, sample_document):
        asset, _ = _load(sample_document)
        npt.assert_allclose(asset.meshes["body"].positions[5], [0.1, 1.4, 0.0])
        npt.assert_allclose(asset.hierarchy["spine"].world[:3, 3], [0.0, 1.2, 0.0], atol=1e-12)

    def test_parse_error_propagates(self):
        with pytest.raises(ParseError):
            load_asset("not json")


class TestGeometry:
    def test_quads_triangulated(self, sample_document):
        asset, _ = _load(sample_document)
        mesh = asset.meshes["body"]
        npt.assert_array_equal(mesh.indices, [0, 1, 3, 0, 3, 2, 2, 3, 5, 2, 5, 4])
        assert mesh.indices.dtype == np.uint32

    def test_normals_face_plus_z(self, sample_document):
        asset, _ = _load(sample_document)
        npt.assert_allclose(asset.meshes["body"].normals, np.tile([0.0, 0.0, 1.0], (6, 1)))

    def test_out_of_range_polygon_drops_geometry(self, sample_document):
        sample_document["geometry_library"][0]["polylist"] = counted([[0, 0, 0, 1, 9]])
        asset, codes = _load(sample_document)
        assert "body" not in asset.meshes
        # the skin binding then has nothing to bind to
        assert codes == ["W06", "W01"]

    def test_unused_vertex_normal(self):
        positions = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [5.0, 5.0, 5.0]])
        normals = vertex_normals(positions, np.array([0, 1, 2], dtype=np.uint32))
        npt.assert_allclose(normals[0], [0.0, 0.0, 1.0])
        npt.assert_allclose(normals[3], [0.0, 1.0, 0.0])

    def test_attached_to_named_node(self, sample_document):
        asset, _ = _load(sample_document)
        assert asset.meshes["body"].node == "Figure"

    def test_attached_to_skin_node_when_name_unknown(self, sample_document):
        sample_document["geometry_library"][0]["name"] = "Body Shape"
        asset, _ = _load(sample_document)
        assert asset.meshes["body"].node == "Figure"


class TestUvSets:
    def test_default_uv_set_attached(self, sample_document):
        asset, _ = _load(sample_document)
        mesh = asset.meshes["body"]
        assert mesh.uv_set == "body_uvs"
        npt.assert_allclose(mesh.uvs[3], [1.0, 0.5])

    def test_missing_local_uv_set(self, sample_document):
        sample_document["geometry_library"][0]["default_uv_set"] = "#nowhere"
        asset, codes = _load(sample_document)
        assert codes == ["W06"]
        assert asset.meshes["body"].uvs is None

    def test_external_uv_set_left_unresolved(self, sample_document):
        sample_document["geometry_library"][0]["default_uv_set"] = (
            "/data/Test/Figure/UV%20Sets/Base.dsf#base"
        )
        asset, codes = _load(sample_document)
        assert codes == []
        assert asset.meshes["body"].uvs is None

    def test_short_uv_set(self, sample_document):
        sample_document["uv_set_library"][0]["uvs"] = counted([[0.0, 0.0]])
        asset, codes = _load(sample_document)
        assert codes == ["W06"]
        assert asset.meshes["body"].uv_set is None


class TestSkinBinding:
    def test_influences(self, sample_document):
        asset, _ = _load(sample_document)
        inf = asset.meshes["body"].influences
        npt.assert_array_equal(inf.joints[0], [0, 0, 0, 0])
        npt.assert_allclose(inf.weights[0], [1.0, 0.0, 0.0, 0.0])
        npt.assert_array_equal(inf.joints[2], [1, 2, 0, 0])
        npt.assert_allclose(inf.weights[2], [0.5, 0.5, 0.0, 0.0])
        npt.assert_array_equal(inf.joints[5], [2, 0, 0, 0])
        assert asset.meshes["body"].skin == "SkinBinding"

    def test_missing_geometry(self, sample_document):
        _skin(sample_document)["geometry"] = "#ghost"
        asset, codes = _load(sample_document)
        assert codes == ["W01"]
        assert not asset.meshes["body"].is_skinned

    def test_vertex_count_mismatch(self, sample_document):
        _skin(sample_document)["vertex_count"] = 5
        asset, codes = _load(sample_document)
        assert codes == ["W01"]
        assert asset.skinned_meshes() == []

    def test_unknown_joint_skipped(self, sample_document):
        _skin(sample_document)["joints"][0]["node"] = "#ghost"
        asset, codes = _load(sample_document)
        assert codes == ["W02"]
        inf = asset.meshes["body"].influences
        npt.assert_array_equal(inf.weights[0], [0.0, 0.0, 0.0, 0.0])

    def test_non_bone_joint_skipped(self, sample_document):
        _skin(sample_document)["joints"][0]["node"] = "#Figure"
        _, codes = _load(sample_document)
        assert codes == ["W02"]

    def test_joint_without_weights_skipped(self, sample_document):
        del _skin(sample_document)["joints"][1]["node_weights"]
        asset, codes = _load(sample_document)
        assert codes == ["W02"]
        npt.assert_array_equal(asset.meshes["body"].influences.joints[2], [2, 0, 0, 0])

    def test_bad_vertex_index_drops_binding(self, sample_document):
        _skin(sample_document)["joints"][0]["node_weights"] = counted([[6, 1.0]])
        asset, codes = _load(sample_document)
        assert codes == ["W01"]
        assert not asset.meshes["body"].is_skinned

    def test_excess_influences_reported_once(self, sample_document):
        extra = [node(f"b{i}", "hip") for i in range(4)]
        sample_document["node_library"].extend(extra)
        _skin(sample_document)["joints"].extend(
            {"id": f"b{i}", "node": f"#b{i}", "node_weights": counted([[0, 0.1], [1, 0.1]])}
            for i in range(4)
        )
        asset, codes = _load(sample_document)
        assert codes == ["W05"]
        assert asset.meshes["body"].influences.excess == {0: 1, 1: 1}

    def test_second_binding_dropped(self, sample_document):
        second = json.loads(json.dumps(sample_document["modifier_library"][0]))
        second["id"] = "SkinBinding2"
        sample_document["modifier_library"].append(second)
        asset, codes = _load(sample_document)
        assert codes == ["W01"]
        assert asset.meshes["body"].skin == "SkinBinding"

    def test_joint_on_dropped_bone_skipped(self, sample_document):
        sample_document["node_library"][3]["parent"] = "#ghost"
        asset, codes = _load(sample_document)
        assert asset.bones == ["hip", "spine"]
        assert codes == ["W03", "W02"]


class TestStrictMode:
    def test_strict_fails_on_first_diagnostic(self, sample_document):
        _skin(sample_document)["vertex_count"] = 5
        with pytest.raises(ValidationError, match=r"\[W01\]"):
            load_asset(json.dumps(sample_document), settings=LoaderSettings(strict=True))

    def test_strict_hierarchy_failure(self, sample_document):
        sample_document["node_library"].append(node("hip", "Figure"))
        with pytest.raises(ValidationError, match=r"\[W03\]"):
            load_asset(json.dumps(sample_document), settings=LoaderSettings(strict=True))

    def test_strict_clean_document(self, sample_document):
        asset = load_asset(json.dumps(sample_document), settings=LoaderSettings(strict=True))
        assert asset.meshes["body"].is_skinned

    def test_policy_escalates_single_code(self, sample_document):
        _skin(sample_document)["joints"][0]["node"] = "#ghost"
        with pytest.raises(ValidationError, match=r"\[W02\]"):
            load_asset(
                json.dumps(sample_document),
                policy=WarningPolicy(warn_as_error=frozenset({"W02"})),
            )


class TestInverseBindPoses:
    def test_rest_pose_cancels(self, sample_document):
        asset, _ = _load(sample_document)
        for bone, ibp in zip(asset.bones, asset.inverse_bind_poses("body")):
            rest = asset.hierarchy[bone].world
            point = rest[:3, 3] + np.array([0.1, 0.2, 0.3])
            npt.assert_allclose(ibp.transform_point(point), [0.1, 0.2, 0.3], atol=1e-12)

    def test_unskinned_mesh(self, sample_document):
        sample_document["modifier_library"] = []
        asset, _ = _load(sample_document)
        with pytest.raises(ValidationError, match="no skin binding"):
            asset.inverse_bind_poses("body")

    def test_skinned_instance(self, sample_document):
        asset, _ = _load(sample_document)
        instance = asset.skinned_instance("body", handle=("body", 1))
        assert instance.handle == ("body", 1)
        assert instance.joints == ["hip", "spine", "l_arm"]
        assert len(instance.inverse_bind_poses) == 3
