"""Tests for DSON JSON parsing."""

import gzip
import json

import pytest

from dson_builders import counted, node
from dsonrig.errors import ParseError, UnknownEnumError
from dsonrig.parser import parse_dson


class TestParseDson:
    def test_parse_valid_string(self, sample_json):
        doc = parse_dson(sample_json)
        assert doc.file_version == "0.6.0.0"
        assert len(doc.node_library) == 4
        assert len(doc.geometry_library) == 1

    def test_parse_from_file(self, sample_dsf):
        doc = parse_dson(sample_dsf)
        assert doc.asset_info.id == "/data/Test/Figure/figure.dsf"

    def test_parse_bytes(self, sample_json):
        doc = parse_dson(sample_json.encode("utf-8"))
        assert doc.node_library[1].id == "hip"

    def test_gzip_file_matches_plain(self, sample_json, tmp_path):
        f = tmp_path / "figure.dsf"
        f.write_bytes(gzip.compress(sample_json.encode("utf-8")))
        assert parse_dson(f) == parse_dson(sample_json)

    def test_reject_invalid_json(self):
        with pytest.raises(ParseError, match="Invalid JSON"):
            parse_dson("{{{{not json")

    def test_reject_truncated_gzip(self, sample_json):
        data = gzip.compress(sample_json.encode("utf-8"))
        with pytest.raises(ParseError, match="gzip"):
            parse_dson(data[:20])

    def test_reject_non_object(self):
        with pytest.raises(ParseError, match="object"):
            parse_dson("[1, 2, 3]")

    def test_missing_file_version(self):
        with pytest.raises(ParseError, match="file_version"):
            parse_dson('{"node_library": []}')

    def test_unsupported_major_version(self):
        with pytest.raises(ParseError, match="Unsupported file_version"):
            parse_dson('{"file_version": "1.0.0"}')

    def test_invalid_version_format(self):
        with pytest.raises(ParseError, match="Invalid file_version"):
            parse_dson('{"file_version": "abc"}')

    def test_three_part_version_accepted(self):
        assert parse_dson('{"file_version": "0.6.0"}').file_version == "0.6.0"

    def test_file_not_found(self, tmp_path):
        with pytest.raises(ParseError, match="Cannot read"):
            parse_dson(tmp_path / "missing.dsf")

    def test_not_utf8(self):
        with pytest.raises(ParseError, match="UTF-8"):
            parse_dson(b"\xff\xfe{}")


class TestSchemaErrors:
    def test_unknown_node_type(self, minimal_document):
        minimal_document["node_library"][0]["type"] = "widget"
        with pytest.raises(UnknownEnumError) as excinfo:
            parse_dson(json.dumps(minimal_document))
        assert excinfo.value.field == "node_library.0.type"
        assert excinfo.value.value == "widget"

    def test_unknown_rotation_order_is_parse_error(self, minimal_document):
        minimal_document["node_library"][0]["rotation_order"] = "XXY"
        with pytest.raises(ParseError):
            parse_dson(json.dumps(minimal_document))

    def test_unknown_geometry_type(self, sample_document):
        sample_document["geometry_library"][0]["type"] = "nurbs"
        with pytest.raises(UnknownEnumError) as excinfo:
            parse_dson(json.dumps(sample_document))
        assert excinfo.value.field == "geometry_library.0.type"
        assert excinfo.value.value == "nurbs"

    def test_unknown_edge_interpolation_mode(self, sample_document):
        sample_document["geometry_library"][0]["edge_interpolation_mode"] = "creases"
        with pytest.raises(UnknownEnumError) as excinfo:
            parse_dson(json.dumps(sample_document))
        assert excinfo.value.field == "geometry_library.0.edge_interpolation_mode"
        assert excinfo.value.value == "creases"

    def test_unknown_channel_type(self, minimal_document):
        minimal_document["node_library"][0]["center_point"][1]["type"] = "vector"
        with pytest.raises(UnknownEnumError) as excinfo:
            parse_dson(json.dumps(minimal_document))
        assert excinfo.value.field.startswith("node_library.0.center_point.1")
        assert excinfo.value.field.endswith("type")
        assert excinfo.value.value == "vector"

    def test_missing_skin_vertex_count(self, sample_document):
        del sample_document["modifier_library"][0]["skin"]["vertex_count"]
        with pytest.raises(ParseError, match="vertex_count"):
            parse_dson(json.dumps(sample_document))

    def test_channel_triple_arity(self, minimal_document):
        minimal_document["node_library"][0]["rotation"] = node("x")["center_point"][:2]
        with pytest.raises(ParseError, match="Schema validation failed"):
            parse_dson(json.dumps(minimal_document))

    def test_polygon_too_short(self, sample_document):
        sample_document["geometry_library"][0]["polylist"] = counted([[0, 0, 1, 2]])
        with pytest.raises(ParseError, match="at least 5"):
            parse_dson(json.dumps(sample_document))

    def test_polygon_too_long(self, sample_document):
        sample_document["geometry_library"][0]["polylist"] = counted([[0, 0, 0, 1, 2, 3, 4]])
        with pytest.raises(ParseError, match="at most 6"):
            parse_dson(json.dumps(sample_document))

    def test_count_mismatch(self, sample_document):
        sample_document["geometry_library"][0]["vertices"]["count"] = 7
        with pytest.raises(ParseError, match="does not match"):
            parse_dson(json.dumps(sample_document))

    def test_missing_required_node_field(self, minimal_document):
        del minimal_document["node_library"][0]["label"]
        with pytest.raises(ParseError, match="label"):
            parse_dson(json.dumps(minimal_document))

    def test_errors_aggregated(self, minimal_document):
        del minimal_document["node_library"][0]["label"]
        del minimal_document["node_library"][0]["name"]
        with pytest.raises(ParseError) as excinfo:
            parse_dson(json.dumps(minimal_document))
        assert "label" in str(excinfo.value)
        assert "name" in str(excinfo.value)

    def test_unmodelled_keys_ignored(self, minimal_document):
        minimal_document["scene"] = {"nodes": []}
        minimal_document["node_library"][0]["presentation"] = {"type": "Actor"}
        minimal_document["node_library"][0]["something_new"] = 1
        doc = parse_dson(json.dumps(minimal_document))
        assert doc.node_library[0].presentation == {"type": "Actor"}
