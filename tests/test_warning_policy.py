"""Tests for warning policy controls."""

from __future__ import annotations

import warnings

import pytest

from dsonrig.errors import ValidationError
from dsonrig.warning_policy import (
    KNOWN_CODES,
    DsonWarning,
    WarningPolicy,
    emit_warning,
    parse_code_list,
)


class TestParseCodeList:
    def test_single_code(self):
        assert parse_code_list("W01") == frozenset({"W01"})

    def test_multiple_codes(self):
        assert parse_code_list("W01,W05") == frozenset({"W01", "W05"})

    def test_whitespace_stripped(self):
        assert parse_code_list("W01 , W03") == frozenset({"W01", "W03"})

    def test_empty_string(self):
        assert parse_code_list("") == frozenset()

    def test_unknown_code_rejected(self):
        with pytest.raises(ValueError, match="Unknown warning code.*W99"):
            parse_code_list("W99")


class TestEmitWarning:
    def test_default_emits_dson_warning(self):
        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter("always")
            emit_warning("W04", "cycle")
        assert len(w) == 1
        assert issubclass(w[0].category, DsonWarning)
        assert w[0].message.code == "W04"
        assert "[W04] cycle" in str(w[0].message)

    def test_suppressed(self):
        policy = WarningPolicy(suppress=frozenset({"W05"}))
        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter("always")
            emit_warning("W05", "test message", policy=policy)
        assert len(w) == 0

    def test_warn_as_error(self):
        policy = WarningPolicy(warn_as_error=frozenset({"W01"}))
        with pytest.raises(ValidationError, match=r"\[W01\]"):
            emit_warning("W01", "test message", policy=policy)

    def test_unaffected_code_still_warns(self):
        policy = WarningPolicy(warn_as_error=frozenset({"W02"}))
        with warnings.catch_warnings(record=True) as w:
            warnings.simplefilter("always")
            emit_warning("W01", "test message", policy=policy)
        assert len(w) == 1

    def test_strict_escalates_every_code(self):
        policy = WarningPolicy.strict()
        for code in sorted(KNOWN_CODES):
            with pytest.raises(ValidationError, match=code):
                emit_warning(code, "test", policy=policy)


class TestKnownCodes:
    def test_contains_expected_codes(self):
        assert KNOWN_CODES == {"W01", "W02", "W03", "W04", "W05", "W06"}
