"""Tests for QR payload parsing."""
from __future__ import annotations

import json

import pytest

from terminal.app.payload import ParsedPayload, ParseFailure, UNRECOGNIZED_FORMAT, parse


class TestRecordEncoding:
    def test_json_record(self):
        assert parse('{"usn":"1RV20CS001","eid":"EVT42"}') == ParsedPayload("1RV20CS001", "EVT42")

    @pytest.mark.parametrize("usn,eid", [("a", "b"), ("USN123", "E9"), ("x1y2", "42")])
    def test_json_roundtrip(self, usn, eid):
        assert parse(json.dumps({"usn": usn, "eid": eid})) == ParsedPayload(usn, eid)

    def test_extra_fields_ignored(self):
        raw = json.dumps({"usn": "A1", "eid": "E1", "name": "Ada"})
        assert parse(raw) == ParsedPayload("A1", "E1")

    def test_values_are_trimmed(self):
        assert parse('{"usn": "  A1 ", "eid": "\\tE1"}') == ParsedPayload("A1", "E1")

    def test_integer_values_accepted(self):
        assert parse('{"usn": 1001, "eid": 7}') == ParsedPayload("1001", "7")

    def test_non_scalar_values_rejected(self):
        assert isinstance(parse('{"usn": ["A1"], "eid": true}'), ParseFailure)

    def test_partial_record_rejected(self):
        result = parse('{"usn": "only"}')
        assert result == ParseFailure(UNRECOGNIZED_FORMAT)

    def test_blank_field_rejected(self):
        assert isinstance(parse('{"usn": "A1", "eid": "   "}'), ParseFailure)

    def test_json_non_object_falls_through(self):
        assert isinstance(parse("[1, 2]"), ParseFailure)
        assert isinstance(parse("42"), ParseFailure)


class TestQueryEncoding:
    def test_bare_query_string(self):
        assert parse("usn=1RV20CS001&eid=EVT42") == ParsedPayload("1RV20CS001", "EVT42")

    def test_full_url(self):
        raw = "https://events.example.org/checkin?eid=EVT42&usn=1RV20CS001&src=poster"
        assert parse(raw) == ParsedPayload("1RV20CS001", "EVT42")

    def test_percent_encoded_values(self):
        assert parse("usn=A%201&eid=E%2B1") == ParsedPayload("A 1", "E+1")

    def test_first_value_wins(self):
        assert parse("usn=first&usn=second&eid=E") == ParsedPayload("first", "E")

    def test_partial_query_rejected(self):
        assert parse("usn=only") == ParseFailure(UNRECOGNIZED_FORMAT)

    def test_empty_value_rejected(self):
        assert isinstance(parse("usn=&eid=E1"), ParseFailure)

    def test_surrounding_whitespace_ignored(self):
        assert parse("  usn=A&eid=B\n") == ParsedPayload("A", "B")


class TestFallback:
    def test_record_missing_fields_does_not_block_query_path(self):
        # valid JSON without usn/eid keys, but its text carries the query parameters
        assert parse('{"ref":"&usn=A&eid=B&"}') == ParsedPayload("A", "B")

    def test_json_string_literal_rejected(self):
        assert parse('"usn=A&eid=B"') == ParseFailure(UNRECOGNIZED_FORMAT)

    def test_both_encodings_agree(self):
        assert parse('{"usn":"1RV20CS001","eid":"EVT42"}') == parse("usn=1RV20CS001&eid=EVT42")

    @pytest.mark.parametrize("raw", ["hello world", "", "   ", "{not json", "https://example.org/"])
    def test_unrecognized(self, raw):
        assert parse(raw) == ParseFailure(UNRECOGNIZED_FORMAT)

    def test_parse_is_pure(self):
        raw = "usn=A&eid=B"
        assert parse(raw) == parse(raw)
